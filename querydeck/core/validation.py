import re
from typing import Any, Dict, Mapping, Union

from querydeck.core.parameters import referenced_names
from querydeck.core.schemas import IDENTIFIER_PATTERN, SLUG_PATTERN, QueryForm

_SLUG = re.compile(SLUG_PATTERN)
_IDENTIFIER = re.compile(IDENTIFIER_PATTERN)

ValidationErrors = Dict[str, str]


def _field(source: Any, name: str, default: Any = None) -> Any:
    if isinstance(source, Mapping):
        return source.get(name, default)
    return getattr(source, name, default)


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def validate_definition(form: Union[QueryForm, Mapping[str, Any]]) -> ValidationErrors:
    """
    Check a query definition before it is submitted to the store.

    Every rule runs, so the caller can show the complete set of problems at
    once. Returns a mapping from field path to message; an empty mapping
    means the definition can be submitted. Never raises and never touches
    the network.

    Field paths:
        name, slug, sql_query, parameter_<index>_name
    """
    errors: ValidationErrors = {}

    name = _text(_field(form, "name"))
    if not name.strip():
        errors["name"] = "Query name is required"

    slug = _text(_field(form, "slug"))
    if not slug.strip():
        errors["slug"] = "Slug is required"
    elif not _SLUG.fullmatch(slug):
        errors["slug"] = (
            "Slug may only contain lowercase letters, digits, hyphens and underscores"
        )

    parameters = _field(form, "parameters")
    if not isinstance(parameters, (list, tuple)):
        parameters = []
    declared = {_text(_field(p, "name")) for p in parameters}

    sql = _text(_field(form, "sql_query"))
    if not sql.strip():
        errors["sql_query"] = "SQL query is required"
    else:
        undefined = [n for n in referenced_names(sql) if n not in declared]
        if undefined:
            errors["sql_query"] = (
                f"SQL query contains undefined parameters: {', '.join(undefined)}"
            )

    for index, parameter in enumerate(parameters):
        key = f"parameter_{index}_name"
        parameter_name = _text(_field(parameter, "name"))
        if not parameter_name.strip():
            errors[key] = "Parameter name is required"
        elif not _IDENTIFIER.fullmatch(parameter_name):
            errors[key] = (
                "Parameter name must start with a letter or underscore and contain "
                "only letters, digits and underscores"
            )

    return errors
