import json
import logging
import re
from typing import Any, Iterable, List

from pydantic import ValidationError

from querydeck.core.schemas import ParameterType, QueryParameter

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# PARAMETERS MODULE - the parameter contract of a custom query
# Purpose: discover ":name" placeholders in SQL text, keep the admin's
# parameter metadata in step with SQL edits, and load stored contracts
# -----------------------------------------------------------------------------

# Syntactic scan only: a colon inside a string literal ('12:30') is matched too
PARAMETER_REFERENCE = re.compile(r":(\w+)", re.ASCII)


def referenced_names(sql: str) -> List[str]:
    """Distinct placeholder names in `sql`, in first-seen order."""
    names = []
    for match in PARAMETER_REFERENCE.finditer(sql or ""):
        name = match.group(1)
        if name not in names:
            names.append(name)
    return names


def extract_parameters(sql: str) -> List[QueryParameter]:
    """
    Build a parameter stub for every placeholder referenced in `sql`.

    Stubs are typed as required strings with an empty description; the admin
    refines them afterwards.
    """
    return [
        QueryParameter(
            name=name,
            type=ParameterType.STRING,
            required=True,
            description="",
        )
        for name in referenced_names(sql)
    ]


def reconcile_parameters(
    new_sql: str, previous: Iterable[QueryParameter]
) -> List[QueryParameter]:
    """
    Merge the parameters found in `new_sql` with previously edited ones.

    Parameters still referenced keep every field the admin set (type,
    required flag, description, default) and their relative order. Parameters
    no longer referenced are dropped. Newly referenced names are appended as
    stubs in first-seen order.

    Membership is tested against the raw SQL text, not the extraction
    result.

    Example:
        reconcile_parameters("SELECT * FROM t WHERE id = :id AND d > :since", [id_param])
        # -> [id_param, <stub "since">]
    """
    new_sql = new_sql or ""
    kept = [p for p in previous if f":{p.name}" in new_sql]
    kept_names = {p.name for p in kept}

    appended = [p for p in extract_parameters(new_sql) if p.name not in kept_names]
    return kept + appended


def load_parameters(raw: Any) -> List[QueryParameter]:
    """
    Normalize a stored parameter contract to a list of `QueryParameter`.

    Depending on where a record came from, the contract arrives either as a
    parsed list or as a JSON string. Malformed JSON, or a JSON value that is
    not a list, yields an empty list. Entries that are not valid parameter
    objects are skipped.
    """
    if raw is None:
        return []

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw or "[]")
        except ValueError:
            logger.warning("Discarding malformed parameter JSON")
            return []

    if not isinstance(raw, list):
        return []

    loaded = []
    for item in raw:
        if isinstance(item, QueryParameter):
            loaded.append(item)
            continue
        try:
            loaded.append(QueryParameter.model_validate(item))
        except ValidationError as error:
            logger.warning(f"Skipping invalid parameter entry {item!r}: {error}")
    return loaded


def dump_parameters(parameters: Iterable[QueryParameter]) -> str:
    """JSON text for the `custom_queries.parameters` column."""
    return json.dumps(
        [p.model_dump(mode="json", exclude_none=True) for p in parameters]
    )
