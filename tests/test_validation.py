from querydeck.core.parameters import extract_parameters
from querydeck.core.schemas import QueryForm, QueryParameter
from querydeck.core.validation import validate_definition


def valid_form(**overrides) -> QueryForm:
    values = {
        "name": "Orders since",
        "slug": "orders-since",
        "sql_query": "SELECT * FROM orders WHERE created_at > :start",
        "parameters": [QueryParameter(name="start", required=True)],
    }
    values.update(overrides)
    return QueryForm(**values)


def test_valid_form_has_no_errors():
    assert validate_definition(valid_form()) == {}


def test_all_fields_reported_at_once():
    """Empty name, bad slug and undeclared parameter give exactly three keys"""
    form = QueryForm(
        name="",
        slug="Has Caps",
        sql_query="SELECT * FROM t WHERE id = :missing",
        parameters=[],
    )
    errors = validate_definition(form)
    assert set(errors) == {"name", "slug", "sql_query"}
    assert "missing" in errors["sql_query"]


def test_blank_fields_are_required():
    errors = validate_definition(QueryForm(name="   ", slug="", sql_query="  "))
    assert errors == {
        "name": "Query name is required",
        "slug": "Slug is required",
        "sql_query": "SQL query is required",
    }


def test_undefined_parameters_aggregated_in_one_message():
    form = valid_form(sql_query="SELECT :a, :start, :b, :a", parameters=[QueryParameter(name="start")])
    errors = validate_definition(form)
    assert errors == {"sql_query": "SQL query contains undefined parameters: a, b"}


def test_parameter_errors_keyed_by_index():
    form = valid_form(
        parameters=[
            QueryParameter(name="start"),
            QueryParameter(name=""),
            QueryParameter(name="9lives"),
            QueryParameter(name="ok_name"),
        ]
    )
    errors = validate_definition(form)
    assert set(errors) == {"parameter_1_name", "parameter_2_name"}
    assert errors["parameter_1_name"] == "Parameter name is required"


def test_slug_with_trailing_newline_is_rejected():
    assert "slug" in validate_definition(valid_form(slug="orders\n"))


def test_accepts_plain_mappings():
    """Any dict shaped like the form validates the same way"""
    form = {
        "name": "Report",
        "slug": "report_1",
        "sql_query": "SELECT * FROM t WHERE d = :day",
        "parameters": [{"name": "day"}],
    }
    assert validate_definition(form) == {}


def test_never_raises_on_odd_input():
    errors = validate_definition({"name": None, "slug": 12, "parameters": "nope"})
    assert set(errors) == {"name", "slug", "sql_query"}


def test_auto_declared_parameters_pass():
    """Extracted stubs satisfy the undefined-parameter rule"""
    sql = "SELECT * FROM orders WHERE created_at > :start AND total > :min_total"
    form = valid_form(sql_query=sql, parameters=extract_parameters(sql))
    assert validate_definition(form) == {}
