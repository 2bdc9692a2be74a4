import pytest
from sqlalchemy import select, text

from querydeck.core import models
from querydeck.core.classifier import classify
from querydeck.core.executor import (
    ParameterError,
    QueryExecutionError,
    execute_custom_query,
    prepare_parameters,
)
from querydeck.core.schemas import ParameterType, QueryParameter


def test_prepare_uses_defaults_and_nulls():
    """Defaults fill gaps, optional parameters without a default bind NULL"""
    definitions = [
        QueryParameter(name="limit", type=ParameterType.NUMBER, default=10),
        QueryParameter(name="note"),
    ]
    assert prepare_parameters(definitions, {}) == {"limit": 10, "note": None}


def test_prepare_rejects_missing_required():
    definitions = [QueryParameter(name="customer", required=True)]
    with pytest.raises(ParameterError, match="Required parameter 'customer' is missing"):
        prepare_parameters(definitions, {})


def test_prepare_coerces_types():
    definitions = [
        QueryParameter(name="n", type=ParameterType.NUMBER),
        QueryParameter(name="f", type=ParameterType.NUMBER),
        QueryParameter(name="on", type=ParameterType.BOOLEAN),
        QueryParameter(name="off", type=ParameterType.BOOLEAN),
        QueryParameter(name="day", type=ParameterType.DATE),
        QueryParameter(name="s"),
    ]
    prepared = prepare_parameters(
        definitions,
        {"n": "42", "f": "2.5", "on": "TRUE", "off": "no", "day": "2024-03-01", "s": 7},
    )
    assert prepared == {
        "n": 42,
        "f": 2.5,
        "on": True,
        "off": False,
        "day": "2024-03-01T00:00:00",
        "s": "7",
    }


def test_prepare_rejects_bad_number_and_date():
    with pytest.raises(ParameterError, match="'n' must be a number"):
        prepare_parameters([QueryParameter(name="n", type=ParameterType.NUMBER)], {"n": "abc"})
    with pytest.raises(ParameterError, match="'d' must be a valid date"):
        prepare_parameters([QueryParameter(name="d", type=ParameterType.DATE)], {"d": "soon"})


def test_prepare_ignores_undeclared_values():
    assert prepare_parameters([], {"extra": 1}) == {}


@pytest.mark.asyncio
async def test_execute_readonly_query(db_session, test_query):
    """Rows come back as dicts and the run is logged"""
    query_id = test_query.id
    result = await execute_custom_query(db_session, test_query, {"customer": "alice"})

    assert result.row_count == 1
    assert result.data[0]["customer"] == "alice"
    assert result.execution_time >= 0

    logs = (
        await db_session.execute(
            select(models.CustomQueryLog).where(models.CustomQueryLog.query_id == query_id)
        )
    ).scalars().all()
    assert len(logs) == 1
    assert logs[0].row_count == 1
    assert logs[0].error is None


@pytest.mark.asyncio
async def test_execute_mutating_query_commits(db_session, insert_query):
    result = await execute_custom_query(
        db_session,
        insert_query,
        {"customer": "dave", "total": "12", "created_at": "2024-04-01"},
    )
    assert result.row_count == 0

    count = (
        await db_session.execute(text("SELECT COUNT(*) FROM orders WHERE customer = 'dave'"))
    ).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_execute_commits_write_flagged_readonly(db_session, make_query):
    """A pragma mention marks the query read-only but the delete still sticks"""
    sql = "DELETE FROM orders WHERE customer = 'bob' -- pragma note"
    classification = classify(sql)
    assert classification.is_readonly is True

    query = await make_query(
        sql_query=sql,
        parameters="[]",
        method=classification.method.value,
        is_readonly=classification.is_readonly,
    )
    result = await execute_custom_query(db_session, query, {})
    assert result.success is True

    count = (await db_session.execute(text("SELECT COUNT(*) FROM orders"))).scalar_one()
    assert count == 2


@pytest.mark.asyncio
async def test_execute_respects_row_limit(db_session, make_query):
    query = await make_query(
        sql_query="SELECT * FROM orders ORDER BY id", parameters="[]"
    )
    result = await execute_custom_query(db_session, query, {}, row_limit=2)
    assert result.row_count == 2


@pytest.mark.asyncio
async def test_execute_failure_is_logged(db_session, make_query):
    query = await make_query(
        sql_query="SELECT * FROM no_such_table", parameters="[]"
    )
    query_id = query.id

    with pytest.raises(QueryExecutionError, match="no_such_table"):
        await execute_custom_query(db_session, query, {})

    log = (
        await db_session.execute(
            select(models.CustomQueryLog).where(models.CustomQueryLog.query_id == query_id)
        )
    ).scalars().one()
    assert "no_such_table" in log.error


@pytest.mark.asyncio
async def test_execute_tolerates_malformed_parameter_column(db_session, make_query):
    """A corrupt stored contract behaves like an empty one"""
    query = await make_query(sql_query="SELECT 1 AS one", parameters="{oops")
    result = await execute_custom_query(db_session, query, {})
    assert result.data == [{"one": 1}]
