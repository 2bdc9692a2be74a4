import json
import logging
import math
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from querydeck.core import models
from querydeck.core.config import settings
from querydeck.core.parameters import load_parameters
from querydeck.core.schemas import ParameterType, QueryParameter, TestExecutionResult

# -----------------------------------------------------------------------------
# EXECUTOR MODULE - runs stored custom queries
# Purpose: bind caller-supplied values to the declared parameter contract,
# execute the SQL with named binds, and record every run in custom_query_logs
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


class ParameterError(ValueError):
    """A supplied value does not satisfy the query's parameter contract."""


class QueryExecutionError(Exception):
    """The database rejected the statement."""


def _to_number(name: str, value: Any):
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            raise ParameterError(f"Parameter '{name}' must be a number")
        return value
    if isinstance(value, str):
        candidate = value.strip()
        try:
            return int(candidate)
        except ValueError:
            pass
        try:
            number = float(candidate)
        except ValueError:
            raise ParameterError(f"Parameter '{name}' must be a number")
        if math.isnan(number):
            raise ParameterError(f"Parameter '{name}' must be a number")
        return number
    raise ParameterError(f"Parameter '{name}' must be a number")


def _to_boolean(value: Any) -> bool:
    # Query-string values arrive as text
    if isinstance(value, str):
        return value.lower() == "true" or value == "1"
    return bool(value)


def _to_date(name: str, value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    try:
        return datetime.fromisoformat(str(value)).isoformat()
    except ValueError:
        raise ParameterError(f"Parameter '{name}' must be a valid date")


def prepare_parameters(
    definitions: List[QueryParameter], provided: Mapping[str, Any]
) -> Dict[str, Any]:
    """
    Build the bind values for one execution.

    For each declared parameter: take the provided value, else its default.
    A required parameter with neither raises `ParameterError`; an optional
    one binds NULL. Values are coerced to the declared type.
    """
    prepared: Dict[str, Any] = {}

    for definition in definitions:
        value = provided.get(definition.name)
        if value is None and definition.default is not None:
            value = definition.default

        if value is None:
            if definition.required:
                raise ParameterError(f"Required parameter '{definition.name}' is missing")
            prepared[definition.name] = None
            continue

        if definition.type == ParameterType.NUMBER:
            value = _to_number(definition.name, value)
        elif definition.type == ParameterType.BOOLEAN:
            value = _to_boolean(value)
        elif definition.type == ParameterType.DATE:
            value = _to_date(definition.name, value)
        else:
            value = str(value)

        prepared[definition.name] = value

    return prepared


async def _log_execution(
    db: AsyncSession,
    query_id: str,
    execution_time: float,
    row_count: int,
    provided: Mapping[str, Any],
    error: Optional[str],
) -> None:
    db.add(
        models.CustomQueryLog(
            query_id=query_id,
            execution_time=int(round(execution_time)),
            row_count=row_count,
            parameters=json.dumps(dict(provided), default=str),
            error=error,
        )
    )
    await db.commit()


async def execute_custom_query(
    db: AsyncSession,
    query: models.CustomQuery,
    provided: Mapping[str, Any],
    row_limit: Optional[int] = None,
) -> TestExecutionResult:
    """
    Run a stored custom query with caller-supplied parameter values.

    Every successful statement is committed, whatever `is_readonly` says;
    that flag only annotates the stored query. The run is logged whether it
    succeeds or fails.

    Raises:
        ParameterError: the values do not satisfy the parameter contract
            (nothing is executed or logged).
        QueryExecutionError: the database rejected the statement.
    """
    # Commit and rollback expire ORM state, so read everything we need up front
    query_id = query.id
    sql = query.sql_query
    definitions = load_parameters(query.parameters)

    prepared = prepare_parameters(definitions, provided)
    limit = row_limit or settings.QUERY_ROW_LIMIT

    rows: List[Dict[str, Any]] = []
    error = None
    start = time.perf_counter()
    try:
        result = await db.execute(text(sql), prepared)
        if result.returns_rows:
            rows = [dict(row._mapping) for row in result.fetchmany(limit)]
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        error = str(getattr(exc, "orig", None) or exc)
        logger.error(f"Custom query {query_id} failed: {error}")
    execution_time = (time.perf_counter() - start) * 1000

    await _log_execution(db, query_id, execution_time, len(rows), provided, error)

    if error is not None:
        raise QueryExecutionError(error)

    return TestExecutionResult(
        data=rows,
        row_count=len(rows),
        execution_time=round(execution_time, 3),
    )
