from typing import Annotated

from fastapi import APIRouter, HTTPException, Request, Response, status, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from querydeck.core import schemas, models
from querydeck.core.database import get_db
from querydeck.core.executor import (
    ParameterError,
    QueryExecutionError,
    execute_custom_query,
)

router = APIRouter(prefix="/custom", tags=["Custom Endpoints"])

db_dep = Annotated[AsyncSession, Depends(get_db)]


async def read_request_parameters(request: Request) -> dict:
    if request.method == "GET":
        return dict(request.query_params)

    # A missing or non-object body means "no parameters"
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.api_route(
    "/{slug}",
    methods=["GET", "POST"],
    response_model=schemas.ExecutionResponse,
)
async def run_custom_query(slug: str, request: Request, response: Response, db: db_dep):
    """
    Serve an enabled custom query at /custom/{slug}.

    SELECT queries answer GET with parameters from the query string; all other
    queries answer POST with parameters from the JSON body.
    """
    result = await db.execute(
        select(models.CustomQuery).where(
            models.CustomQuery.slug == slug,
            models.CustomQuery.is_enabled.is_(True),
        )
    )
    query = result.scalars().first()

    if query is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Custom query not found")

    if query.method != request.method:
        raise HTTPException(
            status.HTTP_405_METHOD_NOT_ALLOWED,
            f"Method not allowed. This endpoint expects {query.method}",
        )

    cache_ttl = query.cache_ttl or 0
    provided = await read_request_parameters(request)

    try:
        outcome = await execute_custom_query(db, query, provided)
    except (ParameterError, QueryExecutionError) as error:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(error))

    if cache_ttl > 0:
        response.headers["Cache-Control"] = f"public, max-age={cache_ttl}"

    return schemas.ExecutionResponse(
        data=outcome.data,
        meta=schemas.ExecutionMeta(
            row_count=outcome.row_count,
            execution_time=outcome.execution_time,
        ),
    )
