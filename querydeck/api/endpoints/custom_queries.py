import json
import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, desc, select

from querydeck.core import schemas, models
from querydeck.core.classifier import classify
from querydeck.core.database import get_db
from querydeck.core.executor import (
    ParameterError,
    QueryExecutionError,
    execute_custom_query,
)
from querydeck.core.parameters import dump_parameters, load_parameters, referenced_names

router = APIRouter(prefix="/custom-queries", tags=["Custom Queries"])

db_dep = Annotated[AsyncSession, Depends(get_db)]

SLUG_EXISTS = "A query with this slug already exists"
NOT_FOUND = "Custom query not found"


def serialize_query(query: models.CustomQuery) -> schemas.CustomQueryResponse:
    return schemas.CustomQueryResponse(
        id=query.id,
        slug=query.slug,
        name=query.name,
        description=query.description,
        sql_query=query.sql_query,
        parameters=load_parameters(query.parameters),
        method=query.method,
        is_readonly=bool(query.is_readonly),
        cache_ttl=query.cache_ttl or 0,
        is_enabled=bool(query.is_enabled),
        created_at=query.created_at,
        updated_at=query.updated_at,
    )


def check_declared(sql: str, parameters) -> None:
    declared = {p.name for p in parameters}
    undefined = [n for n in referenced_names(sql) if n not in declared]
    if undefined:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            f"SQL query contains undefined parameters: {', '.join(undefined)}",
        )


async def get_query_or_404(query_id: str, db: AsyncSession) -> models.CustomQuery:
    result = await db.execute(
        select(models.CustomQuery).where(models.CustomQuery.id == query_id)
    )
    query = result.scalars().first()
    if query is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, NOT_FOUND)
    return query


async def slug_taken(slug: str, db: AsyncSession, exclude_id: str = None) -> bool:
    stmt = select(models.CustomQuery.id).where(models.CustomQuery.slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(models.CustomQuery.id != exclude_id)
    result = await db.execute(stmt)
    return result.scalars().first() is not None


# List queries
@router.get("", response_model=schemas.CustomQueryList)
async def list_custom_queries(db: db_dep):
    result = await db.execute(
        select(models.CustomQuery).order_by(models.CustomQuery.name.asc())
    )
    return {"queries": [serialize_query(q) for q in result.scalars().all()]}


# Get one query
@router.get("/{query_id}", response_model=schemas.CustomQueryEnvelope)
async def get_custom_query(query_id: str, db: db_dep):
    query = await get_query_or_404(query_id, db)
    return {"query": serialize_query(query)}


# Create query
@router.post(
    "",
    response_model=schemas.CustomQueryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_custom_query(payload: schemas.CustomQueryCreate, db: db_dep):
    if await slug_taken(payload.slug, db):
        raise HTTPException(status.HTTP_409_CONFLICT, SLUG_EXISTS)

    check_declared(payload.sql_query, payload.parameters)

    # Method and readonly flag always follow the SQL, never the request
    classification = classify(payload.sql_query)
    new_query = models.CustomQuery(
        slug=payload.slug,
        name=payload.name,
        description=payload.description or None,
        sql_query=payload.sql_query,
        parameters=dump_parameters(payload.parameters),
        method=classification.method.value,
        is_readonly=classification.is_readonly,
        cache_ttl=payload.cache_ttl,
        is_enabled=payload.is_enabled,
    )

    try:
        db.add(new_query)
        await db.commit()
        await db.refresh(new_query)
    except IntegrityError:
        # Lost a race with another writer on the unique slug
        await db.rollback()
        raise HTTPException(status.HTTP_409_CONFLICT, SLUG_EXISTS)
    except Exception as error:
        await db.rollback()
        logging.error(f"Failed to create custom query: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create custom query",
        )

    logging.info(f"Created custom query '{new_query.slug}' ({new_query.id})")
    return serialize_query(new_query)


# Update query
@router.put("/{query_id}", response_model=schemas.CustomQueryResponse)
async def update_custom_query(
    query_id: str, payload: schemas.CustomQueryUpdate, db: db_dep
):
    query = await get_query_or_404(query_id, db)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("slug") and changes["slug"] != query.slug:
        if await slug_taken(changes["slug"], db, exclude_id=query_id):
            raise HTTPException(status.HTTP_409_CONFLICT, SLUG_EXISTS)

    if "sql_query" in changes or "parameters" in changes:
        sql = payload.sql_query if payload.sql_query is not None else query.sql_query
        parameters = (
            payload.parameters
            if payload.parameters is not None
            else load_parameters(query.parameters)
        )
        check_declared(sql, parameters)

    for key in ("slug", "name", "cache_ttl", "is_enabled"):
        if changes.get(key) is not None:
            setattr(query, key, changes[key])
    if "description" in changes:
        query.description = payload.description or None
    if payload.sql_query is not None:
        classification = classify(payload.sql_query)
        query.sql_query = payload.sql_query
        query.method = classification.method.value
        query.is_readonly = classification.is_readonly
    if payload.parameters is not None:
        query.parameters = dump_parameters(payload.parameters)

    try:
        db.add(query)
        await db.commit()
        await db.refresh(query)
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status.HTTP_409_CONFLICT, SLUG_EXISTS)
    except Exception as error:
        await db.rollback()
        logging.error(f"Failed to update custom query {query_id}: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update custom query",
        )

    return serialize_query(query)


# Partial update (enable toggle, cache ttl, description)
@router.patch("/{query_id}")
async def patch_custom_query(
    query_id: str, payload: schemas.CustomQueryPatch, db: db_dep
):
    query = await get_query_or_404(query_id, db)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No fields to update")

    for key, value in changes.items():
        if key == "description":
            value = value or None
        elif value is None:
            continue
        setattr(query, key, value)

    try:
        db.add(query)
        await db.commit()
    except Exception as error:
        await db.rollback()
        logging.error(f"Failed to patch custom query {query_id}: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update custom query",
        )

    return {"success": True}


# Delete query
@router.delete("/{query_id}", status_code=status.HTTP_200_OK)
async def delete_custom_query(query_id: str, db: db_dep):
    query = await get_query_or_404(query_id, db)

    try:
        # SQLite does not enforce the FK cascade unless told to
        await db.execute(
            delete(models.CustomQueryLog).where(
                models.CustomQueryLog.query_id == query_id
            )
        )
        await db.delete(query)
        await db.commit()
    except Exception as error:
        await db.rollback()
        logging.error(f"Failed to delete custom query {query_id}: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete custom query",
        )

    return {"success": True, "message": "Custom query deleted successfully"}


# Test run, works for disabled queries too
@router.post("/{query_id}/test", response_model=schemas.TestExecutionResult)
async def test_custom_query(
    query_id: str, payload: schemas.TestQueryRequest, db: db_dep
):
    query = await get_query_or_404(query_id, db)
    try:
        return await execute_custom_query(db, query, payload.parameters)
    except (ParameterError, QueryExecutionError) as error:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(error))


# Execution history, newest first
@router.get("/{query_id}/logs", response_model=schemas.QueryLogList)
async def get_custom_query_logs(
    query_id: str,
    db: db_dep,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    await get_query_or_404(query_id, db)
    result = await db.execute(
        select(models.CustomQueryLog)
        .where(models.CustomQueryLog.query_id == query_id)
        .order_by(desc(models.CustomQueryLog.executed_at))
        .limit(limit)
        .offset(offset)
    )
    return {
        "logs": [
            schemas.QueryLogResponse(
                id=log.id,
                query_id=log.query_id,
                execution_time=log.execution_time,
                row_count=log.row_count,
                parameters=_decode_log_parameters(log.parameters),
                error=log.error,
                executed_at=log.executed_at,
            )
            for log in result.scalars().all()
        ]
    }


def _decode_log_parameters(raw):
    if not raw:
        return None
    try:
        decoded = json.loads(raw)
    except ValueError:
        return None
    return decoded if isinstance(decoded, dict) else None
