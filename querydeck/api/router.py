from fastapi import APIRouter
from querydeck.api.endpoints import custom, custom_queries

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(custom_queries.router)
api_router.include_router(custom.router)
