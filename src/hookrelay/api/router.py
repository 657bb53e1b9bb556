"""Main API router combining all endpoints."""

from fastapi import APIRouter

from hookrelay.api import operations

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(operations.router)
