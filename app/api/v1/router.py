"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from app.api.v1 import insights

api_router = APIRouter()

api_router.include_router(insights.router, prefix="/insights", tags=["insights"])
