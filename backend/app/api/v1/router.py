"""API v1 router combining all endpoint routers."""

from fastapi import APIRouter

from app.api.v1 import clients, maintenance

api_router = APIRouter()

api_router.include_router(clients.router, prefix="/clients", tags=["clients"])
api_router.include_router(
    maintenance.router, prefix="/maintenance", tags=["maintenance"]
)
