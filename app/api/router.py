"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from app.api.routes import admin, holds, zones

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(zones.router)
api_router.include_router(holds.router)
api_router.include_router(admin.router)
