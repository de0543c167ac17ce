from fastapi import APIRouter

from repost_guard.api.routes import admin, health, messages

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(messages.router, prefix="/messages", tags=["ingest"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
