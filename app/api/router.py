from fastapi import APIRouter

from app.api.routes import health_cache

api_router = APIRouter()
api_router.include_router(health_cache.router)
