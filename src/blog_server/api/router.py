from __future__ import annotations

from fastapi import APIRouter

from blog_server.api.articles import router as articles_router
from blog_server.api.telemetry import router as telemetry_router

api_router = APIRouter()
api_router.include_router(articles_router, tags=["articles"])
api_router.include_router(telemetry_router, tags=["telemetry"])
