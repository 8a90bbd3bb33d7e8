from __future__ import annotations

from fastapi import APIRouter

from genmedia.api.health import router as health_router
from genmedia.api.routes.generations import router as generations_router
from genmedia.api.routes.models import router as models_router
from genmedia.api.routes.uploads import router as uploads_router
from genmedia.api.routes.webhooks import router as webhooks_router


def build_router() -> APIRouter:
    r = APIRouter()
    r.include_router(health_router)
    r.include_router(models_router)
    r.include_router(generations_router)
    r.include_router(uploads_router)
    r.include_router(webhooks_router)
    return r
