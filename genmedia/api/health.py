from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from genmedia.config import settings

router = APIRouter(prefix="/api/health", tags=["health"])

_STARTED_AT = time.time()


@router.get("")
@router.get("/")
async def health() -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "time_utc": now.isoformat(),
        "uptime_s": round(time.time() - _STARTED_AT, 3),
    }


@router.get("/ready")
async def ready(request: Request) -> Dict[str, Any]:
    runner = getattr(request.app.state, "runner", None)
    providers = sorted(runner.clients) if runner is not None else []
    return {"status": "ready" if runner is not None else "starting", "providers": providers}
