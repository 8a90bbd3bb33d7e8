from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request

from genmedia.services.job_runner import JobRunner


def get_runner(request: Request) -> JobRunner:
    runner = getattr(request.app.state, "runner", None)
    if runner is None:
        raise HTTPException(status_code=503, detail="service_not_ready")
    return runner


def get_repo(request: Request) -> Any:
    return get_runner(request).repo
