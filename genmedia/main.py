from __future__ import annotations

from fastapi import FastAPI

from genmedia.api import build_router
from genmedia.config import settings
from genmedia.db import close_pool, get_pool
from genmedia.logging import configure_logging
from genmedia.repos.generations_repo import GenerationsRepo
from genmedia.services.job_runner import build_job_runner


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.include_router(build_router())

    @app.on_event("startup")
    async def startup():
        pool = await get_pool()
        app.state.runner = build_job_runner(GenerationsRepo(pool))

    @app.on_event("shutdown")
    async def shutdown():
        runner = getattr(app.state, "runner", None)
        if runner is not None:
            await runner.aclose()
        await close_pool()

    @app.get("/")
    async def root():
        return {"service": settings.SERVICE_NAME, "status": "ok", "version": settings.SERVICE_VERSION}

    return app


# uvicorn genmedia.main:app
app = create_app()
