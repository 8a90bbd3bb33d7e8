from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from genmedia.api.deps import get_runner
from genmedia.domain.errors import InvalidDestinationError, MaterializationError
from genmedia.domain.models import (
    Destination,
    GenerationList,
    GenerationView,
    UploadFromUrlRequest,
    UploadFromUrlResponse,
)
from genmedia.services.job_runner import JobRunner

logger = logging.getLogger("genmedia.api.uploads")

router = APIRouter(prefix="/api/uploads", tags=["uploads"])


@router.post("/from-url", response_model=UploadFromUrlResponse)
async def upload_from_url(
    req: UploadFromUrlRequest,
    runner: JobRunner = Depends(get_runner),
) -> UploadFromUrlResponse:
    """Copy an arbitrary remote file into the owner's storage and return a durable URL."""
    destination = Destination(
        owner_id=req.owner_id,
        category=req.category,
        base_name=req.filename or "upload",
        content_type=req.content_type,
    )
    try:
        asset = await runner.materializer.materialize(req.url, destination)
    except InvalidDestinationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except MaterializationError as e:
        logger.warning("upload_from_url_failed", extra={"owner_id": req.owner_id, "error": str(e)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"upload_from_url_failed: {e}")

    return UploadFromUrlResponse(
        url=asset.url,
        storage_path=asset.storage_path,
        content_type=asset.content_type,
        bytes=asset.bytes,
        public=asset.public,
    )


@router.post("/rematerialize", response_model=GenerationList)
async def rematerialize(
    limit: int = Query(5, ge=1, le=50),
    runner: JobRunner = Depends(get_runner),
) -> GenerationList:
    """One sweep over completed generations whose output never made it into storage (cron target)."""
    rows = await runner.rematerialize_pending(limit)
    return GenerationList(items=[GenerationView.from_record(r) for r in rows])
