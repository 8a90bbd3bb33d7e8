from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from genmedia.api.deps import get_repo, get_runner
from genmedia.domain.enums import Dispatch, ErrorCode
from genmedia.domain.errors import VendorSubmissionError
from genmedia.domain.models import GenerationCreate, GenerationList, GenerationView
from genmedia.services.job_runner import JobRunner, destination_for
from genmedia.services.providers.catalog import cadence_for, get_preset

logger = logging.getLogger("genmedia.api.generations")

router = APIRouter(prefix="/api/generations", tags=["generations"])


@router.post("", response_model=GenerationView)
async def create_generation(
    req: GenerationCreate,
    response: Response,
    runner: JobRunner = Depends(get_runner),
) -> GenerationView:
    """
    wait=true  -> the request owns the poll loop and returns the terminal record.
    wait=false -> 202 with the pending record; the worker (or a webhook) finishes it.
    """
    preset = get_preset(req.model)
    if preset is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="unknown_model")

    dispatch = Dispatch.inline if req.wait else Dispatch.worker
    try:
        record, handle = await runner.submit(preset, req, dispatch=dispatch)
    except VendorSubmissionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not req.wait:
        response.status_code = status.HTTP_202_ACCEPTED
        return GenerationView.from_record(record)

    record_id = str(record["id"])
    try:
        final = await runner.run_to_completion(
            handle,
            destination_for(preset, req.owner_id, req.filename),
            record_id,
            cadence=cadence_for(preset.kind),
        )
    except Exception as e:
        logger.exception("generation_unhandled_exception", extra={"record_id": record_id, "error": str(e)})
        final = await runner.fail_unhandled(record_id, e, error_code=ErrorCode.internal_error)
        if final is None:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="generation_failed")
    return GenerationView.from_record(final)


@router.get("", response_model=GenerationList)
async def list_generations(
    owner_id: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    repo=Depends(get_repo),
) -> GenerationList:
    rows = await repo.list_records(owner_id, limit=limit)
    return GenerationList(items=[GenerationView.from_record(r) for r in rows])


@router.get("/{record_id}", response_model=GenerationView)
async def get_generation(record_id: str, repo=Depends(get_repo)) -> GenerationView:
    row = await repo.get_record(record_id)
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="record_not_found")
    return GenerationView.from_record(row)
