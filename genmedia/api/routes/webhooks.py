from __future__ import annotations

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from genmedia.api.deps import get_runner
from genmedia.config import settings
from genmedia.domain.models import (
    GenerationView,
    TerminalOutcome,
    VendorFailed,
    VendorSucceeded,
)
from genmedia.services.job_runner import JobRunner, destination_for_record
from genmedia.services.providers.replicate_client import parse_prediction
from genmedia.services.webhook_signature import verify_webhook_signature

logger = logging.getLogger("genmedia.api.webhooks")

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/replicate")
async def replicate_webhook(
    request: Request,
    record_id: str = Query(..., min_length=1),
    runner: JobRunner = Depends(get_runner),
) -> Dict[str, Any]:
    body = await request.body()

    secret = (settings.REPLICATE_WEBHOOK_SECRET or "").strip()
    if secret and not verify_webhook_signature(
        secret,
        webhook_id=request.headers.get("webhook-id"),
        timestamp=request.headers.get("webhook-timestamp"),
        signature_header=request.headers.get("webhook-signature"),
        body=body,
    ):
        logger.warning("webhook_signature_rejected", extra={"record_id": record_id})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_webhook_signature")

    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_payload")

    record = await runner.repo.get_record(record_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="record_not_found")

    job_id = record.get("provider_job_id")
    if job_id and payload.get("id") and str(payload["id"]) != str(job_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="job_mismatch")

    vendor_status = parse_prediction(payload)
    if isinstance(vendor_status, VendorSucceeded):
        outcome = TerminalOutcome.succeeded(vendor_status.outputs)
    elif isinstance(vendor_status, VendorFailed):
        outcome = TerminalOutcome.failed(vendor_status.error)
    else:
        # only "completed" events are requested, but ignore anything non-terminal
        return {"ok": True, "ignored": True}

    final = await runner.resolve(record_id, outcome, destination_for_record(record))
    logger.info("webhook_resolved", extra={"record_id": record_id, "status": final.get("status") if final else None})
    return {"ok": True, "ignored": False, "record": GenerationView.from_record(final).model_dump(mode="json")}
