from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from genmedia.config import settings
from genmedia.domain.enums import JobStatus
from genmedia.domain.errors import VendorQueryError, VendorSubmissionError
from genmedia.domain.models import (
    JobHandle,
    VendorFailed,
    VendorPending,
    VendorStatus,
    VendorSucceeded,
)
from genmedia.services.providers.base import collect_output_urls, error_message

logger = logging.getLogger("genmedia.replicate")


class _RateLimited(RuntimeError):
    pass


def _safe_json(resp: httpx.Response) -> Dict[str, Any]:
    text = (resp.text or "").strip()
    if not text:
        raise ValueError("EMPTY_BODY")
    obj = json.loads(text)
    if not isinstance(obj, dict):
        raise ValueError(f"UNEXPECTED_JSON_TYPE: {type(obj)}")
    return obj


def _outputs(value: Any) -> tuple:
    # Text models stream tokens as a list of strings; keep them verbatim so they can be joined.
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    if isinstance(value, list) and value and all(isinstance(x, str) for x in value):
        return tuple(value)
    return tuple(collect_output_urls(value))


def parse_prediction(payload: Dict[str, Any]) -> VendorStatus:
    """
    Replicate prediction object -> VendorStatus.

    status: starting | processing | succeeded | failed | canceled
    """
    status = str(payload.get("status") or "").strip().lower()

    if status == "succeeded":
        return VendorSucceeded(outputs=_outputs(payload.get("output")))
    if status == "failed":
        return VendorFailed(error=error_message(payload.get("error")))
    if status in ("canceled", "cancelled", "aborted"):
        return VendorFailed(error=error_message(payload.get("error"), default="prediction canceled"))
    if status == "processing":
        return VendorPending(state=JobStatus.running)
    # starting / unknown => keep polling
    return VendorPending(state=JobStatus.pending)


class ReplicateClient:
    provider_name = "replicate"

    def __init__(
        self,
        *,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_token = (api_token or settings.REPLICATE_API_TOKEN or "").strip()
        if not self.api_token:
            raise RuntimeError("missing_replicate_api_token: set REPLICATE_API_TOKEN")

        self.base = (base_url or settings.REPLICATE_BASE_URL).rstrip("/")
        self._http = httpx.AsyncClient(
            timeout=timeout or settings.VENDOR_TIMEOUT_SECONDS,
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _submit_url(self, model_id: str) -> tuple[str, Dict[str, Any]]:
        # "owner/name:version" targets a specific version; "owner/name" the model's latest deployment.
        if ":" in model_id:
            _, version = model_id.split(":", 1)
            return f"{self.base}/v1/predictions", {"version": version}
        return f"{self.base}/v1/models/{model_id}/predictions", {}

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.6, min=0.6, max=6.0),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout, _RateLimited)),
    )
    async def _create_prediction(self, url: str, body: Dict[str, Any]) -> httpx.Response:
        r = await self._http.post(url, headers=self._headers(), json=body)
        if r.status_code == 429:
            raise _RateLimited(r.text[:200])
        return r

    async def submit(
        self,
        model_id: str,
        payload: Dict[str, Any],
        *,
        webhook_url: Optional[str] = None,
    ) -> JobHandle:
        model_id = (model_id or "").strip().strip("/")
        if not model_id:
            raise VendorSubmissionError("model_id_required")

        url, body = self._submit_url(model_id)
        body["input"] = payload or {}
        if webhook_url:
            body["webhook"] = webhook_url
            body["webhook_events_filter"] = ["completed"]

        try:
            r = await self._create_prediction(url, body)
        except _RateLimited as e:
            raise VendorSubmissionError(f"replicate_rate_limited: {e}", status_code=429) from e
        except httpx.HTTPError as e:
            raise VendorSubmissionError(f"replicate_submit_transport_error: {e}") from e

        if r.status_code >= 400:
            detail = r.text[:500]
            try:
                detail = error_message(_safe_json(r), default=detail)
            except ValueError:
                pass
            raise VendorSubmissionError(
                f"replicate_submit_failed {r.status_code}: {detail}",
                status_code=r.status_code,
            )

        try:
            data = _safe_json(r)
        except ValueError as e:
            raise VendorSubmissionError(f"replicate_submit_invalid_response: {e}") from e

        prediction_id = str(data.get("id") or "").strip()
        if not prediction_id:
            raise VendorSubmissionError(f"replicate_submit_missing_id: {data}")

        status_url = (data.get("urls") or {}).get("get") or f"{self.base}/v1/predictions/{prediction_id}"

        logger.info(
            "replicate_prediction_created",
            extra={"model": model_id, "prediction_id": prediction_id, "status": data.get("status")},
        )
        return JobHandle(provider=self.provider_name, job_id=prediction_id, vendor_endpoint=str(status_url))

    async def get_status(self, handle: JobHandle) -> VendorStatus:
        try:
            r = await self._http.get(handle.vendor_endpoint, headers=self._headers())
        except httpx.HTTPError as e:
            raise VendorQueryError(f"replicate_status_transport_error: {e}") from e

        if r.status_code >= 400:
            raise VendorQueryError(f"replicate_status_failed {r.status_code}: {r.text[:200]}")

        try:
            data = _safe_json(r)
        except ValueError as e:
            raise VendorQueryError(f"replicate_status_invalid_response: {e}") from e

        return parse_prediction(data)
