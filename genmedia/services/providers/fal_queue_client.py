from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

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

logger = logging.getLogger("genmedia.fal")

_FAILED_STATUSES = ("FAILED", "ERROR")


def _response_url_for(status_url: str) -> str:
    # .../requests/{id}/status -> .../requests/{id}
    base = status_url.split("?", 1)[0].rstrip("/")
    if base.endswith("/status"):
        base = base[: -len("/status")]
    return base


def extract_outputs(result: Dict[str, Any]) -> List[str]:
    """Output URLs from a fal result: images[], image, video, audio[]/audio."""
    out: List[str] = []
    for key in ("images", "image", "video", "videos", "audio", "audio_file"):
        out.extend(collect_output_urls(result.get(key)))
    return out


class FalQueueClient:
    """
    Wrapper around fal Queue endpoints.

    NOTE:
      - queue.fal.run expects the model payload as TOP-LEVEL JSON (NOT wrapped in {"input": {...}}).
      - the handle's vendor_endpoint is the request's status_url; the result lives at the
        same URL without the trailing "/status".
    """

    provider_name = "fal"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = (api_key or settings.FAL_KEY or "").strip()
        if not self.api_key:
            raise RuntimeError("missing_fal_key")

        self.base_url = (base_url or settings.FAL_QUEUE_BASE_URL or "https://queue.fal.run").strip()
        self._http = httpx.AsyncClient(
            timeout=timeout or settings.VENDOR_TIMEOUT_SECONDS,
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    def _auth_headers(self) -> Dict[str, str]:
        # fal Queue auth uses Authorization: Key <FAL_KEY>
        return {"Authorization": f"Key {self.api_key}"}

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.6, min=0.6, max=6.0),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
    )
    async def _post(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> httpx.Response:
        return await self._http.post(url, headers=headers, json=payload)

    async def submit(
        self,
        model_id: str,
        payload: Dict[str, Any],
        *,
        webhook_url: Optional[str] = None,
    ) -> JobHandle:
        model_id = (model_id or "").strip().lstrip("/")
        if not model_id:
            raise VendorSubmissionError("model_id_required")

        url = f"{self.base_url.rstrip('/')}/{model_id}"
        if webhook_url:
            url = str(httpx.URL(url, params={"fal_webhook": webhook_url}))

        headers = dict(self._auth_headers())
        headers["Content-Type"] = "application/json"

        try:
            r = await self._post(url, headers, payload or {})
        except httpx.HTTPError as e:
            raise VendorSubmissionError(f"fal_submit_transport_error: {e}") from e

        if r.status_code >= 400:
            raise VendorSubmissionError(
                f"fal_submit_failed {r.status_code}: {r.text[:500]}",
                status_code=r.status_code,
            )

        try:
            j = r.json()
        except json.JSONDecodeError as e:
            raise VendorSubmissionError(f"fal_submit_invalid_response: {e}") from e
        if not isinstance(j, dict):
            raise VendorSubmissionError(f"fal_submit_invalid_response: {str(j)[:200]}")

        request_id = str(j.get("request_id") or "").strip()
        status_url = str(j.get("status_url") or "").strip()
        if not request_id or not status_url:
            raise VendorSubmissionError(f"fal_submit_missing_request_id: {j}")

        logger.info("fal_request_queued", extra={"model": model_id, "request_id": request_id})
        return JobHandle(provider=self.provider_name, job_id=request_id, vendor_endpoint=status_url)

    async def _get_json(self, url: str) -> httpx.Response:
        try:
            return await self._http.get(url, headers=self._auth_headers())
        except httpx.HTTPError as e:
            raise VendorQueryError(f"fal_transport_error: {e}") from e

    async def get_status(self, handle: JobHandle) -> VendorStatus:
        r = await self._get_json(handle.vendor_endpoint)
        # status endpoint can return 202 while queued/in-progress
        if r.status_code >= 400:
            raise VendorQueryError(f"fal_status_failed {r.status_code}: {r.text[:200]}")
        try:
            st = r.json()
        except json.JSONDecodeError as e:
            raise VendorQueryError(f"fal_status_invalid_response: {e}") from e
        if not isinstance(st, dict):
            raise VendorQueryError(f"fal_status_invalid_response: {str(st)[:200]}")

        status = str(st.get("status") or "").upper()
        if status == "IN_PROGRESS":
            return VendorPending(state=JobStatus.running)
        if status in _FAILED_STATUSES:
            return VendorFailed(error=error_message(st.get("error") or st))
        if status != "COMPLETED":
            # IN_QUEUE / unknown => keep polling
            return VendorPending(state=JobStatus.pending)

        if st.get("error"):
            return VendorFailed(error=error_message(st.get("error")))

        res = await self._get_json(_response_url_for(handle.vendor_endpoint))
        if 400 <= res.status_code < 500:
            # the request itself failed (validation / runtime error inside the model)
            try:
                body = res.json()
            except json.JSONDecodeError:
                body = res.text[:500]
            return VendorFailed(error=error_message(body))
        if res.status_code >= 500:
            raise VendorQueryError(f"fal_result_failed {res.status_code}: {res.text[:200]}")

        try:
            result = res.json()
        except json.JSONDecodeError as e:
            raise VendorQueryError(f"fal_result_invalid_response: {e}") from e

        if not isinstance(result, dict):
            return VendorFailed(error="fal_invalid_result")
        return VendorSucceeded(outputs=tuple(extract_outputs(result)))
