from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from genmedia.config import settings
from genmedia.domain.enums import ErrorCode, JobStatus, RecordStatus
from genmedia.domain.models import MaterializedAsset, TerminalOutcome

logger = logging.getLogger("genmedia.record_updater")


class RecordUpdater:
    """Writes a terminal outcome onto its generation record as one guarded update."""

    def __init__(self, repo: Any, *, failure_policy: Optional[str] = None):
        self.repo = repo
        self.failure_policy = (failure_policy or settings.MATERIALIZE_FAILURE_POLICY or "complete").strip().lower()

    async def apply_outcome(
        self,
        record_id: str,
        outcome: TerminalOutcome,
        asset: Optional[MaterializedAsset] = None,
        materialize_error: Optional[str] = None,
        *,
        text_output: bool = False,
    ) -> Optional[Dict[str, Any]]:
        if outcome.status == JobStatus.succeeded:
            return await self._apply_success(record_id, outcome, asset, materialize_error, text_output)

        if outcome.status == JobStatus.failed:
            logger.warning("generation_failed", extra={"record_id": record_id, "error": outcome.error})
            return await self.repo.fail(
                record_id,
                job_status=JobStatus.failed.value,
                error_code=ErrorCode.vendor_failed.value,
                error=outcome.error or "generation failed",
            )

        if outcome.status == JobStatus.timed_out:
            logger.warning(
                "generation_timed_out",
                extra={"record_id": record_id, "attempts": outcome.attempts},
            )
            return await self.repo.fail(
                record_id,
                job_status=JobStatus.timed_out.value,
                error_code=ErrorCode.timeout.value,
                error=outcome.error or "generation_timed_out",
            )

        raise ValueError(f"outcome is not terminal: {outcome.status}")

    async def _apply_success(
        self,
        record_id: str,
        outcome: TerminalOutcome,
        asset: Optional[MaterializedAsset],
        materialize_error: Optional[str],
        text_output: bool,
    ) -> Optional[Dict[str, Any]]:
        if text_output:
            return await self.repo.finalize_success(
                record_id,
                status=RecordStatus.completed.value,
                output_text="".join(outcome.outputs),
            )

        if asset is not None:
            return await self.repo.finalize_success(
                record_id,
                status=RecordStatus.completed.value,
                output_url=outcome.output_url,
                stored_url=asset.url,
                storage_path=asset.storage_path,
            )

        # Vendor succeeded but the copy into our storage did not; the vendor URL
        # stays on the record until it expires.
        msg = materialize_error or "materialization failed"
        logger.warning("materialize_degraded", extra={"record_id": record_id, "error": msg})
        if self.failure_policy == "fail":
            return await self.repo.finalize_success(
                record_id,
                status=RecordStatus.failed.value,
                output_url=outcome.output_url,
                error_code=ErrorCode.materialize_failed.value,
                error=msg,
                materialize_error=msg,
            )
        return await self.repo.finalize_success(
            record_id,
            status=RecordStatus.completed.value,
            output_url=outcome.output_url,
            materialize_error=msg,
        )
