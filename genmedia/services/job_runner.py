from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

from genmedia.config import settings
from genmedia.domain.enums import Dispatch, ErrorCode, JobStatus, MediaKind, StorageCategory
from genmedia.domain.errors import MaterializationError, VendorSubmissionError
from genmedia.domain.models import (
    Destination,
    GenerationCreate,
    JobHandle,
    ModelPreset,
    TerminalOutcome,
)
from genmedia.services.azure_storage_service import AzureBlobStorage
from genmedia.services.materializer import ResultMaterializer
from genmedia.services.poller import Poller
from genmedia.services.providers.base import VendorClient
from genmedia.services.providers.catalog import PollCadence, cadence_for, get_preset
from genmedia.services.providers.fal_queue_client import FalQueueClient
from genmedia.services.providers.replicate_client import ReplicateClient
from genmedia.services.record_updater import RecordUpdater

logger = logging.getLogger("genmedia.job_runner")

PollerFactory = Callable[[VendorClient, PollCadence], Poller]


def _default_poller_factory(client: VendorClient, cadence: PollCadence) -> Poller:
    return Poller(client, interval_seconds=cadence.interval_seconds, max_attempts=cadence.max_attempts)


def destination_for(preset: ModelPreset, owner_id: str, filename: Optional[str] = None) -> Optional[Destination]:
    """None for text models: their output is stored on the record, not copied to storage."""
    if not preset.materialize:
        return None
    return Destination(
        owner_id=owner_id,
        category=preset.category,
        base_name=filename or preset.key,
        content_type=preset.content_type,
    )


def destination_for_record(row: Dict[str, Any]) -> Optional[Destination]:
    if MediaKind(str(row["kind"])) == MediaKind.text:
        return None
    preset = get_preset(str(row["model"]))
    return Destination(
        owner_id=str(row["owner_id"]),
        category=StorageCategory(str(row["category"])),
        base_name=row.get("filename") or str(row["model"]),
        content_type=preset.content_type if preset else None,
    )


def handle_from_record(row: Dict[str, Any]) -> JobHandle:
    job_id = row.get("provider_job_id")
    if not job_id:
        raise ValueError(f"record has no vendor job: {row.get('id')}")
    return JobHandle(
        provider=str(row["provider"]),
        job_id=str(job_id),
        vendor_endpoint=str(row.get("vendor_endpoint") or ""),
    )


class JobRunner:
    """
    poll -> claim -> materialize -> record update.

    Poll loops (inline requests, the worker) and vendor webhooks all finish a job
    through resolve(). Success is claimed on the record first, so whichever caller
    loses the race skips materialization and returns the current row.
    """

    def __init__(
        self,
        *,
        repo: Any,
        clients: Dict[str, VendorClient],
        materializer: ResultMaterializer,
        updater: Optional[RecordUpdater] = None,
        poller_factory: Optional[PollerFactory] = None,
        public_base_url: Optional[str] = None,
    ):
        self.repo = repo
        self.clients = dict(clients)
        self.materializer = materializer
        self.updater = updater or RecordUpdater(repo)
        self.poller_factory = poller_factory or _default_poller_factory
        base = public_base_url if public_base_url is not None else settings.PUBLIC_BASE_URL
        self.public_base_url = (base or "").strip().rstrip("/")

    def client_for(self, provider: str) -> VendorClient:
        client = self.clients.get(provider)
        if client is None:
            raise VendorSubmissionError(f"provider_not_configured: {provider}")
        return client

    def webhook_url_for(self, provider: str, record_id: str) -> Optional[str]:
        if not self.public_base_url or provider != "replicate":
            return None
        return f"{self.public_base_url}/api/webhooks/replicate?record_id={quote(record_id)}"

    async def submit(
        self,
        preset: ModelPreset,
        req: GenerationCreate,
        *,
        dispatch: Dispatch = Dispatch.inline,
    ) -> Tuple[Dict[str, Any], JobHandle]:
        client = self.client_for(preset.provider)

        record = await self.repo.create_record(
            owner_id=req.owner_id,
            model=preset.key,
            provider=preset.provider,
            kind=preset.kind.value,
            category=preset.category.value,
            dispatch=dispatch.value,
            input_json=req.input,
            filename=req.filename,
        )
        record_id = str(record["id"])

        try:
            handle = await client.submit(
                preset.model_id,
                req.input,
                webhook_url=self.webhook_url_for(preset.provider, record_id),
            )
        except VendorSubmissionError as e:
            logger.warning(
                "submit_failed",
                extra={"record_id": record_id, "model": preset.key, "error": str(e)},
            )
            await self.repo.fail(
                record_id,
                job_status=JobStatus.failed.value,
                error_code=ErrorCode.submit_failed.value,
                error=str(e),
                require_active_job=False,
            )
            raise

        record = await self.repo.attach_job(
            record_id,
            provider_job_id=handle.job_id,
            vendor_endpoint=handle.vendor_endpoint,
        )
        logger.info(
            "submitted",
            extra={"record_id": record_id, "model": preset.key, "job_id": handle.job_id, "dispatch": dispatch.value},
        )
        return record, handle

    async def run_to_completion(
        self,
        handle: JobHandle,
        destination: Optional[Destination],
        record_id: str,
        *,
        cadence: Optional[PollCadence] = None,
    ) -> Optional[Dict[str, Any]]:
        client = self.client_for(handle.provider)
        poller = self.poller_factory(client, cadence or cadence_for(MediaKind.image))

        async def _on_transition(state: JobStatus) -> None:
            if state == JobStatus.running:
                await self.repo.mark_running(record_id)

        outcome = await poller.poll(handle, on_transition=_on_transition)
        return await self.resolve(record_id, outcome, destination)

    async def resolve(
        self,
        record_id: str,
        outcome: TerminalOutcome,
        destination: Optional[Destination],
    ) -> Optional[Dict[str, Any]]:
        if outcome.status != JobStatus.succeeded:
            return await self.updater.apply_outcome(record_id, outcome)

        text_output = destination is None
        if not text_output and not outcome.output_url:
            return await self.updater.apply_outcome(
                record_id,
                TerminalOutcome.failed("vendor returned no output", attempts=outcome.attempts),
            )

        claimed = await self.repo.claim_success(
            record_id,
            output_url=None if text_output else outcome.output_url,
        )
        if not claimed:
            logger.info("success_already_claimed", extra={"record_id": record_id})
            return await self.repo.get_record(record_id)

        if text_output:
            return await self.updater.apply_outcome(record_id, outcome, text_output=True)

        # success is claimed: from here on the record has to reach a terminal state
        try:
            asset = await self.materializer.materialize(outcome.output_url, destination)
        except MaterializationError as e:
            return await self.updater.apply_outcome(record_id, outcome, materialize_error=str(e))
        except Exception as e:
            logger.exception("materialize_unexpected_error", extra={"record_id": record_id})
            return await self.updater.apply_outcome(
                record_id, outcome, materialize_error=f"materialize_unexpected_error: {e}"
            )
        return await self.updater.apply_outcome(record_id, outcome, asset=asset)

    async def rematerialize(self, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Retry the copy for a completed record that still only has the vendor URL.
        The record stays completed either way; only stored_url / materialize_error move.
        """
        record_id = str(row["id"])
        if not row.get("output_url"):
            return row

        try:
            destination = destination_for_record(row)
            if destination is None:
                return row
            asset = await self.materializer.materialize(str(row["output_url"]), destination)
        except Exception as e:
            logger.warning(
                "rematerialize_failed",
                extra={"record_id": record_id, "attempts": row.get("materialize_attempts"), "error": str(e)},
            )
            return await self.repo.note_materialize_error(record_id, str(e) or type(e).__name__)

        logger.info("rematerialized", extra={"record_id": record_id, "storage_path": asset.storage_path})
        return await self.repo.attach_materialized(record_id, stored_url=asset.url, storage_path=asset.storage_path)

    async def rematerialize_pending(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        rows = await self.repo.claim_unmaterialized(
            limit or settings.REMATERIALIZE_BATCH,
            max_attempts=settings.REMATERIALIZE_MAX_ATTEMPTS,
            retry_after_seconds=settings.REMATERIALIZE_RETRY_SECONDS,
        )
        out: List[Dict[str, Any]] = []
        for row in rows:
            updated = await self.rematerialize(row)
            if updated is not None:
                out.append(updated)
        return out

    async def fail_unhandled(
        self, record_id: str, error: Exception, *, error_code: ErrorCode
    ) -> Optional[Dict[str, Any]]:
        """Last-resort write for a crash outside the normal outcome path; only needs a non-terminal record."""
        try:
            return await self.repo.fail(
                record_id,
                job_status=JobStatus.failed.value,
                error_code=error_code.value,
                error=str(error) or type(error).__name__,
                require_active_job=False,
            )
        except Exception:
            logger.exception("record_fail_marking_failed", extra={"record_id": record_id})
            return None

    async def aclose(self) -> None:
        for client in self.clients.values():
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()
        await self.materializer.aclose()


def build_job_runner(repo: Any) -> JobRunner:
    """Wire vendor clients and storage from settings. Unconfigured vendors are skipped."""
    clients: Dict[str, VendorClient] = {}
    if settings.REPLICATE_API_TOKEN:
        clients["replicate"] = ReplicateClient()
    if settings.FAL_KEY:
        clients["fal"] = FalQueueClient()
    if not clients:
        logger.warning("no_vendor_clients_configured")

    private = AzureBlobStorage.for_private()
    public = AzureBlobStorage.for_public() if settings.PUBLIC_CATEGORIES else None
    materializer = ResultMaterializer(private, public)

    return JobRunner(repo=repo, clients=clients, materializer=materializer)
