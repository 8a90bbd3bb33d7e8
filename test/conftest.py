from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from genmedia.domain.errors import StorageError
from genmedia.domain.models import JobHandle, VendorStatus
from genmedia.services.azure_storage_service import StoredObject
from genmedia.services.materializer import ResultMaterializer
from genmedia.services.poller import Poller
from genmedia.services.job_runner import JobRunner
from genmedia.services.providers.catalog import PollCadence
from genmedia.services.record_updater import RecordUpdater

_ACTIVE_JOB = ("pending", "running")
_TERMINAL_RECORD = ("completed", "failed")


class InMemoryGenerationsRepo:
    """Same guard semantics as GenerationsRepo, without Postgres."""

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.terminal_writes: List[str] = []
        self.claims: List[str] = []

    async def create_record(self, *, owner_id, model, provider, kind, category, dispatch, input_json, filename=None):
        rid = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        row = {
            "id": rid,
            "owner_id": owner_id,
            "model": model,
            "provider": provider,
            "provider_job_id": None,
            "vendor_endpoint": None,
            "kind": kind,
            "category": category,
            "dispatch": dispatch,
            "status": "pending",
            "job_status": "pending",
            "input_json": dict(input_json),
            "filename": filename,
            "output_url": None,
            "stored_url": None,
            "storage_path": None,
            "output_text": None,
            "error_code": None,
            "error": None,
            "materialize_error": None,
            "materialize_attempts": 0,
            "created_at": now,
            "updated_at": now,
        }
        self.rows[rid] = row
        return dict(row)

    async def get_record(self, record_id):
        row = self.rows.get(record_id)
        return dict(row) if row else None

    async def list_records(self, owner_id, *, limit=50):
        rows = [dict(r) for r in self.rows.values() if r["owner_id"] == owner_id]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return rows[:limit]

    def _touch(self, row: Dict[str, Any], **fields: Any) -> Dict[str, Any]:
        row.update(fields)
        row["updated_at"] = datetime.now(timezone.utc)
        return dict(row)

    async def attach_job(self, record_id, *, provider_job_id, vendor_endpoint):
        row = self.rows.get(record_id)
        if row and row["status"] not in _TERMINAL_RECORD:
            return self._touch(row, provider_job_id=provider_job_id, vendor_endpoint=vendor_endpoint)
        return dict(row) if row else None

    async def mark_running(self, record_id):
        row = self.rows.get(record_id)
        if row and row["status"] in ("pending", "running") and row["job_status"] in _ACTIVE_JOB:
            return self._touch(row, status="running", job_status="running")
        return dict(row) if row else None

    async def claim_success(self, record_id, *, output_url):
        row = self.rows.get(record_id)
        if not row or row["job_status"] not in _ACTIVE_JOB or row["status"] in _TERMINAL_RECORD:
            return False
        self._touch(row, job_status="succeeded", output_url=output_url or row["output_url"])
        self.claims.append(record_id)
        return True

    async def finalize_success(
        self,
        record_id,
        *,
        status,
        output_url=None,
        stored_url=None,
        storage_path=None,
        output_text=None,
        error_code=None,
        error=None,
        materialize_error=None,
    ):
        row = self.rows.get(record_id)
        if not row or row["status"] in _TERMINAL_RECORD:
            return dict(row) if row else None
        self.terminal_writes.append(record_id)
        return self._touch(
            row,
            status=status,
            job_status="succeeded",
            output_url=output_url or row["output_url"],
            stored_url=stored_url or row["stored_url"],
            storage_path=storage_path or row["storage_path"],
            output_text=output_text if output_text is not None else row["output_text"],
            error_code=error_code,
            error=error,
            materialize_error=materialize_error,
        )

    async def fail(self, record_id, *, job_status, error_code, error, require_active_job=True):
        row = self.rows.get(record_id)
        if not row or row["status"] in _TERMINAL_RECORD:
            return dict(row) if row else None
        if require_active_job and row["job_status"] not in _ACTIVE_JOB:
            return dict(row)
        self.terminal_writes.append(record_id)
        return self._touch(
            row,
            status="failed",
            job_status=job_status if row["job_status"] in _ACTIVE_JOB else row["job_status"],
            error_code=error_code,
            error=error,
        )

    async def claim_worker_records(self, limit=1):
        out = []
        for row in sorted(self.rows.values(), key=lambda r: r["created_at"]):
            if len(out) >= limit:
                break
            if row["dispatch"] == "worker" and row["status"] == "pending" and row["provider_job_id"]:
                out.append(self._touch(row, status="running"))
        return out

    async def claim_unmaterialized(self, limit=5, *, max_attempts=5, retry_after_seconds=300.0):
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=retry_after_seconds)
        out = []
        for row in sorted(self.rows.values(), key=lambda r: r["updated_at"]):
            if len(out) >= limit:
                break
            if (
                row["status"] == "completed"
                and row["stored_url"] is None
                and row["output_url"]
                and row["materialize_error"]
                and row["materialize_attempts"] < max_attempts
                and row["updated_at"] <= cutoff
            ):
                out.append(self._touch(row, materialize_attempts=row["materialize_attempts"] + 1))
        return out

    async def attach_materialized(self, record_id, *, stored_url, storage_path):
        row = self.rows.get(record_id)
        if row and row["status"] == "completed" and row["stored_url"] is None:
            return self._touch(row, stored_url=stored_url, storage_path=storage_path, materialize_error=None)
        return dict(row) if row else None

    async def note_materialize_error(self, record_id, error):
        row = self.rows.get(record_id)
        if row and row["stored_url"] is None:
            return self._touch(row, materialize_error=error)
        return dict(row) if row else None


class FakeVendorClient:
    """
    Replays a script of statuses, one per get_status call. The last entry repeats.
    Exception instances in the script are raised instead of returned.
    """

    def __init__(self, script: Optional[List[Any]] = None, *, provider_name: str = "replicate", submit_error=None):
        self.provider_name = provider_name
        self.script = list(script or [])
        self.submit_error = submit_error
        self.status_calls = 0
        self.submitted: List[Dict[str, Any]] = []

    async def submit(self, model_id, payload, *, webhook_url=None) -> JobHandle:
        if self.submit_error is not None:
            raise self.submit_error
        job_id = f"job-{len(self.submitted) + 1}"
        self.submitted.append({"model_id": model_id, "payload": payload, "webhook_url": webhook_url})
        return JobHandle(provider=self.provider_name, job_id=job_id, vendor_endpoint=f"https://vendor.test/{job_id}")

    async def get_status(self, handle: JobHandle) -> VendorStatus:
        idx = min(self.status_calls, len(self.script) - 1)
        self.status_calls += 1
        item = self.script[idx]
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        pass


class FakeStorage:
    def __init__(self, *, container: str = "media-private", public: bool = False, fail_write=False, fail_sign=False):
        self.container = container
        self.public = public
        self.fail_write = fail_write
        self.fail_sign = fail_sign
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.sign_expiries: List[timedelta] = []

    async def write(self, path, data, content_type):
        if self.fail_write:
            raise StorageError("blob_upload_failed: disk on fire")
        self.objects[path] = bytes(data)
        return StoredObject(container=self.container, path=path, content_type=content_type, bytes=len(data))

    async def sign_url(self, obj, expiry):
        if self.fail_sign:
            raise StorageError("could_not_parse_storage_account_credentials")
        self.sign_expiries.append(expiry)
        return f"https://acct.blob.core.windows.net/{obj.container}/{obj.path}?sig=test"

    async def make_public(self, obj):
        if not self.public:
            raise StorageError("container_not_public")
        return f"https://acct.blob.core.windows.net/{obj.container}/{obj.path}"

    async def delete(self, obj):
        self.deleted.append(obj.path)
        self.objects.pop(obj.path, None)


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def vendor_asset_handler(body: bytes = b"\x00\x00\x00\x18ftypmp42", content_type: str = "video/mp4") -> Callable:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body, headers={"content-type": content_type})

    return handler


@pytest.fixture
def repo():
    """In-memory record store"""
    return InMemoryGenerationsRepo()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def make_runner(repo, storage, sleep):
    """Factory for a JobRunner wired entirely to fakes."""

    def _make(
        client: FakeVendorClient,
        *,
        handler: Optional[Callable] = None,
        max_attempts: int = 5,
        interval: float = 1.0,
        policy: str = "complete",
        public_storage: Optional[FakeStorage] = None,
        public_categories=(),
        public_base_url: str = "",
    ) -> JobRunner:
        materializer = ResultMaterializer(
            storage,
            public_storage,
            public_categories=list(public_categories),
            signed_url_expiry=timedelta(days=3650),
            timeout=5,
            max_bytes=1024 * 1024,
            transport=httpx.MockTransport(handler or vendor_asset_handler()),
        )

        def poller_factory(c, cadence: PollCadence) -> Poller:
            return Poller(c, interval_seconds=interval, max_attempts=max_attempts, sleep=sleep)

        return JobRunner(
            repo=repo,
            clients={client.provider_name: client},
            materializer=materializer,
            updater=RecordUpdater(repo, failure_policy=policy),
            poller_factory=poller_factory,
            public_base_url=public_base_url,
        )

    return _make


