from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from genmedia.domain.enums import JobStatus, MediaKind, RecordStatus, StorageCategory


# -----------------------------------------------------------------------------
# Job handle + vendor status
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class JobHandle:
    provider: str
    job_id: str
    vendor_endpoint: str  # URL the status query is issued against


@dataclass(frozen=True)
class VendorPending:
    state: JobStatus = JobStatus.pending  # pending | running


@dataclass(frozen=True)
class VendorSucceeded:
    outputs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class VendorFailed:
    error: str = "generation failed"


VendorStatus = Union[VendorPending, VendorSucceeded, VendorFailed]


@dataclass(frozen=True)
class TerminalOutcome:
    status: JobStatus  # succeeded | failed | timedOut
    outputs: Tuple[str, ...] = ()
    error: Optional[str] = None
    attempts: int = 0

    @classmethod
    def succeeded(cls, outputs: Tuple[str, ...], *, attempts: int = 0) -> "TerminalOutcome":
        return cls(status=JobStatus.succeeded, outputs=tuple(outputs), attempts=attempts)

    @classmethod
    def failed(cls, error: str, *, attempts: int = 0) -> "TerminalOutcome":
        return cls(status=JobStatus.failed, error=error, attempts=attempts)

    @classmethod
    def timed_out(cls, error: str, *, attempts: int) -> "TerminalOutcome":
        return cls(status=JobStatus.timed_out, error=error, attempts=attempts)

    @property
    def output_url(self) -> Optional[str]:
        return self.outputs[0] if self.outputs else None


# -----------------------------------------------------------------------------
# Materialization
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Destination:
    owner_id: str
    category: StorageCategory
    base_name: str = "output"
    content_type: Optional[str] = None


@dataclass(frozen=True)
class MaterializedAsset:
    storage_path: str
    url: str
    content_type: str
    bytes: int
    sha256: str
    public: bool = False


@dataclass(frozen=True)
class ModelPreset:
    key: str
    provider: str  # "replicate" | "fal"
    model_id: str
    kind: MediaKind
    category: StorageCategory
    content_type: Optional[str] = None

    @property
    def materialize(self) -> bool:
        return self.kind != MediaKind.text


# -----------------------------------------------------------------------------
# API
# -----------------------------------------------------------------------------

class GenerationCreate(BaseModel):
    """
    Caller -> genmedia contract.

    `input` is passed to the vendor model unchanged; only `prompt` is required.
    `wait=false` hands the poll loop to the worker (or a vendor webhook).
    """

    model: str = Field(min_length=1, max_length=128)
    owner_id: str = Field(min_length=1, max_length=128)
    input: Dict[str, Any] = Field(default_factory=dict)
    filename: Optional[str] = Field(default=None, max_length=200)
    wait: bool = True

    @field_validator("input")
    @classmethod
    def prompt_required(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        prompt = v.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt_required")
        v = dict(v)
        v["prompt"] = prompt.strip()
        return v


class GenerationView(BaseModel):
    id: str
    owner_id: str
    model: str
    status: RecordStatus
    job_status: JobStatus
    provider: Optional[str] = None
    provider_job_id: Optional[str] = None
    output_url: Optional[str] = None
    stored_url: Optional[str] = None
    output_text: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    materialize_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "GenerationView":
        return cls(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            model=str(row["model"]),
            status=RecordStatus(str(row["status"])),
            job_status=JobStatus(str(row["job_status"])),
            provider=row.get("provider"),
            provider_job_id=row.get("provider_job_id"),
            output_url=row.get("output_url"),
            stored_url=row.get("stored_url"),
            output_text=row.get("output_text"),
            error_code=row.get("error_code"),
            error=row.get("error"),
            materialize_error=row.get("materialize_error"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class ModelView(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    key: str
    provider: str
    model_id: str
    kind: MediaKind
    category: StorageCategory


class UploadFromUrlRequest(BaseModel):
    url: str = Field(min_length=1)
    owner_id: str = Field(min_length=1, max_length=128)
    category: StorageCategory = StorageCategory.uploads
    filename: Optional[str] = Field(default=None, max_length=200)
    content_type: Optional[str] = None


class UploadFromUrlResponse(BaseModel):
    url: str
    storage_path: str
    content_type: str
    bytes: int
    public: bool = False


class GenerationList(BaseModel):
    items: List[GenerationView] = Field(default_factory=list)
