from __future__ import annotations

from typing import Optional


class GenerationError(RuntimeError):
    pass


class VendorSubmissionError(GenerationError):
    """Vendor rejected the request; no job exists."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class VendorQueryError(GenerationError):
    """A single status query failed. Transient; the poller counts it as a missed tick."""


class PollTimeoutError(GenerationError):
    def __init__(self, attempts: int, interval_seconds: float):
        super().__init__(
            f"generation_timed_out: no terminal vendor status after {attempts} attempts "
            f"(~{attempts * interval_seconds:g}s)"
        )
        self.attempts = attempts
        self.interval_seconds = interval_seconds


class MaterializationError(GenerationError):
    pass


class InvalidDestinationError(MaterializationError):
    """The destination cannot be turned into a storage path (e.g. an owner id with no usable characters)."""


class StorageError(GenerationError):
    pass
