from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from genmedia.domain.enums import JobStatus
from genmedia.domain.errors import PollTimeoutError, VendorQueryError
from genmedia.domain.models import (
    JobHandle,
    TerminalOutcome,
    VendorFailed,
    VendorPending,
    VendorSucceeded,
)
from genmedia.services.providers.base import VendorClient

logger = logging.getLogger("genmedia.poller")

TransitionCallback = Callable[[JobStatus], Awaitable[None]]


class Poller:
    """
    Drives one vendor job to a terminal outcome.

    Each tick suspends for `interval_seconds`, then issues exactly one status query.
    The loop ends on vendor success, vendor failure, or after `max_attempts` ticks
    (timedOut). A failed query is a missed tick, never an abort. The wall-clock
    budget is approximately max_attempts * interval_seconds.
    """

    def __init__(
        self,
        client: VendorClient,
        *,
        interval_seconds: float,
        max_attempts: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        self.client = client
        self.interval_seconds = float(interval_seconds)
        self.max_attempts = int(max_attempts)
        self._sleep = sleep

    async def poll(
        self,
        handle: JobHandle,
        *,
        on_transition: Optional[TransitionCallback] = None,
    ) -> TerminalOutcome:
        last_state: JobStatus = JobStatus.pending
        query_errors = 0

        for attempt in range(1, self.max_attempts + 1):
            await self._sleep(self.interval_seconds)

            try:
                status = await self.client.get_status(handle)
            except VendorQueryError as e:
                query_errors += 1
                logger.warning(
                    "poll_query_failed",
                    extra={"job_id": handle.job_id, "attempt": attempt, "error": str(e)},
                )
                continue

            if isinstance(status, VendorSucceeded):
                logger.info("poll_succeeded", extra={"job_id": handle.job_id, "attempt": attempt})
                return TerminalOutcome.succeeded(status.outputs, attempts=attempt)

            if isinstance(status, VendorFailed):
                logger.info(
                    "poll_vendor_failed",
                    extra={"job_id": handle.job_id, "attempt": attempt, "error": status.error},
                )
                return TerminalOutcome.failed(status.error, attempts=attempt)

            if isinstance(status, VendorPending) and status.state != last_state:
                last_state = status.state
                if on_transition is not None:
                    try:
                        await on_transition(status.state)
                    except Exception:
                        logger.warning(
                            "poll_transition_hook_failed",
                            extra={"job_id": handle.job_id, "state": status.state.value},
                            exc_info=True,
                        )

        err = PollTimeoutError(self.max_attempts, self.interval_seconds)
        logger.warning(
            "poll_timed_out",
            extra={"job_id": handle.job_id, "attempts": self.max_attempts, "query_errors": query_errors},
        )
        return TerminalOutcome.timed_out(str(err), attempts=self.max_attempts)
