from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from genmedia.config import settings
from genmedia.db import close_pool, get_pool
from genmedia.domain.enums import ErrorCode, MediaKind
from genmedia.logging import configure_logging
from genmedia.repos.generations_repo import GenerationsRepo
from genmedia.services.job_runner import (
    JobRunner,
    build_job_runner,
    destination_for_record,
    handle_from_record,
)
from genmedia.services.providers.catalog import cadence_for

logger = logging.getLogger("genmedia.worker")


async def process_record(runner: JobRunner, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Drive one claimed wait=false record to a terminal state. Never raises."""
    record_id = str(row["id"])
    try:
        return await runner.run_to_completion(
            handle_from_record(row),
            destination_for_record(row),
            record_id,
            cadence=cadence_for(MediaKind(str(row["kind"]))),
        )
    except Exception as e:
        logger.exception("record_unhandled_exception", extra={"record_id": record_id, "error": str(e)})
        # the record must not stay running forever
        return await runner.fail_unhandled(record_id, e, error_code=ErrorCode.worker_crash)


async def run_once(runner: JobRunner, *, limit: Optional[int] = None) -> int:
    rows = await runner.repo.claim_worker_records(limit=limit or settings.WORKER_CLAIM_LIMIT)
    if rows:
        await asyncio.gather(*(process_record(runner, r) for r in rows))
    return len(rows)


async def run_rematerialize_once(runner: JobRunner, *, limit: Optional[int] = None) -> int:
    """Retry the storage copy for completed records that only kept the vendor URL."""
    if not settings.REMATERIALIZE_ENABLED:
        return 0
    rows = await runner.rematerialize_pending(limit)
    return len(rows)


async def run_forever(runner: Optional[JobRunner] = None) -> None:
    if runner is None:
        pool = await get_pool()
        runner = build_job_runner(GenerationsRepo(pool))

    while True:
        try:
            claimed = await run_once(runner)
            claimed += await run_rematerialize_once(runner)
            if not claimed:
                await asyncio.sleep(settings.WORKER_IDLE_SLEEP_SECONDS)
        except Exception as e:
            logger.exception("worker_loop_exception", extra={"error": str(e)})
            await asyncio.sleep(1.0)  # small backoff to avoid tight crash loops


async def _main() -> None:
    configure_logging()
    try:
        await run_forever()
    finally:
        await close_pool()


if __name__ == "__main__":
    asyncio.run(_main())
