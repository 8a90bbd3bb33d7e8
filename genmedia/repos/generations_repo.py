from __future__ import annotations

from typing import Any, Dict, List, Optional

import asyncpg

_ACTIVE_JOB = "('pending','running')"
_TERMINAL_RECORD = "('completed','failed')"


class GenerationsRepo:
    """
    One row per generation request.

    CREATE TABLE IF NOT EXISTS media_generations (
      id                uuid PRIMARY KEY DEFAULT gen_random_uuid(),
      owner_id          text NOT NULL,
      model             text NOT NULL,
      provider          text NOT NULL,
      provider_job_id   text,
      vendor_endpoint   text,
      kind              text NOT NULL,
      category          text NOT NULL,
      dispatch          text NOT NULL DEFAULT 'inline',
      status            text NOT NULL DEFAULT 'pending',
      job_status        text NOT NULL DEFAULT 'pending',
      input_json        jsonb NOT NULL DEFAULT '{}'::jsonb,
      filename          text,
      output_url        text,
      stored_url        text,
      storage_path      text,
      output_text       text,
      error_code        text,
      error             text,
      materialize_error text,
      materialize_attempts int NOT NULL DEFAULT 0,
      created_at        timestamptz NOT NULL DEFAULT now(),
      updated_at        timestamptz NOT NULL DEFAULT now()
    );
    CREATE INDEX IF NOT EXISTS media_generations_owner_idx ON media_generations (owner_id, created_at DESC);
    CREATE INDEX IF NOT EXISTS media_generations_claim_idx ON media_generations (dispatch, status, created_at);
    CREATE INDEX IF NOT EXISTS media_generations_unmaterialized_idx ON media_generations (updated_at)
      WHERE status = 'completed' AND stored_url IS NULL AND materialize_error IS NOT NULL;

    Every transition is a single guarded UPDATE. When the guard matches nothing
    the record is already past that point and the current row is returned as-is,
    so a terminal record is never regressed.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create_record(
        self,
        *,
        owner_id: str,
        model: str,
        provider: str,
        kind: str,
        category: str,
        dispatch: str,
        input_json: Dict[str, Any],
        filename: Optional[str] = None,
    ) -> Dict[str, Any]:
        sql = """
        INSERT INTO media_generations
          (owner_id, model, provider, kind, category, dispatch, status, job_status, input_json, filename,
           created_at, updated_at)
        VALUES ($1, $2, $3, $4, $5, $6, 'pending', 'pending', $7::jsonb, $8, now(), now())
        RETURNING *
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                sql, owner_id, model, provider, kind, category, dispatch, dict(input_json or {}), filename
            )
        return dict(row)

    async def get_record(self, record_id: str) -> Optional[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM media_generations WHERE id = $1::uuid", record_id)
        return dict(row) if row else None

    async def list_records(self, owner_id: str, *, limit: int = 50) -> List[Dict[str, Any]]:
        sql = """
        SELECT *
        FROM media_generations
        WHERE owner_id = $1
        ORDER BY created_at DESC
        LIMIT $2
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, owner_id, limit)
        return [dict(r) for r in rows]

    async def _fetch_or_current(self, sql: str, record_id: str, *args: Any) -> Optional[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, record_id, *args)
            if row is None:
                row = await conn.fetchrow("SELECT * FROM media_generations WHERE id = $1::uuid", record_id)
        return dict(row) if row else None

    async def attach_job(self, record_id: str, *, provider_job_id: str, vendor_endpoint: str) -> Optional[Dict[str, Any]]:
        sql = f"""
        UPDATE media_generations
        SET provider_job_id = $2,
            vendor_endpoint = $3,
            updated_at = now()
        WHERE id = $1::uuid
          AND status NOT IN {_TERMINAL_RECORD}
        RETURNING *
        """
        return await self._fetch_or_current(sql, record_id, provider_job_id, vendor_endpoint)

    async def mark_running(self, record_id: str) -> Optional[Dict[str, Any]]:
        sql = f"""
        UPDATE media_generations
        SET status = 'running',
            job_status = 'running',
            updated_at = now()
        WHERE id = $1::uuid
          AND status IN ('pending','running')
          AND job_status IN {_ACTIVE_JOB}
        RETURNING *
        """
        return await self._fetch_or_current(sql, record_id)

    async def claim_success(self, record_id: str, *, output_url: Optional[str]) -> bool:
        """
        Moves the job to succeeded exactly once.

        Only the caller that wins this claim may materialize; a webhook and a poll
        loop racing on the same job both call it and one of them gets False.
        """
        sql = f"""
        UPDATE media_generations
        SET job_status = 'succeeded',
            output_url = COALESCE($2, output_url),
            updated_at = now()
        WHERE id = $1::uuid
          AND job_status IN {_ACTIVE_JOB}
          AND status NOT IN {_TERMINAL_RECORD}
        RETURNING id
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, record_id, output_url)
        return row is not None

    async def finalize_success(
        self,
        record_id: str,
        *,
        status: str,
        output_url: Optional[str] = None,
        stored_url: Optional[str] = None,
        storage_path: Optional[str] = None,
        output_text: Optional[str] = None,
        error_code: Optional[str] = None,
        error: Optional[str] = None,
        materialize_error: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        sql = f"""
        UPDATE media_generations
        SET status = $2,
            job_status = 'succeeded',
            output_url = COALESCE($3, output_url),
            stored_url = COALESCE($4, stored_url),
            storage_path = COALESCE($5, storage_path),
            output_text = COALESCE($6, output_text),
            error_code = $7,
            error = $8,
            materialize_error = $9,
            updated_at = now()
        WHERE id = $1::uuid
          AND status NOT IN {_TERMINAL_RECORD}
        RETURNING *
        """
        return await self._fetch_or_current(
            sql, record_id, status, output_url, stored_url, storage_path, output_text, error_code, error, materialize_error
        )

    async def fail(
        self,
        record_id: str,
        *,
        job_status: str,
        error_code: str,
        error: str,
        require_active_job: bool = True,
    ) -> Optional[Dict[str, Any]]:
        """
        Vendor failure / timeout require the job to still be active. Submission and
        worker-crash failures pass require_active_job=False and only need the record
        itself to be non-terminal.
        """
        sql = f"""
        UPDATE media_generations
        SET status = 'failed',
            job_status = CASE WHEN job_status IN {_ACTIVE_JOB} THEN $2 ELSE job_status END,
            error_code = $3,
            error = $4,
            updated_at = now()
        WHERE id = $1::uuid
          AND status NOT IN {_TERMINAL_RECORD}
          AND (NOT $5::bool OR job_status IN {_ACTIVE_JOB})
        RETURNING *
        """
        return await self._fetch_or_current(sql, record_id, job_status, error_code, error, require_active_job)

    async def claim_worker_records(self, limit: int = 1) -> List[Dict[str, Any]]:
        sql = """
        WITH cte AS (
            SELECT id
            FROM media_generations
            WHERE dispatch = 'worker'
              AND status = 'pending'
              AND provider_job_id IS NOT NULL
            ORDER BY created_at
            FOR UPDATE SKIP LOCKED
            LIMIT $1
        )
        UPDATE media_generations g
        SET status = 'running', updated_at = now()
        FROM cte
        WHERE g.id = cte.id
        RETURNING g.*;
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, limit)
        return [dict(r) for r in rows]

    async def claim_unmaterialized(
        self,
        limit: int = 5,
        *,
        max_attempts: int = 5,
        retry_after_seconds: float = 300.0,
    ) -> List[Dict[str, Any]]:
        """
        Completed records still pointing at the vendor URL because the copy into
        storage failed. Claiming bumps materialize_attempts and updated_at, which
        also spaces out retries of the same row.
        """
        sql = """
        WITH cte AS (
            SELECT id
            FROM media_generations
            WHERE status = 'completed'
              AND stored_url IS NULL
              AND output_url IS NOT NULL
              AND materialize_error IS NOT NULL
              AND materialize_attempts < $2
              AND updated_at <= now() - make_interval(secs => $3::float8)
            ORDER BY updated_at
            FOR UPDATE SKIP LOCKED
            LIMIT $1
        )
        UPDATE media_generations g
        SET materialize_attempts = g.materialize_attempts + 1,
            updated_at = now()
        FROM cte
        WHERE g.id = cte.id
        RETURNING g.*;
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, limit, max_attempts, retry_after_seconds)
        return [dict(r) for r in rows]

    async def attach_materialized(
        self,
        record_id: str,
        *,
        stored_url: str,
        storage_path: str,
    ) -> Optional[Dict[str, Any]]:
        sql = """
        UPDATE media_generations
        SET stored_url = $2,
            storage_path = $3,
            materialize_error = NULL,
            updated_at = now()
        WHERE id = $1::uuid
          AND status = 'completed'
          AND stored_url IS NULL
        RETURNING *
        """
        return await self._fetch_or_current(sql, record_id, stored_url, storage_path)

    async def note_materialize_error(self, record_id: str, error: str) -> Optional[Dict[str, Any]]:
        sql = """
        UPDATE media_generations
        SET materialize_error = $2,
            updated_at = now()
        WHERE id = $1::uuid
          AND stored_url IS NULL
        RETURNING *
        """
        return await self._fetch_or_current(sql, record_id, error)
