"""
Relational job queue.

Producers call ``push`` and return immediately; workers call ``work``.
A job's life:

    pending --claim--> reserved --success--> (deleted)
                          |
                          +--failure, attempts < max--> pending (after backoff)
                          +--failure, attempts = max--> dead
                          +--lease expired, attempts < max--> claimable again
                          +--lease expired, attempts = max--> dead

Claims are optimistic: a worker flips ``status`` from pending to reserved
with a conditional UPDATE and only proceeds when exactly one row changed, so
concurrent workers never run the same claim twice. Delivery is at least once.
"""

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from tessera.core.config import Settings
from tessera.core.database import Database
from tessera.queue.registry import JobRegistry
from tessera.records.mapper import check_identifier

logger = logging.getLogger(__name__)

PENDING = "pending"
RESERVED = "reserved"
DEAD = "dead"

CLAIM_BATCH = 5
MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class Job:
    id: int
    queue: str
    handler: str
    payload: dict[str, Any]
    attempts: int


class JobQueue:
    """
    Args:
        database: Connection provider
        registry: Handlers available to this worker (producers may omit it)
        table: Job store table
        max_attempts: Attempts before a job is dead-lettered
        backoff_seconds: Base retry delay; doubled after each failed attempt
        visibility_timeout: Seconds before a reserved job may be claimed again
        poll_interval: Seconds the worker sleeps when the queue is empty
    """

    def __init__(
        self,
        database: Database,
        registry: JobRegistry | None = None,
        table: str = "jobs",
        max_attempts: int = 3,
        backoff_seconds: int = 10,
        visibility_timeout: int = 300,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.time,
    ):
        self.database = database
        self.registry = registry or JobRegistry()
        self.table = check_identifier(table, "table name")
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.visibility_timeout = visibility_timeout
        self.poll_interval = poll_interval
        self._clock = clock

    @classmethod
    def from_settings(
        cls, database: Database, settings: Settings, registry: JobRegistry | None = None
    ) -> "JobQueue":
        return cls(
            database,
            registry=registry,
            max_attempts=settings.queue_max_attempts,
            backoff_seconds=settings.queue_backoff_seconds,
            visibility_timeout=settings.queue_visibility_timeout,
            poll_interval=settings.queue_poll_interval,
        )

    def _now(self) -> int:
        return int(self._clock())

    def backoff_for(self, attempts: int) -> int:
        """Delay before the next try after ``attempts`` failed attempts."""
        return self.backoff_seconds * 2 ** max(0, attempts - 1)

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    async def push(
        self,
        handler: str,
        payload: dict[str, Any] | None = None,
        queue: str = "default",
        delay: int = 0,
    ) -> int:
        """
        Enqueue a job. Never runs it inline.

        Returns:
            The job id
        """
        now = self._now()
        params = {
            "queue": queue,
            "handler": handler,
            "payload": json.dumps(payload or {}),
            "status": PENDING,
            "available_at": now + max(0, delay),
            "created_at": now,
        }
        sql = (
            f"INSERT INTO {self.table} "
            "(queue, handler, payload, status, attempts, available_at, created_at) "
            "VALUES (:queue, :handler, :payload, :status, 0, :available_at, :created_at)"
        )
        async with self.database.transaction() as conn:
            returning = conn.engine.dialect.insert_returning
            result = await conn.execute(text(sql + (" RETURNING id" if returning else "")), params)
            job_id = result.scalar_one() if returning else result.lastrowid

        logger.info(f"Queued job {job_id} ({handler}) on {queue!r}")
        return job_id

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    def _claimable(self) -> str:
        return (
            f"((status = '{PENDING}' AND available_at <= :now) "
            f"OR (status = '{RESERVED}' AND reserved_at <= :lease_expired "
            "AND attempts < :max_attempts))"
        )

    async def _bury_abandoned(self, conn: AsyncConnection, queue: str, window: dict[str, int]) -> None:
        """Dead-letter lease-expired jobs that have used up their attempts."""
        result = await conn.execute(
            text(
                f"UPDATE {self.table} SET status = '{DEAD}', reserved_at = NULL, "
                "last_error = :error, failed_at = :now "
                f"WHERE queue = :queue AND status = '{RESERVED}' "
                "AND reserved_at <= :lease_expired AND attempts >= :max_attempts"
            ),
            {"queue": queue, "error": "Lease expired on the final attempt", **window},
        )
        await conn.commit()
        if result.rowcount:
            logger.error(
                f"Dead-lettered {result.rowcount} job(s) on {queue!r} whose final attempt never finished"
            )

    async def reserve(self, queue: str = "default") -> Job | None:
        """
        Claim the next due job on ``queue``, or return None.

        A reserved job whose lease expired is claimable again while it has
        attempts left; once it has none it is dead-lettered instead.
        """
        now = self._now()
        window = {
            "now": now,
            "lease_expired": now - self.visibility_timeout,
            "max_attempts": self.max_attempts,
        }

        async with self.database.connect() as conn:
            await self._bury_abandoned(conn, queue, window)

            result = await conn.execute(
                text(
                    f"SELECT id FROM {self.table} WHERE queue = :queue AND {self._claimable()} "
                    "ORDER BY available_at, id LIMIT :limit"
                ),
                {"queue": queue, "limit": CLAIM_BATCH, **window},
            )
            candidates = [row[0] for row in result]
            await conn.commit()

            for job_id in candidates:
                claimed = await conn.execute(
                    text(
                        f"UPDATE {self.table} SET status = '{RESERVED}', reserved_at = :now, "
                        f"attempts = attempts + 1 WHERE id = :id AND {self._claimable()}"
                    ),
                    {"id": job_id, **window},
                )
                await conn.commit()
                if claimed.rowcount != 1:
                    # Another worker won this one
                    continue

                row = (
                    await conn.execute(
                        text(
                            f"SELECT id, queue, handler, payload, attempts FROM {self.table} "
                            "WHERE id = :id"
                        ),
                        {"id": job_id},
                    )
                ).mappings().one()
                await conn.commit()
                return Job(
                    id=row["id"],
                    queue=row["queue"],
                    handler=row["handler"],
                    payload=json.loads(row["payload"] or "{}"),
                    attempts=row["attempts"],
                )
        return None

    async def work_once(self, queue: str = "default") -> bool:
        """
        Claim and run a single job.

        Returns:
            True if a job was claimed (whatever its outcome)
        """
        job = await self.reserve(queue)
        if job is None:
            return False

        handler = self.registry.get(job.handler)
        if handler is None:
            await self._bury(job, f"No handler registered for {job.handler!r}")
            return True

        logger.info(f"Running job {job.id} ({job.handler}) attempt {job.attempts}")
        try:
            outcome = handler(job.payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Job {job.id} ({job.handler}) failed: {e}", exc_info=True)
            await self._fail(job, f"{type(e).__name__}: {e}")
            return True

        await self._complete(job)
        return True

    async def work(
        self,
        queue: str = "default",
        stop: asyncio.Event | None = None,
        max_jobs: int | None = None,
        burst: bool = False,
    ) -> int:
        """
        Process jobs until ``stop`` is set, ``max_jobs`` have run, or (with
        ``burst``) the queue is empty.

        Returns:
            Number of jobs processed
        """
        processed = 0
        logger.info(f"Worker started on queue {queue!r}")

        while not (stop is not None and stop.is_set()):
            if max_jobs is not None and processed >= max_jobs:
                break

            try:
                ran = await self.work_once(queue)
            except Exception:
                # Store errors must not end the loop
                logger.exception(f"Worker iteration failed on queue {queue!r}")
                ran = False

            if ran:
                processed += 1
                continue
            if burst:
                break
            await self._idle(stop)

        logger.info(f"Worker stopped on queue {queue!r} after {processed} job(s)")
        return processed

    async def _idle(self, stop: asyncio.Event | None) -> None:
        if stop is None:
            await asyncio.sleep(self.poll_interval)
            return
        try:
            await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------

    async def _complete(self, job: Job) -> None:
        async with self.database.transaction() as conn:
            await conn.execute(text(f"DELETE FROM {self.table} WHERE id = :id"), {"id": job.id})
        logger.info(f"Job {job.id} ({job.handler}) completed")

    async def _fail(self, job: Job, error: str) -> None:
        if job.attempts >= self.max_attempts:
            await self._bury(job, error)
            return

        delay = self.backoff_for(job.attempts)
        async with self.database.transaction() as conn:
            await conn.execute(
                text(
                    f"UPDATE {self.table} SET status = '{PENDING}', reserved_at = NULL, "
                    "available_at = :available_at, last_error = :error WHERE id = :id"
                ),
                {"id": job.id, "available_at": self._now() + delay, "error": error[:MAX_ERROR_LENGTH]},
            )
        logger.info(f"Job {job.id} ({job.handler}) will retry in {delay}s")

    async def _bury(self, job: Job, error: str) -> None:
        now = self._now()
        async with self.database.transaction() as conn:
            await conn.execute(
                text(
                    f"UPDATE {self.table} SET status = '{DEAD}', reserved_at = NULL, "
                    "last_error = :error, failed_at = :now WHERE id = :id"
                ),
                {"id": job.id, "error": error[:MAX_ERROR_LENGTH], "now": now},
            )
        logger.error(f"Job {job.id} ({job.handler}) dead-lettered after {job.attempts} attempt(s): {error}")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def retry_dead(self, queue: str | None = None) -> int:
        """Move dead-lettered jobs back to pending with a fresh attempt budget."""
        sql = (
            f"UPDATE {self.table} SET status = '{PENDING}', attempts = 0, "
            "available_at = :now, failed_at = NULL "
            f"WHERE status = '{DEAD}'"
        )
        params: dict[str, Any] = {"now": self._now()}
        if queue is not None:
            sql += " AND queue = :queue"
            params["queue"] = queue

        async with self.database.transaction() as conn:
            result = await conn.execute(text(sql), params)
        logger.info(f"Re-queued {result.rowcount} dead job(s)")
        return result.rowcount

    async def stats(self, queue: str | None = None) -> dict[str, int]:
        """Job counts per status."""
        sql = f"SELECT status, COUNT(*) AS total FROM {self.table}"
        params: dict[str, Any] = {}
        if queue is not None:
            sql += " WHERE queue = :queue"
            params["queue"] = queue
        sql += " GROUP BY status"

        counts = {PENDING: 0, RESERVED: 0, DEAD: 0}
        async with self.database.connect() as conn:
            result = await conn.execute(text(sql), params)
            for row in result.mappings():
                counts[row["status"]] = int(row["total"])
        return counts

    async def dead_jobs(self, queue: str | None = None) -> list[dict[str, Any]]:
        """Dead-lettered jobs, oldest failure first, for inspection."""
        sql = f"SELECT * FROM {self.table} WHERE status = '{DEAD}'"
        params: dict[str, Any] = {}
        if queue is not None:
            sql += " AND queue = :queue"
            params["queue"] = queue
        sql += " ORDER BY failed_at, id"

        async with self.database.connect() as conn:
            result = await conn.execute(text(sql), params)
            return [dict(row) for row in result.mappings()]
