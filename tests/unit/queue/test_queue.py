"""Unit tests for the job queue and the handler registry."""

import asyncio

import pytest
from sqlalchemy import text

from tessera.queue import DEAD, PENDING, RESERVED, JobQueue, JobRegistry


class FakeClock:
    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def queue(database, registry, clock) -> JobQueue:
    return JobQueue(
        database,
        registry=registry,
        max_attempts=3,
        backoff_seconds=10,
        visibility_timeout=60,
        poll_interval=0.01,
        clock=clock,
    )


async def job_row(database, job_id: int) -> dict | None:
    async with database.connect() as conn:
        result = await conn.execute(text("SELECT * FROM jobs WHERE id = :id"), {"id": job_id})
        row = result.mappings().first()
        return dict(row) if row else None


class TestRegistry:
    def test_decorator_registers(self, registry):
        @registry.handler("send_email")
        def send_email(payload):
            return None

        assert "send_email" in registry
        assert registry.get("send_email") is send_email
        assert registry.get("missing") is None

    def test_names_are_sorted(self, registry):
        registry.register("b", lambda payload: None)
        registry.register("a", lambda payload: None)

        assert registry.names() == ["a", "b"]


class TestPush:
    @pytest.mark.asyncio
    async def test_push_stores_pending_job(self, queue, database, clock):
        job_id = await queue.push("send_email", {"email": "jane@example.com"})

        row = await job_row(database, job_id)
        assert row["status"] == PENDING
        assert row["attempts"] == 0
        assert row["queue"] == "default"
        assert row["available_at"] == clock.now
        assert row["payload"] == '{"email": "jane@example.com"}'

    @pytest.mark.asyncio
    async def test_push_never_runs_handler(self, queue, registry):
        calls = []
        registry.register("job", calls.append)

        await queue.push("job", {"n": 1})

        assert calls == []

    @pytest.mark.asyncio
    async def test_delayed_job_is_not_claimable_yet(self, queue, clock):
        await queue.push("job", delay=30)

        assert await queue.reserve() is None
        clock.advance(30)
        assert await queue.reserve() is not None


class TestWorkOnce:
    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        assert await queue.work_once() is False

    @pytest.mark.asyncio
    async def test_success_deletes_job(self, queue, registry, database):
        received = []

        @registry.handler("job")
        async def handle(payload):
            received.append(payload)

        job_id = await queue.push("job", {"n": 1})

        assert await queue.work_once() is True
        assert received == [{"n": 1}]
        assert await job_row(database, job_id) is None

    @pytest.mark.asyncio
    async def test_sync_handler(self, queue, registry):
        received = []
        registry.register("job", received.append)
        await queue.push("job", {"n": 2})

        await queue.work_once()

        assert received == [{"n": 2}]

    @pytest.mark.asyncio
    async def test_failure_schedules_retry_with_backoff(self, queue, registry, database, clock):
        def boom(payload):
            raise RuntimeError("smtp down")

        registry.register("job", boom)
        job_id = await queue.push("job")

        await queue.work_once()

        row = await job_row(database, job_id)
        assert row["status"] == PENDING
        assert row["attempts"] == 1
        assert row["available_at"] == clock.now + 10
        assert row["last_error"] == "RuntimeError: smtp down"

    def test_backoff_doubles(self, queue):
        assert [queue.backoff_for(n) for n in (1, 2, 3)] == [10, 20, 40]

    @pytest.mark.asyncio
    async def test_retried_job_waits_for_backoff(self, queue, registry, clock):
        def boom(payload):
            raise RuntimeError("smtp down")

        registry.register("job", boom)
        await queue.push("job")
        await queue.work_once()

        assert await queue.work_once() is False
        clock.advance(10)
        assert await queue.work_once() is True

    @pytest.mark.asyncio
    async def test_dead_after_max_attempts(self, queue, registry, database, clock):
        attempts = []

        def boom(payload):
            attempts.append(1)
            raise ValueError("bad payload")

        registry.register("job", boom)
        job_id = await queue.push("job")

        for _ in range(3):
            assert await queue.work_once() is True
            clock.advance(1000)

        row = await job_row(database, job_id)
        assert len(attempts) == 3
        assert row["status"] == DEAD
        assert row["attempts"] == 3
        assert row["failed_at"] is not None
        assert await queue.work_once() is False

    @pytest.mark.asyncio
    async def test_unknown_handler_is_dead_lettered(self, queue, database):
        job_id = await queue.push("nobody_handles_this")

        assert await queue.work_once() is True

        row = await job_row(database, job_id)
        assert row["status"] == DEAD
        assert "nobody_handles_this" in row["last_error"]

    @pytest.mark.asyncio
    async def test_queues_are_isolated(self, queue, registry):
        received = []
        registry.register("job", received.append)
        await queue.push("job", {"q": "mail"}, queue="mail")

        assert await queue.work_once("default") is False
        assert await queue.work_once("mail") is True
        assert received == [{"q": "mail"}]


class TestLeases:
    @pytest.mark.asyncio
    async def test_reserved_job_is_not_claimed_twice(self, queue, database):
        job_id = await queue.push("job")

        job = await queue.reserve()

        assert job.id == job_id
        assert job.attempts == 1
        assert (await job_row(database, job_id))["status"] == RESERVED
        assert await queue.reserve() is None

    @pytest.mark.asyncio
    async def test_expired_lease_is_claimable_again(self, queue, clock):
        await queue.push("job")
        first = await queue.reserve()

        clock.advance(61)
        second = await queue.reserve()

        assert second.id == first.id
        assert second.attempts == 2

    @pytest.mark.asyncio
    async def test_abandoned_final_attempt_is_dead_lettered(self, queue, database, clock):
        job_id = await queue.push("job")
        for _ in range(3):
            assert (await queue.reserve()).id == job_id
            clock.advance(61)

        assert await queue.reserve() is None

        row = await job_row(database, job_id)
        assert row["status"] == DEAD
        assert row["attempts"] == 3
        assert row["reserved_at"] is None
        assert row["last_error"] == "Lease expired on the final attempt"

    @pytest.mark.asyncio
    async def test_unexpired_final_attempt_is_left_alone(self, queue, database, clock):
        job_id = await queue.push("job")
        for _ in range(3):
            await queue.reserve()
            clock.advance(61)
        clock.advance(-61)

        assert await queue.reserve() is None
        assert (await job_row(database, job_id))["status"] == RESERVED

    @pytest.mark.asyncio
    async def test_claims_oldest_due_job_first(self, queue):
        first = await queue.push("job", {"n": 1})
        await queue.push("job", {"n": 2})

        assert (await queue.reserve()).id == first


class TestWorkLoop:
    @pytest.mark.asyncio
    async def test_burst_drains_queue(self, queue, registry):
        received = []
        registry.register("job", received.append)
        for n in range(3):
            await queue.push("job", {"n": n})

        assert await queue.work(burst=True) == 3
        assert [payload["n"] for payload in received] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_max_jobs(self, queue, registry):
        registry.register("job", lambda payload: None)
        for _ in range(3):
            await queue.push("job")

        assert await queue.work(max_jobs=2) == 2
        assert (await queue.stats())[PENDING] == 1

    @pytest.mark.asyncio
    async def test_stop_event_ends_idle_loop(self, queue):
        stop = asyncio.Event()

        async def stop_soon():
            await asyncio.sleep(0.05)
            stop.set()

        stopper = asyncio.create_task(stop_soon())
        processed = await asyncio.wait_for(queue.work(stop=stop), timeout=5)
        await stopper

        assert processed == 0

    @pytest.mark.asyncio
    async def test_store_errors_do_not_end_the_loop(self, queue, monkeypatch):
        stop = asyncio.Event()
        calls = []

        async def flaky(queue_name="default"):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("database is locked")
            if len(calls) == 2:
                return True
            stop.set()
            return False

        monkeypatch.setattr(queue, "work_once", flaky)

        assert await queue.work(stop=stop) == 1
        assert len(calls) == 3


class TestOperations:
    @pytest.mark.asyncio
    async def test_stats(self, queue, registry, clock):
        registry.register("job", lambda payload: None)
        await queue.push("job")
        await queue.push("job")
        await queue.push("missing_handler")
        await queue.reserve()
        await queue.work_once()
        await queue.work_once()

        assert await queue.stats() == {PENDING: 0, RESERVED: 1, DEAD: 1}

    @pytest.mark.asyncio
    async def test_retry_dead(self, queue, database, registry):
        job_id = await queue.push("missing_handler", queue="mail")
        await queue.work_once("mail")
        assert [job["id"] for job in await queue.dead_jobs("mail")] == [job_id]

        assert await queue.retry_dead() == 1

        row = await job_row(database, job_id)
        assert row["status"] == PENDING
        assert row["attempts"] == 0
        assert await queue.dead_jobs() == []

    @pytest.mark.asyncio
    async def test_retry_dead_filters_by_queue(self, queue):
        await queue.push("missing_handler", queue="mail")
        await queue.push("missing_handler", queue="reports")
        await queue.work_once("mail")
        await queue.work_once("reports")

        assert await queue.retry_dead("mail") == 1
        assert len(await queue.dead_jobs("reports")) == 1

    def test_from_settings(self, database, settings_factory):
        settings = settings_factory(queue_max_attempts=5, queue_backoff_seconds=2)

        queue = JobQueue.from_settings(database, settings)

        assert queue.max_attempts == 5
        assert queue.backoff_for(3) == 8
