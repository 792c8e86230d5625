"""Tests for the Analysis Worker: outbox draining and per-user locking."""

import asyncio
import json

import pytest

from dropsense.agents.analysis_worker import LOCK_PREFIX, AnalysisWorker
from dropsense.errors import PersistenceError
from dropsense.store import event_store


class FakeResult:
    def __init__(self, user_id):
        self.user_id = user_id

    def summary(self):
        return {"user_id": self.user_id}


class FakeEngine:
    """Records runs; optionally blocks until released or raises."""

    def __init__(self, gate=None, error=None):
        self.runs = []
        self.gate = gate
        self.error = error

    async def run_analysis(self, user_id):
        self.runs.append(user_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return FakeResult(user_id)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def worker(r, engine):
    return AnalysisWorker(r=r, engine_factory=lambda: engine, poll_interval=0.01, lock_ttl=30)


class TestLock:
    def test_acquire_is_exclusive(self, worker):
        token = worker.acquire_lock("user-1")
        assert token
        assert worker.acquire_lock("user-1") is None

    def test_release_requires_ownership(self, worker, r):
        token = worker.acquire_lock("user-1")
        worker.release_lock("user-1", "someone-else")
        assert r.get(f"{LOCK_PREFIX}user-1") == token
        worker.release_lock("user-1", token)
        assert r.get(f"{LOCK_PREFIX}user-1") is None

    def test_lock_has_ttl(self, worker, r):
        worker.acquire_lock("user-1")
        assert 0 < r.ttl(f"{LOCK_PREFIX}user-1") <= 30


class TestAnalyzeUser:
    async def test_runs_and_releases(self, worker, engine, r):
        result = await worker.analyze_user("user-1")
        assert result.user_id == "user-1"
        assert engine.runs == ["user-1"]
        assert worker.processed == 1
        assert r.get(f"{LOCK_PREFIX}user-1") is None

    async def test_skips_when_locked_elsewhere(self, worker, engine, r):
        r.set(f"{LOCK_PREFIX}user-1", "other-worker")
        assert await worker.analyze_user("user-1") is None
        assert engine.runs == []
        assert worker.skipped == 1

    async def test_at_most_one_run_in_flight(self, r):
        gate = asyncio.Event()
        engine = FakeEngine(gate=gate)
        worker = AnalysisWorker(r=r, engine_factory=lambda: engine)

        first = asyncio.create_task(worker.analyze_user("user-1"))
        await asyncio.sleep(0)
        assert await worker.analyze_user("user-1") is None
        gate.set()
        assert (await first).user_id == "user-1"
        assert engine.runs == ["user-1"]

    async def test_persistence_error_discards_result(self, r):
        engine = FakeEngine(error=PersistenceError("Failed to persist analysis"))
        worker = AnalysisWorker(r=r, engine_factory=lambda: engine)
        assert await worker.analyze_user("user-1") is None
        assert worker.processed == 0
        assert r.get(f"{LOCK_PREFIX}user-1") is None

    async def test_persistence_error_reraised_on_request(self, r):
        engine = FakeEngine(error=PersistenceError("Failed to persist analysis"))
        worker = AnalysisWorker(r=r, engine_factory=lambda: engine)
        with pytest.raises(PersistenceError):
            await worker.analyze_user("user-1", raise_on_persistence_error=True)
        assert worker.processed == 0
        assert worker.skipped == 0
        assert r.get(f"{LOCK_PREFIX}user-1") is None

    async def test_unexpected_error_still_releases_lock(self, r):
        engine = FakeEngine(error=RuntimeError("boom"))
        worker = AnalysisWorker(r=r, engine_factory=lambda: engine)
        with pytest.raises(RuntimeError):
            await worker.analyze_user("user-1")
        assert r.get(f"{LOCK_PREFIX}user-1") is None


class TestOutbox:
    async def test_drain_dedupes_users(self, worker, engine, r):
        for user_id in ["alice", "bob", "alice", "alice"]:
            event_store.enqueue_analysis(user_id, r=r)
        assert await worker.drain_outbox() == 2
        assert sorted(engine.runs) == ["alice", "bob"]
        assert r.llen(event_store.OUTBOX_KEY) == 0

    async def test_empty_outbox(self, worker, engine):
        assert await worker.drain_outbox() == 0
        assert engine.runs == []

    def test_malformed_entries_dropped(self, worker, r):
        r.rpush(event_store.OUTBOX_KEY, "not json", json.dumps({"reason": "x"}), json.dumps([1]))
        event_store.enqueue_analysis("alice", r=r)
        assert [req["user_id"] for req in worker.pop_requests()] == ["alice"]

    def test_batch_size_limits_pop(self, r, engine):
        worker = AnalysisWorker(r=r, engine_factory=lambda: engine, batch_size=2)
        for user_id in ["a", "b", "c"]:
            event_store.enqueue_analysis(user_id, r=r)
        assert len(worker.pop_requests()) == 2
        assert r.llen(event_store.OUTBOX_KEY) == 1

    async def test_one_failure_does_not_stop_batch(self, r):
        class PartlyBroken(FakeEngine):
            async def run_analysis(self, user_id):
                if user_id == "bob":
                    raise RuntimeError("bad data")
                return await super().run_analysis(user_id)

        engine = PartlyBroken()
        worker = AnalysisWorker(r=r, engine_factory=lambda: engine)
        event_store.enqueue_analysis("alice", r=r)
        event_store.enqueue_analysis("bob", r=r)
        assert await worker.drain_outbox() == 2
        assert engine.runs == ["alice"]


class TestScheduling:
    def test_schedule_all_enqueues_tracked_users(self, worker, r, make_event):
        event_store.append(make_event(user_id="alice"), r=r, trigger_every=0)
        event_store.append(make_event(user_id="bob"), r=r, trigger_every=0)
        assert worker.schedule_all() == 2
        reasons = {json.loads(raw)["reason"] for raw in r.lrange(event_store.OUTBOX_KEY, 0, -1)}
        assert reasons == {"scheduled"}

    def test_schedule_due(self, r, engine):
        worker = AnalysisWorker(r=r, engine_factory=lambda: engine, schedule_interval=3600)
        worker.schedule_all()
        assert worker.schedule_due() is False
        worker.schedule_interval = 0
        assert worker.schedule_due() is True

    async def test_run_forever_processes_and_stops(self, worker, engine, r):
        event_store.enqueue_analysis("alice", r=r)
        task = asyncio.create_task(worker.run_forever())
        for _ in range(100):
            if engine.runs:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert engine.runs == ["alice"]
