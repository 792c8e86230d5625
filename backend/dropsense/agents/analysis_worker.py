"""Analysis Worker: consumes the analysis outbox.

Ingestion never runs analysis itself: the event store pushes a request onto
``analysis:outbox`` every Nth event, and the periodic scheduler pushes one
per tracked user. This worker pops requests and runs the pipeline, holding a
per-user Redis lock so at most one analysis per user is in flight across
all worker processes.

Lock:   analysis:lock:{user_id}  SET NX EX <ttl>, value = owner token
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable
from uuid import uuid4

import redis

from dropsense.config.settings import (
    ANALYSIS_INTERVAL_SECONDS,
    ANALYSIS_LOCK_TTL_SECONDS,
    WORKER_POLL_INTERVAL,
)
from dropsense.engine.pipeline import AnalysisResult, PersonalizationEngine
from dropsense.errors import PersistenceError
from dropsense.store import event_store

logger = logging.getLogger(__name__)

LOCK_PREFIX = "analysis:lock:"
DEFAULT_BATCH_SIZE = 50


class AnalysisWorker:
    def __init__(
        self,
        r: redis.Redis | None = None,
        engine_factory: Callable[[], PersonalizationEngine] | None = None,
        poll_interval: float = WORKER_POLL_INTERVAL,
        schedule_interval: int = ANALYSIS_INTERVAL_SECONDS,
        lock_ttl: int = ANALYSIS_LOCK_TTL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.r = r or event_store._get_redis()
        self.engine_factory = engine_factory or (lambda: PersonalizationEngine(r=self.r))
        self.poll_interval = poll_interval
        self.schedule_interval = schedule_interval
        self.lock_ttl = lock_ttl
        self.batch_size = batch_size
        self._in_flight: set[str] = set()
        self._last_schedule: float = 0.0
        self.processed = 0
        self.skipped = 0

    # ── Per-user lock ────────────────────────────────────────────────────

    def acquire_lock(self, user_id: str) -> str | None:
        """Return an owner token, or None if another run holds the lock."""
        token = uuid4().hex
        if self.r.set(f"{LOCK_PREFIX}{user_id}", token, nx=True, ex=self.lock_ttl):
            return token
        return None

    def release_lock(self, user_id: str, token: str) -> None:
        """Delete the lock only if we still own it."""
        key = f"{LOCK_PREFIX}{user_id}"
        with self.r.pipeline() as pipe:
            try:
                pipe.watch(key)
                if pipe.get(key) == token:
                    pipe.multi()
                    pipe.delete(key)
                    pipe.execute()
                else:
                    pipe.unwatch()
            except redis.WatchError:
                logger.warning("Lock for %s changed owner before release", user_id)

    # ── Single run ───────────────────────────────────────────────────────

    async def analyze_user(
        self,
        user_id: str,
        reason: str = "manual",
        raise_on_persistence_error: bool = False,
    ) -> AnalysisResult | None:
        """Run one analysis if no other run for this user is in flight.

        Returns None when the run was skipped, or when its result was
        discarded after a PersistenceError. With ``raise_on_persistence_error``
        the error is re-raised instead, after the lock is released.
        """
        if user_id in self._in_flight:
            logger.info("Analysis for %s already running in this worker, skipping", user_id)
            self.skipped += 1
            return None
        token = self.acquire_lock(user_id)
        if token is None:
            logger.info("Analysis for %s locked by another worker, skipping", user_id)
            self.skipped += 1
            return None

        self._in_flight.add(user_id)
        started = time.monotonic()
        try:
            result = await self.engine_factory().run_analysis(user_id)
        except PersistenceError as exc:
            logger.error("Discarding analysis for %s: %s %s", user_id, exc.message, exc.details)
            if raise_on_persistence_error:
                raise
            return None
        finally:
            self._in_flight.discard(user_id)
            self.release_lock(user_id, token)

        self.processed += 1
        logger.info(
            "Analysis for %s (%s) done in %.2fs: %s",
            user_id, reason, time.monotonic() - started, result.summary(),
        )
        return result

    # ── Outbox ───────────────────────────────────────────────────────────

    def pop_requests(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Pop up to ``limit`` outbox requests, dropping malformed entries."""
        requests = []
        for _ in range(limit or self.batch_size):
            raw = self.r.lpop(event_store.OUTBOX_KEY)
            if raw is None:
                break
            try:
                request = json.loads(raw)
                if request.get("user_id"):
                    requests.append(request)
                    continue
            except (json.JSONDecodeError, AttributeError):
                pass
            logger.warning("Dropping malformed outbox entry: %r", raw)
        return requests

    async def drain_outbox(self) -> int:
        """Process one batch of requests. Duplicate users in a batch run once."""
        requests = self.pop_requests()
        by_user: dict[str, str] = {}
        for request in requests:
            by_user.setdefault(request["user_id"], request.get("reason", "unknown"))
        if not by_user:
            return 0

        results = await asyncio.gather(
            *(self.analyze_user(user_id, reason) for user_id, reason in by_user.items()),
            return_exceptions=True,
        )
        for user_id, result in zip(by_user, results):
            if isinstance(result, Exception):
                logger.error("Analysis for %s failed: %s", user_id, result, exc_info=result)
        return len(by_user)

    def schedule_all(self) -> int:
        """Enqueue every tracked user for a periodic refresh."""
        users = event_store.tracked_users(r=self.r)
        for user_id in users:
            event_store.enqueue_analysis(user_id, reason="scheduled", r=self.r)
        self._last_schedule = time.monotonic()
        logger.info("Scheduled periodic analysis for %d user(s)", len(users))
        return len(users)

    def schedule_due(self) -> bool:
        return time.monotonic() - self._last_schedule >= self.schedule_interval

    async def run_forever(self) -> None:
        """Poll the outbox until cancelled."""
        logger.info(
            "Analysis worker started (poll=%.1fs, schedule every %ds)",
            self.poll_interval, self.schedule_interval,
        )
        self._last_schedule = time.monotonic()
        try:
            while True:
                try:
                    if self.schedule_due():
                        self.schedule_all()
                    await self.drain_outbox()
                except redis.RedisError as exc:
                    logger.error("Analysis worker Redis error: %s", exc)
                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            logger.info("Analysis worker stopped (processed=%d skipped=%d)", self.processed, self.skipped)
            raise
