"""Redis-backed Event Store Gateway.

Events live in one sorted set per user scored by epoch seconds:

    events:{user_id}         ZSET  event JSON -> timestamp
    events:count:{user_id}   STR   lifetime appended-event counter
    events:users             SET   every user with at least one event
    analysis:outbox          LIST  pending analysis requests (JSON)

The log is append-only. There is no update or delete.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

import redis

from dropsense.config.settings import ANALYSIS_TRIGGER_EVERY, REDIS_URL
from dropsense.errors import PersistenceError
from dropsense.models.events import BehaviorEvent

logger = logging.getLogger(__name__)

EVENTS_PREFIX = "events:"
COUNT_PREFIX = "events:count:"
TRACKED_USERS_KEY = "events:users"
OUTBOX_KEY = "analysis:outbox"


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def _events_key(user_id: str) -> str:
    return f"{EVENTS_PREFIX}{user_id}"


# ── Writes ───────────────────────────────────────────────────────────────

def append(
    event: BehaviorEvent,
    r: redis.Redis | None = None,
    trigger_every: int = ANALYSIS_TRIGGER_EVERY,
) -> int:
    """Append an event and return the user's new event count.

    Every ``trigger_every``-th event enqueues an analysis run. Enqueue
    failures are logged and never reach the caller.
    """
    r = r or _get_redis()
    try:
        pipe = r.pipeline(transaction=True)
        pipe.zadd(_events_key(event.user_id), {event.to_json(): event.epoch})
        pipe.incr(f"{COUNT_PREFIX}{event.user_id}")
        pipe.sadd(TRACKED_USERS_KEY, event.user_id)
        _, count, _ = pipe.execute()
    except redis.RedisError as exc:
        raise PersistenceError("Failed to append event", {"user_id": event.user_id, "error": str(exc)}) from exc

    if trigger_every > 0 and count % trigger_every == 0:
        try:
            enqueue_analysis(event.user_id, reason="event_threshold", r=r)
        except redis.RedisError as exc:
            logger.warning("Analysis trigger for %s failed: %s", event.user_id, exc)
    return count


def enqueue_analysis(user_id: str, reason: str = "manual", r: redis.Redis | None = None) -> None:
    """Push an analysis request onto the outbox for the worker."""
    r = r or _get_redis()
    r.rpush(OUTBOX_KEY, json.dumps({
        "user_id": user_id,
        "reason": reason,
        "enqueued_at": datetime.now(timezone.utc).isoformat(),
    }))
    logger.debug("Enqueued analysis for %s (%s)", user_id, reason)


# ── Reads ────────────────────────────────────────────────────────────────

def query(
    user_id: str,
    since: datetime | None = None,
    limit: int | None = None,
    newest_first: bool = False,
    r: redis.Redis | None = None,
) -> list[BehaviorEvent]:
    """Events for one user at or after ``since``.

    Oldest first by default. With ``newest_first`` the most recent events
    come first, so ``limit`` selects a recent window.
    """
    r = r or _get_redis()
    key = _events_key(user_id)
    low = since.timestamp() if since else "-inf"
    paging = {"start": 0, "num": limit} if limit else {}
    if newest_first:
        raw = r.zrevrangebyscore(key, "+inf", low, **paging)
    else:
        raw = r.zrangebyscore(key, low, "+inf", **paging)
    return [BehaviorEvent.from_json(item) for item in raw]


def recent_window(user_id: str, limit: int, r: redis.Redis | None = None) -> list[BehaviorEvent]:
    """The latest ``limit`` events, returned oldest first."""
    events = query(user_id, limit=limit, newest_first=True, r=r)
    events.reverse()
    return events


def count(user_id: str, r: redis.Redis | None = None) -> int:
    r = r or _get_redis()
    return int(r.get(f"{COUNT_PREFIX}{user_id}") or 0)


def tracked_users(r: redis.Redis | None = None) -> list[str]:
    r = r or _get_redis()
    return sorted(r.smembers(TRACKED_USERS_KEY))
