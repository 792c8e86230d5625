"""Seed Redis with a demo user's behavior history and run one analysis.

Run: python -m dropsense.scripts.seed_demo (from backend/)
"""

import asyncio
import random
from datetime import datetime, timedelta, timezone

import redis

from dropsense.config.settings import REDIS_URL
from dropsense.engine.pipeline import PersonalizationEngine
from dropsense.models.events import BehaviorEvent
from dropsense.store import event_store
from dropsense.store.event_store import COUNT_PREFIX, EVENTS_PREFIX, OUTBOX_KEY, TRACKED_USERS_KEY

DEMO_USER = "demo-hunter"

SECTIONS = ["dashboard", "airdrops", "portfolio", "analytics", "wallet"]
FEATURES = ["search", "filters", "analytics", "quick_claim", "wallet", "alerts"]
CHAINS = ["eth", "arbitrum", "arbitrum", "polygon", "base"]


def clear_user(r: redis.Redis, user_id: str) -> None:
    """Remove the demo user's events and derived profile keys."""
    r.delete(f"{EVENTS_PREFIX}{user_id}", f"{COUNT_PREFIX}{user_id}", OUTBOX_KEY)
    r.srem(TRACKED_USERS_KEY, user_id)
    for pattern in (f"profile:*{user_id}", f"insights:{user_id}", f"analysis:lock:{user_id}"):
        for key in r.scan_iter(pattern):
            r.delete(key)


def demo_events(user_id: str, days: int = 21, seed: int = 7) -> list[BehaviorEvent]:
    """Evening-heavy sessions over the last few weeks, with some chain activity."""
    rng = random.Random(seed)
    now = datetime.now(timezone.utc)
    events = []
    for day in range(days):
        if rng.random() < 0.25:
            continue
        start = (now - timedelta(days=days - day)).replace(hour=rng.choice([9, 19, 20, 21]), minute=0)
        for i in range(rng.randint(4, 12)):
            ts = start + timedelta(minutes=i * rng.randint(2, 6))
            kind = rng.choice(["click", "click", "view", "search", "task_start", "task_complete", "airdrop_interact"])
            metadata = {
                "feature": rng.choice(FEATURES),
                "device": rng.choice(["desktop", "desktop", "mobile"]),
            }
            if kind in ("task_complete", "airdrop_interact"):
                metadata.update({
                    "chainId": rng.choice(CHAINS),
                    "gasSpent": round(rng.uniform(2, 60), 2),
                    "success": rng.random() > 0.2,
                    "airdropType": rng.choice(["defi", "nft", "testnet"]),
                    "status": rng.choice(["started", "completed"]),
                })
            events.append(BehaviorEvent.create(
                user_id=user_id,
                action_kind=kind,
                element=rng.choice(["card", "button", "link", "tab"]),
                section=rng.choice(SECTIONS),
                duration_ms=rng.randint(5_000, 180_000),
                metadata=metadata,
                timestamp=ts,
            ))
    return events


DEMO_ANSWERS = {
    "investment_experience": 3, "risk_capacity": 3, "time_horizon": 4,
    "technical_knowledge": 3, "security_priority": 4, "loss_tolerance": 3,
    "diversification_understanding": 3, "volatility_comfort": 2,
}


async def seed():
    r = redis.Redis.from_url(REDIS_URL, decode_responses=True)
    clear_user(r, DEMO_USER)

    events = demo_events(DEMO_USER)
    for event in events:
        event_store.append(event, r=r, trigger_every=0)
    print(f"Seeded {len(events)} events for {DEMO_USER}")

    engine = PersonalizationEngine(r=r)
    profile = await engine.assess_risk(DEMO_USER, DEMO_ANSWERS)
    print(f"Risk profile: {profile.risk_tolerance_score}/100 ({profile.risk_category})")

    result = await engine.run_analysis(DEMO_USER)
    print(f"Analysis: {result.summary()}")


if __name__ == "__main__":
    asyncio.run(seed())
