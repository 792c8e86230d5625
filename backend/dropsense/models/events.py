"""Behavior event model.

Raw user-interaction events are immutable and append-only. Corrections are
recorded as new events, never as edits.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from dropsense.errors import ValidationError


class ActionKind(str, Enum):
    CLICK = "click"
    VIEW = "view"
    HOVER = "hover"
    SCROLL = "scroll"
    SEARCH = "search"
    FILTER = "filter"
    NAVIGATE = "navigate"
    TASK_START = "task_start"
    TASK_COMPLETE = "task_complete"
    AIRDROP_INTERACT = "airdrop_interact"
    WALLET_CONNECT = "wallet_connect"
    CHAIN_INTERACTION = "chain_interaction"


ACTION_KINDS: frozenset[str] = frozenset(k.value for k in ActionKind)

# Kinds that carry on-chain activity (chainId / gasSpent / success metadata)
CHAIN_ACTION_KINDS: frozenset[str] = frozenset({
    ActionKind.AIRDROP_INTERACT.value,
    ActionKind.WALLET_CONNECT.value,
    ActionKind.TASK_COMPLETE.value,
    ActionKind.CHAIN_INTERACTION.value,
})


def parse_timestamp(value: Any) -> datetime:
    """Coerce an ISO string or datetime into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class BehaviorEvent:
    user_id: str
    action_kind: str
    element: str
    section: str
    duration_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: uuid4().hex)

    @classmethod
    def create(
        cls,
        user_id: str | None,
        action_kind: str | None,
        element: str | None,
        section: str | None,
        duration_ms: int | None = None,
        metadata: dict[str, Any] | None = None,
        timestamp: datetime | str | None = None,
    ) -> BehaviorEvent:
        """Validate raw ingestion fields and build an event.

        Raises ValidationError for a missing identity, element or section,
        an action kind outside the closed set, or a negative duration.
        """
        missing = [
            name for name, value in (
                ("user_id", user_id),
                ("action_kind", action_kind),
                ("element", element),
                ("section", section),
            )
            if not value
        ]
        if missing:
            raise ValidationError(
                "Missing required event fields", {"missing": missing}
            )
        if action_kind not in ACTION_KINDS:
            raise ValidationError(
                f"Unknown action kind: {action_kind}",
                {"allowed": sorted(ACTION_KINDS)},
            )
        if duration_ms is not None and duration_ms < 0:
            raise ValidationError("duration_ms must be non-negative", {"duration_ms": duration_ms})

        try:
            ts = parse_timestamp(timestamp) if timestamp is not None else datetime.now(timezone.utc)
        except (ValueError, TypeError) as exc:
            raise ValidationError("Invalid timestamp", {"timestamp": str(timestamp)}) from exc

        return cls(
            user_id=user_id,
            action_kind=action_kind,
            element=element,
            section=section,
            duration_ms=duration_ms,
            metadata=dict(metadata or {}),
            timestamp=ts,
        )

    # -- Convenience accessors over metadata --

    @property
    def device(self) -> str:
        return str(self.metadata.get("device") or "desktop")

    @property
    def feature(self) -> str:
        return str(self.metadata.get("feature") or self.element)

    @property
    def epoch(self) -> float:
        return self.timestamp.timestamp()

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BehaviorEvent:
        data = dict(data)
        data["timestamp"] = parse_timestamp(data["timestamp"])
        if isinstance(data.get("metadata"), str):
            data["metadata"] = json.loads(data["metadata"])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @classmethod
    def from_json(cls, raw: str) -> BehaviorEvent:
        return cls.from_dict(json.loads(raw))
