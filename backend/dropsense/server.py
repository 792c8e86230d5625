"""FastAPI server exposing the personalization engine.

Ingestion, profile reads, the interactive risk assessment and the insight
surface. The caller's identity arrives in the ``X-User-Id`` header, set by
the upstream auth layer.

The analysis worker runs as a background task of this process unless
ANALYSIS_WORKER_ENABLED is false (e.g. when workers run separately).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from dropsense.agents.analysis_worker import AnalysisWorker
from dropsense.config.settings import ANALYSIS_TRIGGER_EVERY, ANALYSIS_WORKER_ENABLED, REDIS_URL
from dropsense.engine.pipeline import PersonalizationEngine
from dropsense.errors import PersistenceError, ValidationError
from dropsense.models.events import BehaviorEvent, parse_timestamp
from dropsense.services.advisory import get_advisor
from dropsense.store import event_store, profile_store

logger = logging.getLogger(__name__)

app = FastAPI(title="DropSense", description="Behavioral personalization for airdrop hunters")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_worker_task: asyncio.Task | None = None


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def _get_engine(r: redis.Redis) -> PersonalizationEngine:
    return PersonalizationEngine(r=r, advisor=get_advisor())


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


# ── Error handling ───────────────────────────────────────────────────────

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Persistence failure on %s: %s %s", request.url.path, exc.message, exc.details)
    return JSONResponse(status_code=503, content={"error": exc.message})


# ── Request models ───────────────────────────────────────────────────────

class TrackEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action_kind: Optional[str] = Field(default=None, alias="actionKind")
    element: Optional[str] = None
    section: Optional[str] = None
    duration_ms: Optional[int] = Field(default=None, alias="durationMs")
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None


class RiskAssessmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    investment_experience: Optional[float] = Field(default=None, alias="investmentExperience")
    risk_capacity: Optional[float] = Field(default=None, alias="riskCapacity")
    time_horizon: Optional[float] = Field(default=None, alias="timeHorizon")
    technical_knowledge: Optional[float] = Field(default=None, alias="technicalKnowledge")
    security_priority: Optional[float] = Field(default=None, alias="securityPriority")
    loss_tolerance: Optional[float] = Field(default=None, alias="lossTolerance")
    diversification_understanding: Optional[float] = Field(default=None, alias="diversificationUnderstanding")
    volatility_comfort: Optional[float] = Field(default=None, alias="volatilityComfort")


# ── Health ───────────────────────────────────────────────────────────────

@app.get("/api/health")
async def health():
    r = _get_redis()
    try:
        r.ping()
        redis_ok = True
        outbox = r.llen(event_store.OUTBOX_KEY)
    except redis.RedisError:
        redis_ok = False
        outbox = None

    return {
        "status": "ok",
        "redis": redis_ok,
        "outbox_depth": outbox,
        "worker_running": _worker_task is not None and not _worker_task.done(),
    }


# ── Ingestion ────────────────────────────────────────────────────────────

@app.post("/api/behavior/track")
async def track_event(body: TrackEventRequest, user_id: str = Depends(current_user)):
    """Append one behavior event. Never waits on analysis."""
    event = BehaviorEvent.create(
        user_id=user_id,
        action_kind=body.action_kind,
        element=body.element,
        section=body.section,
        duration_ms=body.duration_ms,
        metadata=body.metadata,
        timestamp=body.timestamp,
    )
    count = event_store.append(event, r=_get_redis())
    return {
        "success": True,
        "event_id": event.event_id,
        "event_count": count,
        "analysis_triggered": ANALYSIS_TRIGGER_EVERY > 0 and count % ANALYSIS_TRIGGER_EVERY == 0,
    }


@app.get("/api/behavior/events")
async def list_events(
    user_id: str = Depends(current_user),
    since: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    order: str = Query(default="asc", pattern="^(asc|desc)$"),
):
    try:
        since_dt: datetime | None = parse_timestamp(since) if since else None
    except ValueError as exc:
        raise ValidationError("Invalid 'since' timestamp", {"since": since}) from exc
    events = event_store.query(
        user_id, since=since_dt, limit=limit, newest_first=order == "desc", r=_get_redis(),
    )
    return {"events": [e.to_dict() for e in events], "count": len(events)}


# ── Profile reads ────────────────────────────────────────────────────────

@app.get("/api/preferences/profile")
async def get_profile(user_id: str = Depends(current_user)):
    return profile_store.read_profile(user_id, r=_get_redis())


@app.get("/api/adaptive-ui/preferences")
async def get_ui_preferences(user_id: str = Depends(current_user)):
    r = _get_redis()
    config = profile_store.get_adaptation_config(user_id, r=r)
    history = profile_store.get_adaptation_history(user_id, r=r)
    return {
        "config": config.to_dict() if config else None,
        "history": [h.to_dict() for h in history[-10:]],
    }


@app.get("/api/preferences/chains")
async def get_chain_preferences(user_id: str = Depends(current_user)):
    prefs = profile_store.get_chain_preferences(user_id, r=_get_redis())
    return {"chain_preferences": [p.to_dict() for p in prefs]}


@app.get("/api/preferences/activity")
async def get_activity_pattern(user_id: str = Depends(current_user)):
    pattern = profile_store.get_activity_pattern(user_id, r=_get_redis())
    return {"activity_pattern": pattern.to_dict() if pattern else None}


@app.get("/api/preferences/evolution")
async def get_evolution(
    user_id: str = Depends(current_user),
    category: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
):
    entries = profile_store.get_evolution(user_id, limit=limit, category=category, r=_get_redis())
    return {"evolution": [e.to_dict() for e in entries]}


# ── Risk assessment ──────────────────────────────────────────────────────

@app.post("/api/preferences/risk-assessment")
async def submit_risk_assessment(body: RiskAssessmentRequest, user_id: str = Depends(current_user)):
    """Score the questionnaire synchronously and return the stored profile."""
    engine = _get_engine(_get_redis())
    profile = await engine.assess_risk(user_id, body.model_dump())
    return {"success": True, "risk_profile": profile.to_dict()}


@app.get("/api/preferences/risk-assessment")
async def get_risk_assessment(user_id: str = Depends(current_user)):
    profile = profile_store.get_risk_profile(user_id, r=_get_redis())
    if profile is None:
        raise HTTPException(status_code=404, detail="No risk assessment found")
    return {"risk_profile": profile.to_dict()}


# ── Insights ─────────────────────────────────────────────────────────────

@app.get("/api/preferences/insights")
async def get_insights(
    user_id: str = Depends(current_user),
    insight_type: Optional[str] = Query(default=None, alias="type"),
    unread: bool = False,
):
    insights = profile_store.list_insights(
        user_id, insight_type=insight_type, unread_only=unread, r=_get_redis(),
    )
    return {"insights": [i.to_dict() for i in insights], "count": len(insights)}


@app.post("/api/preferences/insights/read-all")
async def mark_all_insights_read(user_id: str = Depends(current_user)):
    changed = profile_store.mark_all_read(user_id, r=_get_redis())
    return {"success": True, "updated": changed}


@app.post("/api/preferences/insights/{insight_id}/read")
async def mark_insight_read(insight_id: str, user_id: str = Depends(current_user)):
    if not profile_store.mark_read(user_id, insight_id, r=_get_redis()):
        raise HTTPException(status_code=404, detail="Insight not found")
    return {"success": True, "insight_id": insight_id}


# ── Manual analysis ──────────────────────────────────────────────────────

@app.post("/api/preferences/analyze")
async def analyze_now(user_id: str = Depends(current_user)):
    """Run the full pipeline now, under the same per-user lock as the worker."""
    r = _get_redis()
    worker = AnalysisWorker(r=r, engine_factory=lambda: _get_engine(r))
    # PersistenceError propagates to persistence_error_handler (503)
    result = await worker.analyze_user(user_id, reason="manual", raise_on_persistence_error=True)
    if result is None:
        raise HTTPException(status_code=409, detail="Analysis already in progress")
    return {"success": True, "analysis": result.summary(), "profile": profile_store.read_profile(user_id, r=r)}


# ── Background worker ────────────────────────────────────────────────────

@app.on_event("startup")
async def start_analysis_worker():
    global _worker_task
    if not ANALYSIS_WORKER_ENABLED:
        logger.info("Analysis worker disabled in this process")
        return
    worker = AnalysisWorker(r=_get_redis())
    _worker_task = asyncio.create_task(worker.run_forever())


@app.on_event("shutdown")
async def stop_analysis_worker():
    if _worker_task and not _worker_task.done():
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass
