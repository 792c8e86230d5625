"""Application-wide configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Redis
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")

# Static chain catalogue shipped next to this module
CHAIN_CATALOGUE_FILE: Path = Path(
    os.getenv("CHAIN_CATALOGUE_FILE", str(Path(__file__).resolve().parent / "chains.yaml"))
)

# ── Event Store ─────────────────────────────────────────────────────────

# Every Nth appended event for a user enqueues an analysis run
ANALYSIS_TRIGGER_EVERY: int = int(os.getenv("ANALYSIS_TRIGGER_EVERY", "10"))

# ── Session & Pattern Configuration ─────────────────────────────────────

SESSION_GAP_MINUTES: int = int(os.getenv("SESSION_GAP_MINUTES", "30"))
MIN_EVENTS_FOR_PATTERN: int = int(os.getenv("MIN_EVENTS_FOR_PATTERN", "5"))
ANALYSIS_EVENT_WINDOW: int = int(os.getenv("ANALYSIS_EVENT_WINDOW", "500"))
ACTIVITY_LEVEL_WINDOW_DAYS: int = int(os.getenv("ACTIVITY_LEVEL_WINDOW_DAYS", "7"))
ACTIVITY_LOOKBACK_DAYS: int = int(os.getenv("ACTIVITY_LOOKBACK_DAYS", "90"))

# ── Adaptation ──────────────────────────────────────────────────────────

ADAPTATION_CONFIDENCE_THRESHOLD: float = float(
    os.getenv("ADAPTATION_CONFIDENCE_THRESHOLD", "0.7")
)

# ── Analysis Worker ─────────────────────────────────────────────────────

ANALYSIS_WORKER_ENABLED: bool = os.getenv("ANALYSIS_WORKER_ENABLED", "true").lower() == "true"
ANALYSIS_INTERVAL_SECONDS: int = int(os.getenv("ANALYSIS_INTERVAL_SECONDS", "1800"))  # 30 min
ANALYSIS_LOCK_TTL_SECONDS: int = int(os.getenv("ANALYSIS_LOCK_TTL_SECONDS", "120"))
WORKER_POLL_INTERVAL: float = float(os.getenv("WORKER_POLL_INTERVAL", "0.5"))

# ── Text Advisory (Anthropic) ───────────────────────────────────────────

ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
ADVISORY_MODEL: str = os.getenv("ADVISORY_MODEL", "claude-sonnet-4-5-20250929")
ADVISORY_MAX_TOKENS: int = int(os.getenv("ADVISORY_MAX_TOKENS", "512"))
ADVISORY_TIMEOUT_SECONDS: float = float(os.getenv("ADVISORY_TIMEOUT_SECONDS", "8"))
ADVISORY_MAX_RETRIES: int = int(os.getenv("ADVISORY_MAX_RETRIES", "1"))

# ── Server Configuration ─────────────────────────────────────────────────

SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
