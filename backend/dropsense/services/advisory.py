"""Text-advisory capability.

Two implementations behind the same ``advise()`` call:

- AnthropicAdvisor phrases text with Claude, bounded by a timeout and at
  most one retry. Any failure falls back to the caller's template text.
- TemplateAdvisor returns the template text directly. Used when no API key
  is configured, and in tests.

Advisory output is never required for correctness.
"""

from __future__ import annotations

import asyncio
import logging

import anthropic

from dropsense.config.settings import (
    ADVISORY_MAX_RETRIES,
    ADVISORY_MAX_TOKENS,
    ADVISORY_MODEL,
    ADVISORY_TIMEOUT_SECONDS,
    ANTHROPIC_API_KEY,
)
from dropsense.errors import AdvisoryUnavailable

logger = logging.getLogger(__name__)

ADVISOR_SYSTEM_PROMPT = (
    "You are an expert advisor for cryptocurrency airdrop hunters. "
    "Write short, concrete, plain-text guidance. No markdown, no preamble."
)


class TemplateAdvisor:
    """Deterministic advisor: always answers with the template."""

    name = "template"

    async def advise(self, prompt: str, fallback: str, system: str = ADVISOR_SYSTEM_PROMPT) -> str:
        return fallback


class AnthropicAdvisor:
    """Claude-backed advisor with bounded latency."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str = ANTHROPIC_API_KEY,
        model: str = ADVISORY_MODEL,
        timeout: float = ADVISORY_TIMEOUT_SECONDS,
        max_retries: int = ADVISORY_MAX_RETRIES,
        max_tokens: int = ADVISORY_MAX_TOKENS,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_tokens = max_tokens
        # SDK-level retries are disabled; the retry budget is enforced here
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key, timeout=timeout, max_retries=0,
        )

    async def complete(self, prompt: str, system: str = ADVISOR_SYSTEM_PROMPT) -> str:
        """Call Claude. Raises AdvisoryUnavailable once the retry budget is spent."""
        attempts = 1 + max(0, self.max_retries)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                response = await asyncio.wait_for(
                    self.client.messages.create(
                        model=self.model,
                        max_tokens=self.max_tokens,
                        system=system,
                        messages=[{"role": "user", "content": prompt}],
                    ),
                    timeout=self.timeout,
                )
                text = "".join(
                    block.text for block in response.content if getattr(block, "type", "") == "text"
                ).strip()
                if text:
                    return text
                last_error = ValueError("empty advisory response")
            except (anthropic.APIError, asyncio.TimeoutError) as exc:
                last_error = exc
            except Exception as exc:
                # malformed responses or SDK bugs are advisory failures too
                logger.exception("Unexpected advisory error")
                last_error = exc
            logger.warning("Advisory attempt %d/%d failed: %s", attempt, attempts, last_error)

        raise AdvisoryUnavailable(
            "Advisory service unavailable",
            {"attempts": attempts, "error": str(last_error)},
        )

    async def advise(self, prompt: str, fallback: str, system: str = ADVISOR_SYSTEM_PROMPT) -> str:
        try:
            return await self.complete(prompt, system=system)
        except AdvisoryUnavailable as exc:
            logger.info("Using template text: %s", exc.details.get("error"))
            return fallback


_advisor: AnthropicAdvisor | TemplateAdvisor | None = None


def get_advisor() -> AnthropicAdvisor | TemplateAdvisor:
    """Process-wide advisor, chosen by whether an API key is configured."""
    global _advisor
    if _advisor is None:
        if ANTHROPIC_API_KEY:
            _advisor = AnthropicAdvisor()
        else:
            logger.warning("ANTHROPIC_API_KEY not configured, advisory uses templates only")
            _advisor = TemplateAdvisor()
    return _advisor
