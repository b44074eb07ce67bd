"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_TEXT_MODEL = "gemini-2.5-flash-latest"


@dataclass(frozen=True)
class RateLimitConfig:
    """Sliding-window admission settings, per origin."""

    window_seconds: float = 60.0
    max_requests: int = 1


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for transient classifier failures.

    ``max_retries`` counts the extra attempts after the first one, so zero
    means a single attempt with no delay. Delays grow as
    ``base_delay * multiplier ** n``.
    """

    max_retries: int = 0
    base_delay: float = 5.0
    multiplier: float = 3.0

    def delays(self) -> list[float]:
        return [self.base_delay * self.multiplier**n for n in range(max(self.max_retries, 0))]


@dataclass(frozen=True)
class ClassifierConfig:
    """Live classifier flags, re-read before every classification."""

    disabled: bool = False
    text_model: str = DEFAULT_TEXT_MODEL
    vision_model: str = DEFAULT_TEXT_MODEL


@dataclass(frozen=True)
class SessionThrottleConfig:
    """One submission per session token per cooldown window (0 disables)."""

    cooldown_seconds: float = 24 * 60 * 60
