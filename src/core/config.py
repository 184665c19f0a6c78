"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PacingConfig:
    """Delays applied around webhook deliveries."""

    delivery_delay_seconds: float = 1.5
    rate_limit_backoff_seconds: float = 5.0


@dataclass(frozen=True)
class DedupConfig:
    """Deduplication settings for sweeps and completion events."""

    update_bucket_seconds: int = 60
    event_window_seconds: float = 60.0


@dataclass(frozen=True)
class ScheduleConfig:
    """Scheduler and manual-check cooldown settings."""

    default_interval_minutes: int = 30
    manual_cooldown_seconds: int = 30
