"""Time windows and timestamp generation for alert records."""

import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from alertsynth.config.models import TimestampPattern, TimeWindowConfig

logger = logging.getLogger(__name__)


RELATIVE_PATTERN = re.compile(r"^(\d+)([mhdwMy])$")

RELATIVE_UNITS = {
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "M": timedelta(days=30),
    "y": timedelta(days=365),
}

# Epoch values above this are milliseconds
EPOCH_MILLIS_THRESHOLD = 10 ** 11


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive UTC interval that generated timestamps must fall into."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Time window start {self.start} is after end {self.end}")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    @property
    def span_seconds(self) -> float:
        return (self.end - self.start).total_seconds()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_date_expression(value: str, now: Optional[datetime] = None) -> datetime:
    """Parse ``now``, a relative offset into the past (``7d``, ``12h``) or an ISO date."""
    now = now or _utc_now()
    value = value.strip()
    if value == "now":
        return now
    match = RELATIVE_PATTERN.match(value)
    if match:
        amount, unit = match.groups()
        return now - int(amount) * RELATIVE_UNITS[unit]
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"Unrecognised date expression: {value!r}")
    return parsed


def resolve_time_window(config: TimeWindowConfig, now: Optional[datetime] = None) -> TimeWindow:
    """Build the concrete window from configuration.

    Without explicit dates the window covers the last ``offset_hours`` hours.
    """
    now = now or _utc_now()
    end = parse_date_expression(config.end_date, now) if config.end_date else now
    if config.start_date:
        start = parse_date_expression(config.start_date, now)
    else:
        start = end - timedelta(hours=config.offset_hours)
    # Align to whole milliseconds so formatted timestamps stay inside the window
    start_ms = start.replace(microsecond=start.microsecond // 1000 * 1000)
    if start_ms < start:
        start_ms += timedelta(milliseconds=1)
    end_ms = end.replace(microsecond=end.microsecond // 1000 * 1000)
    return TimeWindow(start=min(start_ms, end_ms), end=end_ms)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or epoch number into an aware UTC datetime.

    Returns None for anything that is not a valid point in time.
    """
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            seconds = value / 1000 if abs(value) >= EPOCH_MILLIS_THRESHOLD else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        if isinstance(value, str) and value.strip():
            text = value.strip()
            if text.endswith("Z") or text.endswith("z"):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None
    return None


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2024-05-01T10:00:00.000Z``."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def generate_timestamp(
    window: TimeWindow,
    pattern: TimestampPattern = TimestampPattern.UNIFORM,
    rng: Optional[random.Random] = None,
) -> datetime:
    """Draw a timestamp inside ``window`` following ``pattern``."""
    rng = rng or random.Random()
    if pattern == TimestampPattern.BUSINESS_HOURS:
        moment = _business_hours(window, rng)
    elif pattern == TimestampPattern.ATTACK_SIMULATION:
        moment = _attack_burst(window, rng)
    elif pattern == TimestampPattern.WEEKEND_HEAVY:
        moment = _weekend_heavy(window, rng)
    else:
        moment = _uniform(window, rng)
    return min(max(moment, window.start), window.end)


def _uniform(window: TimeWindow, rng: random.Random) -> datetime:
    return window.start + timedelta(seconds=rng.uniform(0, window.span_seconds))


def _business_hours(window: TimeWindow, rng: random.Random, attempts: int = 20) -> datetime:
    for _ in range(attempts):
        candidate = _uniform(window, rng)
        if candidate.weekday() < 5:
            candidate = candidate.replace(
                hour=rng.randint(9, 16),
                minute=rng.randint(0, 59),
                second=rng.randint(0, 59),
            )
            if window.contains(candidate):
                return candidate
    return _uniform(window, rng)


def _attack_burst(window: TimeWindow, rng: random.Random) -> datetime:
    # Alerts cluster around a few minutes of activity
    center = _uniform(window, rng)
    return center + timedelta(seconds=rng.gauss(0, 15 * 60))


def _weekend_heavy(window: TimeWindow, rng: random.Random, attempts: int = 20) -> datetime:
    if rng.random() < 0.7:
        for _ in range(attempts):
            candidate = _uniform(window, rng)
            if candidate.weekday() >= 5:
                return candidate
    return _uniform(window, rng)
