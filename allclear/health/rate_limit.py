"""Rate limiter — decides whether a rate-limited check may run right now.

Per check, the cache holds the active period key, a run counter for that
period, the last failure message (error lockout) and the last completed
result. Periods are calendar days or hours in UTC.

A failed check is locked out for one period length from the time it failed,
so the lockout carries across the next period rollover. A successful run
clears it early.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from .cache import DAY, HOUR, CacheStore

if TYPE_CHECKING:
    from .registry import CheckDefinition

logger = logging.getLogger(__name__)

MAX_RUNS_PER_PERIOD = 1000

_FREQUENCY = re.compile(r"^\s*(-?\d+)\s+times?\s+per\s+([a-z]+)\s*$", re.IGNORECASE)

_LAST_RESULT_TTL = DAY


class Period(str, Enum):
    DAY = "day"
    HOUR = "hour"


class RunFrequencyError(ValueError):
    """Raised when a `run:` frequency string cannot be used."""


@dataclass(frozen=True)
class RateSpec:
    max_runs: int
    period: Period

    def __post_init__(self) -> None:
        object.__setattr__(self, "period", _as_period(self.period))

    @property
    def ttl(self) -> int:
        return DAY if self.period is Period.DAY else HOUR


def parse_run_frequency(text: Any) -> RateSpec:
    """Parse ``"<N> time(s) per day|hour"`` into a RateSpec."""
    match = _FREQUENCY.match(text) if isinstance(text, str) else None
    if match is None or match.group(2).lower() not in {p.value for p in Period}:
        raise RunFrequencyError(
            f"Unsupported frequency format: {text!r}. "
            "Use '<N> times per day' or '<N> times per hour'"
        )
    max_runs = int(match.group(1))
    if max_runs <= 0:
        raise RunFrequencyError(f"Run count must be positive (got {max_runs})")
    if max_runs > MAX_RUNS_PER_PERIOD:
        raise RunFrequencyError(
            f"Maximum {MAX_RUNS_PER_PERIOD} runs per period allowed (got {max_runs})"
        )
    return RateSpec(max_runs=max_runs, period=Period(match.group(2).lower()))


# ── Period arithmetic ────────────────────────────────────────────────────────


def _as_period(period: Period | str) -> Period:
    try:
        return Period(period)
    except ValueError:
        raise RunFrequencyError(f"Unsupported period: {period}") from None


def period_key(now: datetime, period: Period | str) -> str:
    now = now.astimezone(timezone.utc)
    if _as_period(period) is Period.DAY:
        return now.strftime("%Y-%m-%d")
    return now.strftime("%Y-%m-%d-%H")


def next_period_start(now: datetime, period: Period | str) -> datetime:
    now = now.astimezone(timezone.utc)
    if _as_period(period) is Period.DAY:
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight + timedelta(days=1)
    top = now.replace(minute=0, second=0, microsecond=0)
    return top + timedelta(hours=1)


def format_time(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def time_ago_in_words(delta: timedelta) -> str:
    minutes = max(int(delta.total_seconds() // 60), 0)
    if minutes < 1:
        return "less than a minute"
    if minutes == 1:
        return "1 minute"
    if minutes < 45:
        return f"{minutes} minutes"
    if minutes < 90:
        return "about 1 hour"
    if minutes < 24 * 60:
        return f"about {round(minutes / 60)} hours"
    days = round(minutes / (24 * 60))
    return "1 day" if days == 1 else f"{days} days"


def slugify(name: str) -> str:
    """Cache-safe key for a check name."""
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    if slug:
        return slug
    return "check_" + hashlib.sha1(name.encode("utf-8")).hexdigest()[:12]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Limiter ──────────────────────────────────────────────────────────────────


class RateLimiter:
    """Run-count gate and outcome bookkeeping backed by a CacheStore."""

    def __init__(
        self,
        cache: CacheStore,
        clock: Callable[[], datetime] | None = None,
        prefix: str | None = None,
    ) -> None:
        self.cache = cache
        self.clock = clock or _utcnow
        self.prefix = prefix or cache.prefix

    def _key(self, kind: str, check: CheckDefinition) -> str:
        return f"{self.prefix}:{kind}:{check.cache_key}"

    def should_run(self, check: CheckDefinition) -> bool:
        """Decide whether ``check`` may execute now; sets ``skip_reason`` on denial."""
        rate = check.rate
        if rate is None:
            return True

        now = self.clock()
        current = period_key(now, rate.period)
        count_key = f"{self._key('runs_count', check)}:{current}"

        stored = self.cache.read(self._key("current_period", check))
        if stored != current:
            runs = 0
            self.cache.write(count_key, 0, rate.ttl)
            self.cache.write(self._key("current_period", check), current, rate.ttl)
            logger.debug("New %s period %s for %r", rate.period.value, current, check.name)
        else:
            runs = int(self.cache.read(count_key) or 0)

        next_start = format_time(next_period_start(now, rate.period))
        usage = f"Rate limited ({runs}/{rate.max_runs} runs this {rate.period.value})"

        retry_at = self.lockout_until(check)
        if retry_at is not None and now < retry_at:
            check.skip_reason = (
                f"{usage}. Waiting until {format_time(retry_at)} to retry failed check"
            )
            return False

        if runs < rate.max_runs:
            self.cache.write(count_key, runs + 1, rate.ttl)
            self.cache.write(self._key("last_run", check), now.isoformat(), rate.ttl)
            check.skip_reason = None
            return True

        check.skip_reason = f"{usage}. Next check at {next_start}"
        return False

    # ── Outcome persistence ──────────────────────────────────────────────────

    def record_success(self, check: CheckDefinition, message: str) -> None:
        self.cache.delete(self._key("error", check))
        self._store_last_result(check, True, message)

    def record_failure(self, check: CheckDefinition, message: str) -> None:
        ttl = check.rate.ttl if check.rate else HOUR
        self.cache.write(self._key("error", check), message, ttl)
        self._store_last_result(check, False, message)

    def last_error(self, check: CheckDefinition) -> str | None:
        return self.cache.read(self._key("error", check))

    def lockout_until(self, check: CheckDefinition) -> datetime | None:
        """When a failed rate-limited check may run again, or None if it is not locked out."""
        rate = check.rate
        if rate is None or self.last_error(check) is None:
            return None
        last = self.last_result(check) or {}
        try:
            failed_at = datetime.fromisoformat(last["time"])
        except (KeyError, TypeError, ValueError):
            return next_period_start(self.clock(), rate.period)
        return failed_at + timedelta(seconds=rate.ttl)

    def last_result(self, check: CheckDefinition) -> dict[str, Any] | None:
        return self.cache.read(self._key("last_result", check))

    def _store_last_result(self, check: CheckDefinition, success: bool, message: str) -> None:
        self.cache.write(
            self._key("last_result", check),
            {"success": success, "message": message, "time": self.clock().isoformat()},
            _LAST_RESULT_TTL,
        )
