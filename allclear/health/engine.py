"""Health check engine — runs every registered check and aggregates the results.

Checks run one at a time in registration order. Each executed body is
bounded by its timeout on a daemon worker thread; whatever happens inside a body
(assertion failure, timeout, any exception) becomes a failed CheckResult and
never stops the remaining checks.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .cache import CacheStore
from .expectations import CheckFailed, Outcome
from .rate_limit import RateLimiter, time_ago_in_words
from .registry import CheckDefinition, CheckRegistry
from .runner import run_check_body

logger = logging.getLogger(__name__)


# ── Models ───────────────────────────────────────────────────────────────────


class Status(str, Enum):
    OK = "ok"
    ERROR = "error"


@dataclass
class CheckResult:
    """Result of a single check in one invocation cycle."""

    name: str
    success: bool
    message: str
    duration_ms: float = 0.0
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "success": self.success,
            "message": self.message,
            "duration": self.duration_ms,
        }
        if self.skipped:
            data["skipped"] = True
        return data


@dataclass
class HealthReport:
    """Ordered results plus the aggregate verdict."""

    status: Status
    checks: list[CheckResult] = field(default_factory=list)
    fault: bool = False

    @classmethod
    def from_results(cls, results: list[CheckResult]) -> HealthReport:
        ok = all(r.success for r in results)
        return cls(status=Status.OK if ok else Status.ERROR, checks=results)

    @classmethod
    def from_fault(cls, error: BaseException) -> HealthReport:
        return cls(
            status=Status.ERROR,
            checks=[CheckResult(
                name="Healthcheck Error",
                success=False,
                message=f"Internal error: {error}",
            )],
            fault=True,
        )

    @property
    def ok(self) -> bool:
        return self.status is Status.OK

    @property
    def http_status(self) -> int:
        if self.fault:
            return 500
        return 200 if self.ok else 503

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "checks": [r.to_dict() for r in self.checks]}


class CheckTimeout(Exception):
    """The bounded execution of a check body hit its deadline."""


def describe_error(error: BaseException) -> str:
    text = str(error)
    name = type(error).__name__
    return f"Error: {name}: {text}" if text else f"Error: {name}"


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Engine ───────────────────────────────────────────────────────────────────


class HealthEngine:
    """Execution orchestrator for the checks held by a CheckRegistry."""

    def __init__(
        self,
        registry: CheckRegistry,
        cache: CacheStore | None = None,
        limiter: RateLimiter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.registry = registry
        self.clock = clock or (limiter.clock if limiter else _utcnow)
        self.cache = cache or (limiter.cache if limiter else CacheStore())
        self.limiter = limiter or RateLimiter(self.cache, clock=self.clock)

    def run_all(self) -> HealthReport:
        """Run one invocation cycle over every registered check."""
        if self.registry is None:
            raise RuntimeError("No check registry configured")

        self.cache.cleanup_old_keys(self.clock())

        results = [self.run_check(check) for check in self.registry.checks]
        report = HealthReport.from_results(results)
        logger.info(
            "Health cycle finished: %d checks, status=%s", len(results), report.status.value,
        )
        return report

    def safe_run(self) -> HealthReport:
        """Like run_all, but an orchestrator fault becomes a fault report."""
        try:
            return self.run_all()
        except Exception as e:
            logger.exception("Health cycle failed")
            return HealthReport.from_fault(e)

    def run_check(self, check: CheckDefinition) -> CheckResult:
        if check.skipped:
            return CheckResult(
                name=check.name, success=True,
                message=check.skip_reason or "Skipped", skipped=True,
            )

        if not self.limiter.should_run(check):
            return self._rate_limited_result(check)

        t0 = time.perf_counter()
        outcome = self._execute(check)
        duration = max(round((time.perf_counter() - t0) * 1000, 1), 0.0)

        if outcome.success:
            self.limiter.record_success(check, outcome.message)
            logger.debug("Check %r passed (%.1fms): %s", check.name, duration, outcome.message)
        else:
            self.limiter.record_failure(check, outcome.message)
            logger.warning("Check %r failed (%.1fms): %s", check.name, duration, outcome.message)

        return CheckResult(
            name=check.name, success=outcome.success,
            message=outcome.message, duration_ms=duration,
        )

    def _execute(self, check: CheckDefinition) -> Outcome:
        try:
            return self._run_bounded(check)
        except CheckTimeout:
            return Outcome(
                success=False,
                message=f"Check timed out after {_format_seconds(check.timeout)} seconds",
            )
        except CheckFailed as e:
            return Outcome(success=False, message=e.message)
        except Exception as e:
            return Outcome(success=False, message=describe_error(e))

    def _run_bounded(self, check: CheckDefinition) -> Outcome:
        if not check.timeout:
            return run_check_body(check.body)

        holder: dict[str, Any] = {}

        def target() -> None:
            try:
                holder["outcome"] = run_check_body(check.body)
            except Exception as e:
                holder["error"] = e

        # an overrunning body is abandoned and must never block interpreter exit
        worker = threading.Thread(
            target=target, name=f"allclear-check-{check.cache_key}", daemon=True,
        )
        worker.start()
        worker.join(check.timeout)

        if worker.is_alive():
            raise CheckTimeout(check.timeout)
        if "error" in holder:
            raise holder["error"]
        if "outcome" not in holder:
            raise RuntimeError("Check body exited without a result")
        return holder["outcome"]

    def _rate_limited_result(self, check: CheckDefinition) -> CheckResult:
        reason = check.skip_reason or "Rate limited"
        last = self.limiter.last_result(check)
        if not last:
            return CheckResult(name=check.name, success=True, message=reason, skipped=True)

        try:
            ran_at = datetime.fromisoformat(last["time"])
            ago = time_ago_in_words(self.clock() - ran_at)
            message = f"{reason} (last run {ago} ago: {last.get('message', '')})"
        except (KeyError, TypeError, ValueError):
            message = f"{reason} (last run: {last.get('message', '')})"

        return CheckResult(
            name=check.name, success=bool(last.get("success", True)),
            message=message, skipped=True,
        )
