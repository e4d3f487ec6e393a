"""Tests for the health engine (execution orchestrator)."""

from __future__ import annotations

import threading
import time

import pytest

from allclear.health.engine import (
    CheckResult,
    HealthEngine,
    HealthReport,
    Status,
    describe_error,
)
from allclear.health.expectations import Outcome
from allclear.health.registry import CheckRegistry


def _pass(c) -> None:
    c.make_sure(True, "Connected")


def _fail(c) -> None:
    c.make_sure(False, "Service unavailable")


# ── Models ───────────────────────────────────────────────────────────────────


class TestModels:
    def test_check_result_to_dict(self) -> None:
        r = CheckResult(name="DB", success=True, message="ok", duration_ms=1.5)
        assert r.to_dict() == {"name": "DB", "success": True, "message": "ok", "duration": 1.5}

    def test_skipped_result_to_dict(self) -> None:
        r = CheckResult(name="DB", success=True, message="skip", skipped=True)
        assert r.to_dict()["skipped"] is True
        assert r.to_dict()["duration"] == 0

    def test_report_http_status(self) -> None:
        assert HealthReport.from_results([]).http_status == 200
        failing = CheckResult(name="x", success=False, message="")
        assert HealthReport.from_results([failing]).http_status == 503
        assert HealthReport.from_fault(RuntimeError("x")).http_status == 500

    def test_fault_report(self) -> None:
        report = HealthReport.from_fault(RuntimeError("config missing"))
        assert report.status is Status.ERROR
        assert [r.name for r in report.checks] == ["Healthcheck Error"]
        assert report.checks[0].message == "Internal error: config missing"

    def test_describe_error(self) -> None:
        assert describe_error(RuntimeError("boom")) == "Error: RuntimeError: boom"
        assert describe_error(KeyError()) == "Error: KeyError"


# ── Execution ────────────────────────────────────────────────────────────────


class TestRunAll:
    def test_no_checks(self, engine: HealthEngine) -> None:
        report = engine.run_all()
        assert report.checks == []
        assert report.status is Status.OK

    def test_runs_in_registration_order(self, engine, registry) -> None:
        order = []
        for name in ("First", "Second", "Third"):
            registry.check(name, lambda c, n=name: order.append(n) or c.make_sure(True))

        report = engine.run_all()
        assert [r.name for r in report.checks] == ["First", "Second", "Third"]
        assert order == ["First", "Second", "Third"]

        engine.run_all()
        assert order == ["First", "Second", "Third"] * 2

    def test_passing_check(self, engine, registry) -> None:
        registry.check("DB Connection", _pass)
        result = engine.run_all().checks[0]
        assert result.success is True
        assert result.message == "Connected"
        assert result.skipped is False
        assert result.duration_ms >= 0

    def test_assertion_failure(self, engine, registry) -> None:
        registry.check("Service", _fail)
        report = engine.run_all()
        assert report.checks[0].success is False
        assert report.checks[0].message == "Service unavailable"
        assert report.status is Status.ERROR

    def test_expectation_result(self, engine, registry) -> None:
        registry.check("Disk", lambda c: c.expect(42).to_be_less_than(90))
        assert engine.run_all().checks[0].message == "Got: 42 (< 90)"

    def test_returned_outcome(self, engine, registry) -> None:
        registry.check("Direct", lambda c: Outcome(success=False, message="custom"))
        result = engine.run_all().checks[0]
        assert (result.success, result.message) == (False, "custom")

    def test_timeout(self, engine, registry) -> None:
        def slow(c) -> None:
            time.sleep(0.1)
            c.make_sure(True)

        registry.check("Slow check", slow, timeout=0.01)
        result = engine.run_all().checks[0]
        assert result.success is False
        assert result.message == "Check timed out after 0.01 seconds"
        assert "timed out" in result.message
        assert result.duration_ms >= 0

    def test_timed_out_body_runs_on_daemon_thread(self, engine, registry) -> None:
        release = threading.Event()
        registry.check("Hung", lambda c: release.wait(5), timeout=0.01)

        result = engine.run_all().checks[0]
        workers = [t for t in threading.enumerate() if t.name == "allclear-check-hung"]
        release.set()

        assert result.message == "Check timed out after 0.01 seconds"
        assert workers
        assert all(t.daemon for t in workers)

    def test_zero_timeout_is_unbounded(self, engine, registry) -> None:
        def slow(c) -> None:
            time.sleep(0.02)
            c.make_sure(True)

        registry.check("Unbounded", slow, timeout=0)
        assert engine.run_all().checks[0].success is True

    def test_body_raising_timeout_error_is_not_a_deadline(self, engine, registry) -> None:
        def body(c) -> None:
            raise TimeoutError("socket timed out")

        registry.check("Socket", body)
        result = engine.run_all().checks[0]
        assert result.message == "Error: TimeoutError: socket timed out"

    def test_duration_reflects_execution_time(self, engine, registry) -> None:
        def slow(c) -> None:
            time.sleep(0.05)
            c.make_sure(True)

        registry.check("Slow", slow)
        duration = engine.run_all().checks[0].duration_ms
        assert duration >= 50
        assert round(duration, 1) == duration

    @pytest.mark.parametrize("exc, text", [
        (RuntimeError("Unexpected error"), "Unexpected error"),
        (ValueError("Bad argument"), "Bad argument"),
        (ZeroDivisionError("division by zero"), "division by zero"),
    ])
    def test_unexpected_errors_are_contained(self, engine, registry, exc, text) -> None:
        def boom(c) -> None:
            raise exc

        registry.check("Error check", boom)
        registry.check("After", _pass)
        report = engine.run_all()

        assert report.checks[0].success is False
        assert report.checks[0].message.startswith("Error: ")
        assert text in report.checks[0].message
        assert report.checks[1].success is True

    def test_type_error_from_comparison(self, engine, registry) -> None:
        registry.check("Type error check", lambda c: c.expect(None).to_be_greater_than(5))
        result = engine.run_all().checks[0]
        assert result.success is False
        assert result.message.startswith("Error: TypeError")

    def test_early_exit(self, engine, registry) -> None:
        registry.check("Vips", lambda c: c.halt("Vips is not available"))
        result = engine.run_all().checks[0]
        assert result.success is False
        assert result.message == "Error: EarlyExit: Vips is not available"

    def test_body_failure_records_error_state(self, engine, registry, limiter) -> None:
        check = registry.check("Flaky", _fail)
        engine.run_all()
        assert limiter.last_error(check) == "Service unavailable"
        assert limiter.last_result(check)["success"] is False

        check.body = _pass
        engine.run_all()
        assert limiter.last_error(check) is None
        assert limiter.last_result(check)["success"] is True

    def test_orchestrator_fault(self, limiter) -> None:
        engine = HealthEngine(None, limiter=limiter)
        with pytest.raises(RuntimeError):
            engine.run_all()
        report = engine.safe_run()
        assert report.fault is True
        assert report.http_status == 500


# ── Skips and aggregation ────────────────────────────────────────────────────


class TestSkipsAndAggregation:
    def test_registration_skip(self, engine, registry) -> None:
        registry.check("Conditional", _fail, if_=False)
        report = engine.run_all()
        result = report.checks[0]
        assert result.skipped is True
        assert result.success is True
        assert result.message == "Check condition not met"
        assert result.duration_ms == 0
        assert report.status is Status.OK

    def test_one_failure_among_many(self, engine, registry) -> None:
        registry.check("Pass 1", _pass)
        registry.check("Fail 1", _fail)
        registry.check("Skip", _fail, if_=False)
        registry.check("Pass 2", _pass)
        report = engine.run_all()
        assert len(report.checks) == 4
        assert report.status is Status.ERROR

    def test_all_skipped_is_ok(self, engine, registry) -> None:
        registry.check("Skip 1", _pass, if_=False)
        registry.check("Skip 2", _pass, unless=True)
        assert engine.run_all().status is Status.OK


# ── Rate limiting ────────────────────────────────────────────────────────────


class TestRateLimitedChecks:
    def test_rate_limited_check_shows_last_result(self, engine, registry, clock) -> None:
        calls = []
        registry.check(
            "Expensive", lambda c: calls.append(1) or c.make_sure(True, "all fine"),
            run="1 time per hour",
        )

        first = engine.run_all().checks[0]
        assert first.skipped is False
        clock.advance(minutes=5)
        second = engine.run_all().checks[0]

        assert calls == [1]
        assert second.skipped is True
        assert second.success is True
        assert second.duration_ms == 0
        assert second.message.startswith("Rate limited (1/1 runs this hour)")
        assert "last run 5 minutes ago: all fine" in second.message

        clock.advance(minutes=56)
        third = engine.run_all().checks[0]
        assert third.skipped is False
        assert calls == [1, 1]

    def test_failure_persists_while_skipped(self, engine, registry, clock) -> None:
        registry.check("Expensive", _fail, run="5 times per hour")
        first = engine.run_all()
        assert first.status is Status.ERROR

        clock.advance(minutes=1)
        second = engine.run_all()
        result = second.checks[0]
        assert result.skipped is True
        assert result.success is False
        assert "Waiting until 2020-01-01 01:00 UTC to retry failed check" in result.message
        assert second.status is Status.ERROR

        clock.advance(hours=2)
        retried = engine.run_all().checks[0]
        assert retried.skipped is False
        assert retried.success is False

        clock.advance(minutes=1)
        result = engine.run_all().checks[0]
        assert result.skipped is True
        assert "Waiting until 2020-01-01 03:01 UTC" in result.message

    def test_lockout_clears_after_success(self, engine, registry, limiter) -> None:
        check = registry.check("Expensive", _pass, run="5 times per hour")
        limiter.record_failure(check, "Error: earlier")
        assert engine.run_all().checks[0].skipped is True

        limiter.record_success(check, "recovered out of band")
        result = engine.run_all().checks[0]
        assert result.skipped is False
        assert result.success is True

    def test_rate_limited_without_history_is_ok(self, engine, registry, limiter) -> None:
        check = registry.check("Expensive", _pass, run="1 time per day")
        assert limiter.should_run(check)
        result = engine.run_all().checks[0]
        assert result.skipped is True
        assert result.success is True
        assert result.message.startswith("Rate limited (1/1 runs this day)")

    def test_invalid_frequency_is_reported_as_skip(self, engine, registry) -> None:
        registry.check("Bad rate", _pass, run="5 times per week")
        result = engine.run_all().checks[0]
        assert result.skipped is True
        assert result.message.startswith("Invalid run frequency: Unsupported frequency format")


def test_engines_do_not_share_state(limiter) -> None:
    a, b = CheckRegistry(env="test"), CheckRegistry(env="test")
    a.check("Only in a", _pass)
    assert HealthEngine(b, limiter=limiter).run_all().checks == []
