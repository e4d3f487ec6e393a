"""Check runner — evaluates one check body inside its own context.

A body is any callable taking a single CheckContext. It reports through the
context's primitives (``make_sure`` / ``assert_true`` / ``expect``) and may
also return an Outcome directly. Exceptions raised by the body are not
caught here; containment is the engine's job.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from .expectations import EarlyExit, Expectation, Outcome, assert_true


class CheckContext:
    """Evaluation scope handed to a single check body.

    A fresh context is built for every execution, so nothing a body stores
    on it is visible to any other body.
    """

    def __init__(self) -> None:
        self.last_outcome: Outcome | None = None

    def assert_true(self, condition: Any, message: str | None = None) -> Outcome:
        outcome = assert_true(condition, message)
        self.last_outcome = outcome
        return outcome

    make_sure = assert_true

    def expect(self, value: Any) -> Expectation:
        return Expectation(value, observer=self._observe)

    def halt(self, reason: str) -> None:
        """Abort the check immediately; reported like an unexpected error."""
        raise EarlyExit(reason)

    def _observe(self, outcome: Outcome) -> None:
        self.last_outcome = outcome


CheckBody = Callable[[CheckContext], Any]


def run_check_body(body: CheckBody) -> Outcome:
    """Run ``body`` and return its outcome (explicit return wins over the last assertion)."""
    ctx = CheckContext()
    returned = body(ctx)
    if isinstance(returned, Outcome):
        return returned
    if ctx.last_outcome is not None:
        return ctx.last_outcome
    return Outcome(success=False, message="Check did not report a result")
