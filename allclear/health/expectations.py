"""Assertion primitives used inside check bodies.

Every primitive either returns an Outcome (success + message) or raises
CheckFailed with a human-readable message. Comparison errors between
incompatible types are NOT converted: a TypeError propagates as-is so the
engine reports it as an unexpected error rather than a plain failure.
"""

from __future__ import annotations

import operator
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


class CheckFailed(Exception):
    """Raised when an assertion inside a check body does not hold."""

    def __init__(self, message: str = "Check failed") -> None:
        super().__init__(message)
        self.message = message


class EarlyExit(Exception):
    """Raised by a check body to bail out with a reason."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class Outcome:
    """Structured result of an assertion or of a whole check body."""

    success: bool
    message: str


def truthy(value: Any) -> bool:
    """Only ``False`` and ``None`` are falsy; 0, "" and empty collections pass."""
    return value is not None and value is not False


def display(value: Any) -> str:
    return "nil" if value is None else str(value)


def assert_true(condition: Any, message: str | None = None) -> Outcome:
    if not truthy(condition):
        raise CheckFailed("Check failed" if message is None else message)
    return Outcome(success=True, message="Check passed" if message is None else message)


class Expectation:
    """Comparison builder returned by ``expect(value)``."""

    def __init__(
        self, actual: Any, observer: Callable[[Outcome], None] | None = None,
    ) -> None:
        self.actual = actual
        self._observer = observer

    def to_eq(self, expected: Any) -> Outcome:
        if self.actual == expected:
            return self._report(Outcome(success=True, message=f"Got: {display(self.actual)}"))
        raise CheckFailed(
            f"Expected {display(expected)} to equal {display(self.actual)} but it doesn't"
        )

    def to_be_greater_than(self, expected: Any) -> Outcome:
        return self._compare(operator.gt, ">", "greater than", expected)

    def to_be_less_than(self, expected: Any) -> Outcome:
        return self._compare(operator.lt, "<", "less than", expected)

    def _compare(
        self,
        op: Callable[[Any, Any], Any],
        symbol: str,
        words: str,
        expected: Any,
    ) -> Outcome:
        # incompatible operand types raise TypeError here
        if op(self.actual, expected):
            return self._report(Outcome(
                success=True,
                message=f"Got: {display(self.actual)} ({symbol} {display(expected)})",
            ))
        raise CheckFailed(
            f"We were expecting {display(self.actual)} to be {words} "
            f"{display(expected)} but it's not"
        )

    def _report(self, outcome: Outcome) -> Outcome:
        if self._observer is not None:
            self._observer(outcome)
        return outcome
