"""Check registry — ordered check definitions and registration-time gating.

Gates are evaluated once, when a check is registered, in this order:

  1. run     rate frequency must parse
  2. only    current environment must be listed
  3. except  current environment must not be listed
  4. if      condition must hold
  5. unless  condition must not hold

The first gate that fails marks the check skipped and the rest are never
evaluated (an `if` predicate is not called when `only` already failed).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from ..config import settings
from .expectations import truthy
from .rate_limit import RateSpec, RunFrequencyError, parse_run_frequency, slugify
from .runner import CheckBody

logger = logging.getLogger(__name__)

# Python keywords cannot be passed as keyword arguments
_OPTION_ALIASES = {"if_": "if", "except_": "except"}


class CheckStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SKIPPED = "skipped"


# ── Conditions ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LiteralCondition:
    value: Any

    def evaluate(self) -> bool:
        return truthy(self.value)


@dataclass(frozen=True)
class PredicateCondition:
    predicate: Callable[[], Any]

    def evaluate(self) -> bool:
        return truthy(self.predicate())


Condition = Union[LiteralCondition, PredicateCondition]


def to_condition(value: Any) -> Condition:
    if callable(value):
        return PredicateCondition(value)
    return LiteralCondition(value)


# ── Definition ───────────────────────────────────────────────────────────────


@dataclass
class CheckDefinition:
    """A registered check. Only `status` / `skip_reason` change after registration."""

    name: str
    body: CheckBody
    timeout: float | None
    options: dict[str, Any] = field(default_factory=dict)
    status: CheckStatus = CheckStatus.PENDING
    skip_reason: str | None = None
    rate: RateSpec | None = None

    @property
    def cache_key(self) -> str:
        return slugify(self.name)

    @property
    def skipped(self) -> bool:
        return self.status is CheckStatus.SKIPPED


def _environments(value: Any, option: str) -> list[str]:
    if isinstance(value, Enum):
        return [str(value.value)]
    if isinstance(value, str):
        return [value]
    if isinstance(value, Iterable):
        envs = []
        for item in value:
            if isinstance(item, Enum):
                item = item.value
            if not isinstance(item, str):
                raise TypeError(f"`{option}` environments must be strings, got {item!r}")
            envs.append(item)
        return envs
    raise TypeError(f"`{option}` must be an environment name or a list of them, got {value!r}")


def _validate_timeout(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"timeout must be a number of seconds, got {value!r}")
    if value < 0:
        raise ValueError(f"timeout must not be negative, got {value!r}")
    return value


# ── Registry ─────────────────────────────────────────────────────────────────


class CheckRegistry:
    """Ordered collection of checks for one process (or one test)."""

    def __init__(self, env: str | None = None, default_timeout: float | None = None) -> None:
        self.env = str(env if env is not None else settings.app_env)
        self._initial_timeout = _validate_timeout(
            default_timeout if default_timeout is not None else settings.check_timeout
        )
        self._default_timeout = self._initial_timeout
        self._checks: list[CheckDefinition] = []

    @property
    def default_timeout(self) -> float | None:
        return self._default_timeout

    @default_timeout.setter
    def default_timeout(self, value: float | None) -> None:
        self._default_timeout = _validate_timeout(value)

    @property
    def checks(self) -> tuple[CheckDefinition, ...]:
        return tuple(self._checks)

    def __len__(self) -> int:
        return len(self._checks)

    def __iter__(self) -> Iterator[CheckDefinition]:
        return iter(tuple(self._checks))

    def reset(self) -> None:
        """Discard every registered check and restore the initial default timeout."""
        self._checks.clear()
        self._default_timeout = self._initial_timeout

    def check(self, name: str, body: CheckBody | None = None, **options: Any) -> Any:
        """Register a check; without ``body`` returns a decorator.

        ``if`` and ``except`` are spelled ``if_`` / ``except_`` here.
        """
        if body is not None:
            return self.register(name, options, body)

        def decorator(fn: CheckBody) -> CheckBody:
            self.register(name, options, fn)
            return fn

        return decorator

    def register(
        self, name: str, options: Mapping[str, Any] | None, body: CheckBody,
    ) -> CheckDefinition:
        if not callable(body):
            raise TypeError(f"check body must be callable, got {body!r}")
        opts = {_OPTION_ALIASES.get(k, k): v for k, v in (options or {}).items()}

        timeout = (
            _validate_timeout(opts["timeout"]) if "timeout" in opts else self._default_timeout
        )
        check = CheckDefinition(name=name, body=body, timeout=timeout, options=opts)
        self._apply_gates(check, opts)
        self._checks.append(check)

        if check.skipped:
            logger.debug("Registered check %r (skipped: %s)", name, check.skip_reason)
        else:
            logger.debug("Registered check %r", name)
        return check

    def _apply_gates(self, check: CheckDefinition, opts: dict[str, Any]) -> None:
        if "run" in opts:
            try:
                check.rate = parse_run_frequency(opts["run"])
            except RunFrequencyError as e:
                return self._skip(check, f"Invalid run frequency: {e}")

        if "only" in opts:
            envs = _environments(opts["only"], "only")
            if self.env not in envs:
                return self._skip(check, f"Only runs in {', '.join(envs)}")

        if "except" in opts:
            envs = _environments(opts["except"], "except")
            if self.env in envs:
                return self._skip(check, f"This check doesn't run in {', '.join(envs)}")

        if "if" in opts and not to_condition(opts["if"]).evaluate():
            return self._skip(check, "Check condition not met")

        if "unless" in opts and to_condition(opts["unless"]).evaluate():
            return self._skip(check, "Check `unless` condition met")

        check.status = CheckStatus.ACTIVE

    @staticmethod
    def _skip(check: CheckDefinition, reason: str) -> None:
        check.status = CheckStatus.SKIPPED
        check.skip_reason = reason
