"""Health subsystem — registry, rate limiter, cache store, engine."""

from .cache import CacheStore, MemoryBackend, SqliteBackend, build_cache_store
from .engine import CheckResult, HealthEngine, HealthReport, Status
from .expectations import CheckFailed, EarlyExit, Expectation, Outcome
from .loader import load_checks_file
from .rate_limit import RateLimiter, RateSpec, RunFrequencyError, parse_run_frequency
from .registry import CheckDefinition, CheckRegistry, CheckStatus
from .runner import CheckContext, run_check_body
