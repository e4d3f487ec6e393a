from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Environment name matched by `only` / `except` gates
    app_env: str = "development"

    # Default per-check timeout in seconds (captured by each check at registration)
    check_timeout: float = 10.0

    # Cache store
    cache_backend: str = "auto"  # "auto" | "sqlite" | "memory"
    cache_path: str = "data/allclear_cache.db"
    cache_prefix: str = "allclear"

    # Python file declaring the checks
    checks_file: str = "checks.py"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    healthcheck_path: str = "/healthcheck"

    # Logging
    log_level: str = "INFO"


settings = Settings()
