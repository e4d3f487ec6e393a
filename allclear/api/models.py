"""Pydantic models for the healthcheck JSON response."""

from __future__ import annotations

from pydantic import BaseModel


class CheckResultOut(BaseModel):
    name: str
    success: bool
    message: str
    duration: float
    skipped: bool | None = None


class HealthReportOut(BaseModel):
    status: str
    checks: list[CheckResultOut]
