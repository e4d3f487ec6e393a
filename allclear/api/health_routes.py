"""Healthcheck endpoint — serves the current status as JSON or HTML.

  GET <healthcheck_path>   runs one cycle; 200 ok / 503 error / 500 fault

JSON is returned when the Accept header asks for it, HTML otherwise.
"""

from __future__ import annotations

import html
import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response

from allclear.api.models import CheckResultOut, HealthReportOut
from allclear.config import settings
from allclear.health.engine import HealthEngine, HealthReport

logger = logging.getLogger(__name__)

health_router = APIRouter()


def _run_cycle(request: Request) -> HealthReport:
    try:
        engine: HealthEngine = request.app.state.health_engine
        return engine.run_all()
    except Exception as e:
        logger.exception("Healthcheck cycle failed")
        return HealthReport.from_fault(e)


def report_to_model(report: HealthReport) -> HealthReportOut:
    return HealthReportOut(
        status=report.status.value,
        checks=[
            CheckResultOut(
                name=r.name,
                success=r.success,
                message=r.message,
                duration=r.duration_ms,
                skipped=True if r.skipped else None,
            )
            for r in report.checks
        ],
    )


def render_html(report: HealthReport) -> str:
    """Minimal standalone status page; every user string is escaped."""
    heading = "🤙 It's all good" if report.ok else "❌ Something's wrong"
    rows = []
    for r in report.checks:
        name = html.escape(r.name)
        message = html.escape(r.message)
        if r.skipped:
            icon = "⏭️" if r.success else "❌"
            rows.append(f'<div class="check skipped">{icon} <b>{name}</b>: <i>{message}</i></div>')
        else:
            icon = "✅" if r.success else "❌"
            rows.append(
                f'<div class="check">{icon} <b>{name}</b>: <i>{message}</i> '
                f"<code>[{r.duration_ms}ms]</code></div>"
            )
    body = "\n".join(rows) if rows else "<p>No health checks were run.</p>"
    return (
        "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\"><title>Health check</title></head>\n"
        f"<body><header><h1>{heading}</h1></header>\n<main>\n{body}\n</main></body></html>"
    )


@health_router.get(settings.healthcheck_path)
def healthcheck(request: Request) -> Response:
    """Run every registered check and report the outcome."""
    report = _run_cycle(request)

    if "application/json" in request.headers.get("accept", ""):
        payload = report_to_model(report).model_dump(exclude_none=True)
        return JSONResponse(payload, status_code=report.http_status)
    return HTMLResponse(render_html(report), status_code=report.http_status)
