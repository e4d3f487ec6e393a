"""Entry point for the allclear health-check runner."""

from __future__ import annotations

import argparse
import json
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from allclear.api.server import build_engine
from allclear.config import settings
from allclear.health.engine import HealthReport

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting allclear healthcheck server", style="bold green"))
    uvicorn.run(
        "allclear.api.server:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def print_report(report: HealthReport) -> None:
    table = Table(title=f"Health: {report.status.value}")
    table.add_column("Check", style="bold")
    table.add_column("Result")
    table.add_column("Message")
    table.add_column("Duration", justify="right")

    for r in report.checks:
        if r.skipped:
            verdict = "[yellow]skipped[/yellow]" if r.success else "[red]skipped (failing)[/red]"
            duration = ""
        else:
            verdict = "[green]pass[/green]" if r.success else "[red]fail[/red]"
            duration = f"{r.duration_ms}ms"
        table.add_row(r.name, verdict, r.message, duration)

    console.print(table)


def run_once(checks_file: str | None, as_json: bool) -> int:
    """Run one cycle from the CLI. Returns the process exit code."""
    engine = build_engine(checks_file)
    report = engine.safe_run()

    if as_json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print_report(report)
    return 0 if report.ok else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="allclear health-check runner")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the healthcheck server")

    run_parser = sub.add_parser("run", help="Run every check once and print the results")
    run_parser.add_argument("--checks", help="Path to the checks file", default=None)
    run_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "run":
        sys.exit(run_once(args.checks, args.json))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
