"""
CLI interface for Agent Analytics.

Provides command-line access to ingestion and analytics queries.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from agent_analytics.config.loader import Settings, load_settings
from agent_analytics.core.service import AnalyticsService
from agent_analytics.core.sessions import SessionQuery, SessionStatus
from agent_analytics.core.timeseries import TimeseriesMetric
from agent_analytics.core.windows import Granularity, Period
from agent_analytics.storage.db import StoreUnavailableError
from agent_analytics.storage.models import parse_timestamp
from agent_analytics.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def configure_logging(level: str = "INFO") -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # Quiet HTTP client libraries used by the OpenAI SDK
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_service(settings: Settings) -> AnalyticsService:
    """Build the service for a CLI invocation."""
    return AnalyticsService(settings=settings)


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
):
    """Agent Analytics CLI."""
    try:
        settings = load_settings(str(config) if config else None)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        _fail(f"Invalid configuration: {e}")

    configure_logging(settings.logging.level)
    ctx.obj = {"settings": settings}

    if ctx.invoked_subcommand is None:
        console.print("Agent Analytics - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Agent Analytics database."""
    db_path = _settings(ctx).storage.db_path
    try:
        initialize_schema(db_path)
        console.print(f"[green]✓[/] Database initialized at {db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _read_events_file(path: Path) -> List[Dict[str, Any]]:
    """Read events from a JSON array, an {"events": [...]} object or JSON lines."""
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    if text[0] in "[{":
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            return payload.get("events", [payload])
    return [json.loads(line) for line in text.splitlines() if line.strip()]


@app.command()
def ingest(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="JSON array or JSON-lines file of events"),
    org: str = typer.Option(..., "--org", "-o", help="Organization ID"),
):
    """Ingest a batch of events for an organization."""
    settings = _settings(ctx)
    try:
        events = _read_events_file(file)
        service = get_service(settings)
        result = service.ingest(org, events)
    except (OSError, ValueError, StoreUnavailableError) as e:
        _fail(str(e))

    if settings.storage.backend == "memory":
        console.print("[yellow]Memory backend: events are not persisted after this command[/]")

    table = Table(title=f"Ingestion for {org}")
    table.add_column("Accepted", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_row(str(result.accepted), str(result.rejected))
    console.print(table)

    for error in result.errors:
        console.print(f"  [yellow]#{error.index}[/] {error.event_id}: {error.code} {error.message}")
    sys.exit(EXIT_CODE_PASS)


def _format_metric(value: float, unit: Optional[str]) -> str:
    if unit == "usd":
        return f"${value:,.4f}"
    if unit == "percent":
        return f"{value:.2f}%"
    if unit == "seconds":
        return f"{value:,.2f}s"
    return f"{value:,.0f}" if float(value).is_integer() else f"{value:,.2f}"


def _format_change(change: Optional[float]) -> str:
    if change is None:
        return ""
    return f"{'+' if change >= 0 else ''}{change:,.2f}%"


@app.command()
def overview(
    ctx: typer.Context,
    org: str = typer.Option(..., "--org", "-o", help="Organization ID"),
    period: Period = typer.Option(Period.WEEK, "--period", "-p", help="Reporting period"),
    compare: bool = typer.Option(False, "--compare/--no-compare", help="Compare with the previous period"),
):
    """Show headline metrics for an organization."""
    try:
        response = get_service(_settings(ctx)).get_overview(org, period, compare)
    except StoreUnavailableError as e:
        _fail(str(e))

    data = response.data
    table = Table(title=f"{org} {period.value} ({data.window.start:%Y-%m-%d %H:%M} to {data.window.end:%Y-%m-%d %H:%M} UTC)")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    if compare:
        table.add_column("Previous", justify="right")
        table.add_column("Change", justify="right")
        table.add_column("Trend")

    for name, metric in data.metrics.items():
        row = [name, _format_metric(metric.value, metric.unit)]
        if compare:
            row += [
                _format_metric(metric.previous, metric.unit),
                _format_change(metric.change_percent),
                metric.trend.value,
            ]
        table.add_row(*row)

    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def timeseries(
    ctx: typer.Context,
    org: str = typer.Option(..., "--org", "-o", help="Organization ID"),
    metric: TimeseriesMetric = typer.Option(..., "--metric", "-m", help="Metric to chart"),
    period: Period = typer.Option(Period.WEEK, "--period", "-p", help="Reporting period"),
    granularity: Optional[Granularity] = typer.Option(None, "--granularity", "-g", help="Bucket size"),
):
    """Show a metric bucketed over time."""
    try:
        response = get_service(_settings(ctx)).get_timeseries(org, metric, period, granularity)
    except StoreUnavailableError as e:
        _fail(str(e))

    series = response.data
    table = Table(title=f"{series.metric} {period.value} by {series.granularity.value}")
    table.add_column("Bucket start")
    table.add_column("Value", justify="right")
    for point in series.data:
        table.add_row(point.timestamp.strftime("%Y-%m-%d %H:%M"), f"{point.value:,.2f}")
    console.print(table)

    if series.aggregations is not None:
        aggregations = series.aggregations.to_dict()
        console.print("  ".join(f"[bold]{name}[/] {value:,.2f}" for name, value in aggregations.items()))
    sys.exit(EXIT_CODE_PASS)


@app.command()
def sessions(
    ctx: typer.Context,
    org: str = typer.Option(..., "--org", "-o", help="Organization ID"),
    status: Optional[SessionStatus] = typer.Option(None, "--status", help="Filter by session status"),
    agent: Optional[str] = typer.Option(None, "--agent", help="Filter by agent ID"),
    user: Optional[str] = typer.Option(None, "--user", help="Filter by user ID"),
    start: Optional[str] = typer.Option(None, "--start", help="Earliest started_at (ISO 8601)"),
    end: Optional[str] = typer.Option(None, "--end", help="Latest started_at (ISO 8601)"),
    sort: str = typer.Option("-started_at", "--sort", help="started_at or duration, '-' prefix for descending"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Page size"),
    cursor: Optional[str] = typer.Option(None, "--cursor", help="Session ID to continue after"),
):
    """List sessions for an organization."""
    settings = _settings(ctx)
    try:
        query = SessionQuery(
            status=status,
            agent_id=agent,
            user_id=user,
            start_time=parse_timestamp(start) if start else None,
            end_time=parse_timestamp(end) if end else None,
            sort=sort,
            limit=limit or settings.sessions.default_page_size,
            cursor=cursor,
        )
        page = get_service(settings).list_sessions(org, query)
    except (ValueError, StoreUnavailableError) as e:
        _fail(str(e))

    if not page.data:
        console.print("[dim]No sessions found.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Sessions for {org}")
    table.add_column("Session")
    table.add_column("User")
    table.add_column("Agent")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    table.add_column("Tasks ok/failed", justify="right")
    table.add_column("Cost", justify="right")
    for summary in page.data:
        duration = f"{summary.duration_seconds}s" if summary.duration_seconds is not None else "-"
        table.add_row(
            summary.session_id,
            summary.user_id,
            summary.agent_id,
            summary.status.value,
            summary.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            duration,
            f"{summary.metrics.tasks_completed}/{summary.metrics.tasks_failed}",
            f"${summary.metrics.estimated_cost:,.4f}",
        )
    console.print(table)

    if page.has_more:
        console.print(f"More results: --cursor {page.cursor}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def session(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Session ID"),
    org: str = typer.Option(..., "--org", "-o", help="Organization ID"),
):
    """Show the detail view of one session."""
    try:
        detail = get_service(_settings(ctx)).get_session_detail(org, session_id)
    except StoreUnavailableError as e:
        _fail(str(e))

    if detail is None:
        _fail(f"Session {session_id} not found")

    console.print(f"\n[bold]Session:[/bold] {detail.session_id}")
    console.print(f"User: {detail.user_id}  Agent: {detail.agent_id}  Environment: {detail.environment.value}")
    console.print(f"Status: {detail.status.value}")
    console.print(f"Started: {detail.started_at.isoformat()}")
    console.print(f"Ended: {detail.ended_at.isoformat() if detail.ended_at else '-'}")
    if detail.duration_seconds is not None:
        console.print(f"Duration: {detail.duration_seconds}s")

    metrics = detail.metrics
    console.print(
        f"Tasks: {metrics.tasks_completed} completed, {metrics.tasks_failed} failed, "
        f"{metrics.tasks_cancelled} cancelled"
    )
    console.print(f"Tokens: {metrics.tokens_input:,.0f} in / {metrics.tokens_output:,.0f} out")
    console.print(f"Estimated cost: ${metrics.estimated_cost:,.4f}")
    if metrics.avg_task_duration_ms is not None:
        console.print(f"Avg task duration: {metrics.avg_task_duration_ms:,.2f}ms")
    console.print(f"Events: {detail.timeline.event_count}")
    if detail.client_info is not None:
        info = detail.client_info
        console.print(f"Client: {info.ide or '-'} {info.ide_version or ''} on {info.os or '-'} {info.os_version or ''}")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
