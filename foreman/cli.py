from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from foreman import services
from foreman.config import get_settings
from foreman.db import init_db
from foreman.errors import ForemanError
from foreman.schemas import SORT_MODES, WarRoomFilters
from foreman.sources import RestRowSource, RowSource, build_source

app = typer.Typer(help="Foreman: construction project command center")
console = Console()

T = TypeVar("T")

_PRIORITY_STYLES = {"P1": "bold red", "P2": "yellow", "P3": "dim"}
_HEALTH_STYLES = {"good": "green", "warning": "yellow", "critical": "bold red"}


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    project_root: str | None = typer.Option(
        None,
        "--project-root",
        help="Directory holding data/ (database and exports).",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if project_root:
        os.environ["FOREMAN_HOME"] = str(Path(project_root).expanduser().resolve())
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _format_scalar(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:,.2f}"
    if value is None:
        return "-"
    return str(value)


def _money(value: float | None) -> str:
    return "-" if value is None else f"${value:,.0f}"


def _print(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    for key, value in payload.items():
        if isinstance(value, (str, int, float, bool)) or value is None:
            table.add_row(key, _format_scalar(value))
    console.print(Panel(table, title=title, border_style="cyan"))


def _run(operation: Callable[[RowSource], Awaitable[T]]) -> T:
    """Build the configured row source, run *operation* against it and close it."""
    settings = get_settings()

    async def runner() -> T:
        source = build_source(settings, init_db() if settings.source == "sql" else None)
        try:
            return await operation(source)
        finally:
            if isinstance(source, RestRowSource):
                await source.aclose()

    try:
        return asyncio.run(runner())
    except ForemanError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc


def _user(user_id: str | None) -> str | None:
    return user_id or get_settings().user_id or None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db_command(
    ctx: typer.Context,
    db_url: str | None = typer.Option(default=None, help="Optional SQLAlchemy DB URL"),
) -> None:
    init_db(db_url)
    _print("init-db", {"status": "ok", "database_url": db_url or get_settings().database_url}, ctx)


@app.command("war-room")
def war_room_command(
    ctx: typer.Context,
    project_id: str | None = typer.Option(None, help="Only tasks of this project."),
    status: str | None = typer.Option(None, help="Task status or one of overdue, blocking, on_me."),
    sort_by: str = typer.Option("urgency", help=f"Sort mode: {', '.join(SORT_MODES)}."),
    user_id: str | None = typer.Option(None, help="Whose tasks; defaults to FOREMAN_USER_ID."),
    limit: int = typer.Option(50, help="Rows to show."),
) -> None:
    if sort_by not in SORT_MODES:
        raise typer.BadParameter(f"expected one of {', '.join(SORT_MODES)}", param_hint="--sort-by")
    filters = WarRoomFilters(project_id=project_id, status=status, sort_by=sort_by)
    view = _run(lambda source: services.load_war_room(source, _user(user_id), filters))

    if _wants_json(ctx):
        typer.echo(json.dumps(services.war_room_summary(view), indent=2, ensure_ascii=False))
        return

    table = Table(show_header=True, header_style="bold yellow", box=ROUNDED)
    table.add_column("Pri", justify="center")
    table.add_column("Task", style="bold")
    table.add_column("Project")
    table.add_column("Status")
    table.add_column("Next action")
    table.add_column("Days", justify="right")
    table.add_column("Flags")
    for task in view.tasks[:limit]:
        flags = " ".join(f for f, on in (("[red]BLOCKING[/red]", task.is_blocking),
                                         ("[magenta]OVERDUE[/magenta]", task.is_overdue)) if on)
        table.add_row(
            f"[{_PRIORITY_STYLES.get(task.priority, '')}]{task.priority}[/]",
            task.task, task.project_name, task.status.replace("_", " "),
            task.next_action_date.isoformat() if task.next_action_date else "-",
            _format_scalar(task.days_since_contact), flags,
        )
    s = view.stats
    console.print(Panel(
        table, border_style="yellow",
        title=f"War room ({len(view.tasks)} shown) | {s.total} open · {s.overdue} overdue · "
              f"{s.on_me} on me · {s.blocking} blocking",
    ))


@app.command("stats")
def stats_command(
    ctx: typer.Context,
    user_id: str | None = typer.Option(None, help="Whose tasks; defaults to FOREMAN_USER_ID."),
) -> None:
    stats = _run(lambda source: services.load_war_room_stats(source, _user(user_id)))
    _print("war room stats", services.dump(stats), ctx)


@app.command("budget")
def budget_command(
    ctx: typer.Context,
    project_id: str | None = typer.Option(None, help="Scope every rollup to one project."),
) -> None:
    dashboard = _run(lambda source: services.load_budget_dashboard(source, project_id))
    payload = services.dump(dashboard)
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    _print("budget", payload, ctx)
    areas = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    for col in ("Area", "Budgeted", "Actual", "Remaining"):
        areas.add_column(col, justify="left" if col == "Area" else "right")
    for a in dashboard.budget_by_area:
        areas.add_row(a.area_name, _money(a.budgeted), _money(a.actual), _money(a.remaining))
    console.print(Panel(areas, title="budget · by area", border_style="magenta"))

    trades = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    for col in ("Trade", "Allowance", "Lowest", "Approved", "Quotes"):
        trades.add_column(col, justify="left" if col == "Trade" else "right")
    for t in dashboard.quotes_by_trade:
        approved = _money(t.approved_quote)
        if t.is_approved_over_budget:
            approved = f"[red]{approved}[/red]"
        lowest = _money(t.lowest_quote)
        if t.is_lowest_under_budget:
            lowest = f"[green]{lowest}[/green]"
        trades.add_row(t.trade_name, _money(t.budget_allowance), lowest, approved, str(t.quote_count))
    console.print(Panel(trades, title="budget · by trade", border_style="magenta"))


@app.command("health")
def health_command(
    ctx: typer.Context,
    user_id: str | None = typer.Option(None, help="Whose tasks; defaults to FOREMAN_USER_ID."),
) -> None:
    report = _run(lambda source: services.load_health_report(source, _user(user_id)))
    if _wants_json(ctx):
        typer.echo(json.dumps(services.dump(report), indent=2, ensure_ascii=False))
        return

    table = Table(show_header=True, header_style="bold green", box=ROUNDED)
    for col in ("Project", "Health", "Tasks", "Blocking", "Overdue", "On me", "Budget", "Used"):
        table.add_column(col, justify="left" if col in ("Project", "Health") else "right")
    for p in report.projects:
        table.add_row(
            p.project_name, f"[{_HEALTH_STYLES[p.health]}]{p.label}[/]", str(p.total_tasks),
            str(p.blocking), str(p.overdue), str(p.on_me), _money(p.total_budgeted),
            f"{p.utilization:.0f}%",
        )
    console.print(Panel(table, title="project health", border_style="green"))

    if report.decisions:
        decisions = Table(show_header=True, header_style="bold red", box=ROUNDED)
        decisions.add_column("Project")
        decisions.add_column("Decision", style="bold")
        decisions.add_column("Amount", justify="right")
        for d in report.decisions:
            decisions.add_row(d.project_name, d.description, _money(d.amount))
        console.print(Panel(decisions, title="decisions needed", border_style="red"))


@app.command("search")
def search_command(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Search text."),
    limit: int = typer.Option(20, help="Maximum hits."),
    user_id: str | None = typer.Option(None, help="Whose tasks; defaults to FOREMAN_USER_ID."),
) -> None:
    min_score = get_settings().search_min_score
    hits = _run(lambda source: services.run_search(
        source, query, user_id=_user(user_id), limit=limit, min_score=min_score,
    ))
    if _wants_json(ctx):
        typer.echo(json.dumps([services.dump(h) for h in hits], indent=2, ensure_ascii=False))
        return

    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Kind", style="dim")
    table.add_column("Match", style="bold")
    table.add_column("Detail")
    table.add_column("Score", justify="right")
    for h in hits:
        table.add_row(h.kind, h.label, h.detail, f"{h.score:.0f}")
    console.print(Panel(table, title=f"search · {query}", border_style="cyan"))


@app.command("export")
def export_command(
    ctx: typer.Context,
    output: Path | None = typer.Option(None, help="Output .xlsx path (default under data/exports)."),
    user_id: str | None = typer.Option(None, help="Whose tasks; defaults to FOREMAN_USER_ID."),
) -> None:
    path = output or get_settings().exports_dir / f"foreman-report-{datetime.now(UTC):%Y-%m-%d}.xlsx"
    written = _run(lambda source: services.run_export(source, path, _user(user_id)))
    _print("export", {"status": "ok", "path": str(written)}, ctx)


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8001, help="Port."),
) -> None:
    import uvicorn
    uvicorn.run("foreman.app:app", host=host, port=port)


@app.command("mcp")
def mcp_command() -> None:
    from foreman.mcp_server import main as mcp_main
    mcp_main()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
