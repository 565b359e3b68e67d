from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from foreman import services
from foreman.config import get_settings
from foreman.db import init_db
from foreman.errors import ForemanError
from foreman.schemas import PSEUDO_STATUSES, SORT_MODES, TASK_STATUSES, WarRoomFilters
from foreman.sources import RestRowSource, RowSource, build_source

log = logging.getLogger(__name__)

_source: RowSource | None = None


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def foreman_lifespan(server: FastMCP) -> AsyncIterator[None]:
    global _source
    settings = get_settings()
    factory = init_db() if settings.source == "sql" else None
    _source = build_source(settings, factory)
    try:
        yield
    finally:
        if isinstance(_source, RestRowSource):
            await _source.aclose()
        _source = None


mcp = FastMCP(
    "Foreman",
    instructions=(
        "Foreman is a read-only dashboard over construction projects: open tasks (the war room), "
        "budgets, quotes and per-project health. Start with get_war_room_stats() for an overview, "
        "then get_war_room() to see what needs attention, get_budget_dashboard() for money, and "
        "list_decisions() for quotes waiting on approval."
    ),
    lifespan=foreman_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _row_source() -> RowSource:
    if _source is None:
        raise ForemanError("Row source is not initialized")
    return _source


def _user(user_id: str | None) -> str | None:
    return user_id or get_settings().user_id or None


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("foreman://overview")
def foreman_overview() -> str:
    """Overview of Foreman: data model, workflow, and the sort and filter vocabulary."""
    return json.dumps({
        "system": "Foreman - construction project command center",
        "description": (
            "Foreman turns raw task, budget and quote rows into the views a project lead works "
            "from: an ordered war room of open tasks, budget rollups and project health."
        ),
        "data_model": {
            "task": "An open item (RFI) on a project with priority, status, blocking and overdue flags.",
            "project": "A construction job with client, address and budget areas.",
            "budget_area": "A section of a project's budget (kitchen, electrical...). Holds line items.",
            "quote": "A vendor's price for a trade on a project, compared against the trade allowance.",
        },
        "workflow": [
            "1. get_war_room_stats() - totals for overdue, waiting on me and blocking.",
            "2. get_war_room(status=..., sort_by=...) - the ordered task list.",
            "3. get_budget_dashboard(project_id) - rollups by area, project and trade.",
            "4. get_project_health(project_id) - health verdict for one project.",
            "5. list_decisions() - quotes needing approval or over budget.",
            "6. search(query) - find a project, task or quote by name.",
        ],
        "task_statuses": list(TASK_STATUSES),
        "pseudo_statuses": list(PSEUDO_STATUSES),
        "sort_modes": list(SORT_MODES),
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: War room
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_war_room(
    project_id: str | None = None, status: str | None = None,
    sort_by: str = "urgency", user_id: str | None = None,
) -> dict:
    """List open tasks, filtered and ordered the way the war room shows them.

    Args:
        project_id: Only tasks of this project.
        status: A task status (open, waiting_on_me, ...) or one of overdue, blocking, on_me.
        sort_by: urgency, priority, project, date_newest, date_oldest, alpha_az, alpha_za, status.
        user_id: Whose tasks to read; defaults to FOREMAN_USER_ID.
    """
    if sort_by not in SORT_MODES:
        return {"error": f"Unknown sort mode {sort_by!r}; expected one of {', '.join(SORT_MODES)}"}
    try:
        view = await services.load_war_room(
            _row_source(), _user(user_id),
            WarRoomFilters(project_id=project_id, status=status, sort_by=sort_by),
        )
    except ForemanError as exc:
        return {"error": str(exc)}
    return services.war_room_summary(view)


@mcp.tool()
async def get_war_room_stats(user_id: str | None = None) -> dict:
    """Counts of all open tasks: total, overdue, waiting on me (on_me) and blocking."""
    try:
        stats = await services.load_war_room_stats(_row_source(), _user(user_id))
    except ForemanError as exc:
        return {"error": str(exc)}
    return services.dump(stats)


# ---------------------------------------------------------------------------
# Tools: Budget & health
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_budget_dashboard(project_id: str | None = None) -> dict:
    """Budget rollups by area, project and trade plus summary totals.

    Args:
        project_id: Restrict every rollup to one project; omit for all projects.
    """
    try:
        dashboard = await services.load_budget_dashboard(_row_source(), project_id)
    except ForemanError as exc:
        return {"error": str(exc)}
    return services.dump(dashboard)


@mcp.tool()
async def get_project_health(project_id: str | None = None, user_id: str | None = None) -> dict:
    """Health verdict, task counts and budget variance per project (or for one project)."""
    try:
        if project_id is None:
            report = await services.load_health_report(_row_source(), _user(user_id))
            return {"projects": [services.dump(p) for p in report.projects]}
        health = await services.load_project_health(_row_source(), project_id, _user(user_id))
    except ForemanError as exc:
        return {"error": str(exc)}
    if health is None:
        return {"error": f"Project {project_id} not found"}
    return services.dump(health)


@mcp.tool()
async def list_decisions() -> dict:
    """Quotes waiting for approval, then pending quotes that are over budget."""
    try:
        decisions = await services.load_decisions(_row_source())
    except ForemanError as exc:
        return {"error": str(exc)}
    return {"decisions": [services.dump(d) for d in decisions]}


@mcp.tool()
async def search(query: str, limit: int = 20, user_id: str | None = None) -> dict:
    """Fuzzy search across project names, tasks and quotes."""
    try:
        hits = await services.run_search(
            _row_source(), query, user_id=_user(user_id),
            limit=max(1, min(limit, 100)), min_score=get_settings().search_min_score,
        )
    except ForemanError as exc:
        return {"error": str(exc)}
    return {"query": query, "hits": [services.dump(h) for h in hits]}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Foreman MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
