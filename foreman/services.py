"""Shared orchestration for the Foreman API, MCP server and CLI.

Each operation fetches what it needs from a ``RowSource`` (independent reads
are awaited together) and then hands the rows to the pure pipelines.
Fetch errors propagate unchanged.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from foreman.budget import build_budget_dashboard
from foreman.exporter import export_workbook
from foreman.health import build_health_report, decisions_needed
from foreman.schemas import (
    BudgetDashboard,
    Decision,
    HealthReport,
    ProjectHealth,
    SearchHit,
    TaskStats,
    WarRoomFilters,
    WarRoomView,
)
from foreman.search import DEFAULT_LIMIT, DEFAULT_MIN_SCORE, search
from foreman.sources import RowSource
from foreman.warroom import build_war_room, compute_task_stats

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

TASK_SUMMARY_FIELDS = (
    "id", "project_id", "project_name", "task", "priority", "status", "is_blocking",
    "is_overdue", "next_action_date", "days_since_contact", "poc_name", "blocked_by_task_name",
)


def dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json")


def task_summary(task: Any) -> dict[str, Any]:
    result = {f: getattr(task, f, None) for f in TASK_SUMMARY_FIELDS}
    if result["next_action_date"] is not None:
        result["next_action_date"] = result["next_action_date"].isoformat()
    return result


def war_room_summary(view: WarRoomView) -> dict[str, Any]:
    return {"stats": dump(view.stats), "tasks": [task_summary(t) for t in view.tasks]}


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def load_war_room(
    source: RowSource, user_id: str | None = None, filters: WarRoomFilters | None = None,
) -> WarRoomView:
    tasks = await source.fetch_tasks(user_id)
    view = build_war_room(tasks, filters)
    log.info("War room: %d of %d tasks shown", len(view.tasks), view.stats.total)
    return view


async def load_war_room_stats(source: RowSource, user_id: str | None = None) -> TaskStats:
    return compute_task_stats(await source.fetch_tasks(user_id))


async def load_budget_dashboard(source: RowSource, project_id: str | None = None) -> BudgetDashboard:
    inputs = await source.fetch_budget_inputs()
    dashboard = build_budget_dashboard(inputs, project_id)
    log.info("Budget dashboard: %d areas, %d trades (project=%s)",
             len(dashboard.budget_by_area), len(dashboard.quotes_by_trade), project_id or "all")
    return dashboard


async def load_health_report(source: RowSource, user_id: str | None = None) -> HealthReport:
    tasks, inputs = await asyncio.gather(source.fetch_tasks(user_id), source.fetch_budget_inputs())
    return build_health_report(tasks, inputs)


async def load_decisions(source: RowSource) -> list[Decision]:
    """Decisions needed across every fetched project; reads quotes only, never tasks."""
    inputs = await source.fetch_budget_inputs()
    return decisions_needed(inputs.quotes)


async def load_project_health(
    source: RowSource, project_id: str, user_id: str | None = None,
) -> ProjectHealth | None:
    """Health record for one project, or None when the project is not fetched."""
    report = await load_health_report(source, user_id)
    return next((p for p in report.projects if p.project_id == project_id), None)


async def run_search(
    source: RowSource,
    query: str,
    *,
    user_id: str | None = None,
    limit: int = DEFAULT_LIMIT,
    min_score: float = DEFAULT_MIN_SCORE,
) -> list[SearchHit]:
    if not query.strip():
        return []
    tasks, inputs = await asyncio.gather(source.fetch_tasks(user_id), source.fetch_budget_inputs())
    hits = search(query, projects=inputs.projects, tasks=tasks, quotes=inputs.quotes,
                  limit=limit, min_score=min_score)
    log.debug("Search %r: %d hits", query, len(hits))
    return hits


async def run_export(source: RowSource, path: Path, user_id: str | None = None) -> Path:
    tasks, inputs = await asyncio.gather(source.fetch_tasks(user_id), source.fetch_budget_inputs())
    written = export_workbook(path, tasks=tasks, inputs=inputs)
    log.info("Exported workbook to %s", written)
    return written
