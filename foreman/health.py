"""Project health and pending decisions for the executive overview."""
from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime
from typing import Any, Iterable

from foreman.budget import project_totals
from foreman.schemas import (
    AWARDED_QUOTE_STATUSES,
    BudgetInputs,
    Decision,
    HealthReport,
    ProjectHealth,
    ProjectRow,
    QuoteRow,
)
from foreman.warroom import compute_task_stats

PENDING_QUOTE_STATUSES = frozenset({"pending", "quoted"})

_OLDEST = datetime.min.replace(tzinfo=UTC)


def quote_variance(quote: QuoteRow) -> float | None:
    """Quoted price minus budget, when the row does not already carry it."""
    if quote.budget_variance is not None:
        return quote.budget_variance
    if quote.quoted_price is not None and quote.budget_amount is not None:
        return quote.quoted_price - quote.budget_amount
    return None


def decisions_needed(quotes: Iterable[QuoteRow]) -> list[Decision]:
    """Quotes awaiting approval (newest first), then other over-budget open quotes (worst first)."""
    quotes = list(quotes)
    decisions: list[Decision] = []
    seen: set[str] = set()

    awaiting = sorted(
        (q for q in quotes if q.status == "quoted"),
        key=lambda q: q.created_at or _OLDEST, reverse=True,
    )
    for q in awaiting:
        decisions.append(Decision(
            type="quote_approval", id=q.id, project_id=q.project_id,
            project_name=q.project_name or "",
            description=f"{q.trade_name or 'Quote'} from {q.vendor_name or 'vendor'} needs approval",
            amount=q.quoted_price or None, created_at=q.created_at,
        ))
        seen.add(q.id)

    over_budget = sorted(
        (q for q in quotes
         if q.status in PENDING_QUOTE_STATUSES and (quote_variance(q) or 0) > 0),
        key=lambda q: quote_variance(q) or 0, reverse=True,
    )
    for q in over_budget:
        if q.id in seen:
            continue
        decisions.append(Decision(
            type="over_budget", id=q.id, project_id=q.project_id,
            project_name=q.project_name or "",
            description=f"{q.trade_name or 'Quote'} is over budget",
            amount=q.quoted_price or None, variance=quote_variance(q), created_at=q.created_at,
        ))
    return decisions


def _verdict(blocking: int, overdue: int, on_me: int, utilization: float, decisions: int) -> tuple[str, str]:
    if blocking > 0:
        return "critical", "Blocked"
    if overdue > 0 or utilization > 100:
        return "warning", "Attention"
    if on_me > 0 or decisions > 0:
        return "warning", "Action Needed"
    return "good", "On Track"


def project_health(
    project: ProjectRow, tasks: Iterable[Any], quotes: Iterable[QuoteRow],
    *, budgeted: float = 0.0, actual: float = 0.0, decisions: Iterable[Decision] = (),
) -> ProjectHealth:
    """Health record for one project from its own tasks, quotes and budget totals."""
    quotes = list(quotes)
    stats = compute_task_stats(tasks)
    variance = actual - budgeted
    utilization = actual / budgeted * 100 if budgeted > 0 else 0.0
    decision_count = sum(1 for d in decisions if d.project_id == project.id)
    health, label = _verdict(stats.blocking, stats.overdue, stats.on_me, utilization, decision_count)
    return ProjectHealth(
        project_id=project.id,
        project_name=project.name,
        client_name=project.client_name or "",
        status=project.status,
        health=health,
        label=label,
        total_tasks=stats.total,
        blocking=stats.blocking,
        overdue=stats.overdue,
        on_me=stats.on_me,
        total_budgeted=budgeted,
        total_actual=actual,
        variance=variance,
        variance_percent=variance / budgeted * 100 if budgeted > 0 else None,
        utilization=utilization,
        approved_quotes=sum(1 for q in quotes if q.status in AWARDED_QUOTE_STATUSES),
        pending_quotes=sum(1 for q in quotes if q.status in PENDING_QUOTE_STATUSES),
        over_budget_quotes=sum(1 for q in quotes if (quote_variance(q) or 0) > 0),
        decisions_needed=decision_count,
    )


def build_health_report(tasks: Iterable[Any], inputs: BudgetInputs) -> HealthReport:
    """One health record per fetched project, plus the decisions list."""
    tasks_by_project: dict[Any, list[Any]] = defaultdict(list)
    for task in tasks:
        tasks_by_project[task.project_id].append(task)
    quotes_by_project: dict[str, list[QuoteRow]] = defaultdict(list)
    for quote in inputs.quotes:
        quotes_by_project[quote.project_id].append(quote)

    totals = project_totals(inputs.areas, inputs.line_items)
    decisions = decisions_needed(inputs.quotes)
    projects = []
    for project in inputs.projects:
        budgeted, actual = totals.get(project.id, (0.0, 0.0))
        projects.append(project_health(
            project, tasks_by_project.get(project.id, []), quotes_by_project.get(project.id, []),
            budgeted=budgeted, actual=actual, decisions=decisions,
        ))
    return HealthReport(projects=projects, decisions=decisions)
