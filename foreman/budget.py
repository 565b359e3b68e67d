"""Budget dashboard rollups.

Takes the four fetched collections (projects, budget areas, line items, quotes),
optionally narrows them to one project, and aggregates them by area, by project
and by trade. Missing amounts count as zero. No I/O happens here.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from foreman.schemas import (
    AWARDED_QUOTE_STATUSES,
    AreaRollup,
    BudgetAreaRow,
    BudgetDashboard,
    BudgetInputs,
    BudgetSummary,
    LineItemRow,
    ProjectRollup,
    ProjectRow,
    QuoteRow,
    TradeRollup,
)
from foreman.utils import amount, collation_key, round_half_up

OTHER_TRADE = "Other"


def scope_inputs(inputs: BudgetInputs, project_id: str | None = None) -> BudgetInputs:
    """Restrict every collection to *project_id*; without one, return *inputs* unchanged."""
    if project_id is None:
        return inputs
    projects = [p for p in inputs.projects if p.id == project_id]
    project_ids = {p.id for p in projects}
    areas = [a for a in inputs.areas if a.project_id in project_ids]
    area_ids = {a.id for a in areas}
    return BudgetInputs(
        projects=projects,
        areas=areas,
        line_items=[li for li in inputs.line_items if li.budget_area_id in area_ids],
        quotes=[q for q in inputs.quotes if q.project_id in project_ids],
    )


def _sum_by_area(line_items: Iterable[LineItemRow]) -> dict[str, list[float]]:
    totals: dict[str, list[float]] = defaultdict(lambda: [0.0, 0.0])
    for li in line_items:
        entry = totals[li.budget_area_id]
        entry[0] += amount(li.budgeted_amount)
        entry[1] += amount(li.actual_amount)
    return totals


def rollup_by_area(
    areas: Iterable[BudgetAreaRow], line_items: Iterable[LineItemRow],
) -> list[AreaRollup]:
    """Budgeted/actual/remaining per area, in ``sort_order``; areas with no money are dropped."""
    totals = _sum_by_area(line_items)
    rollups: list[AreaRollup] = []
    for area in sorted(areas, key=lambda a: a.sort_order):
        budgeted, actual = totals.get(area.id, (0.0, 0.0))
        if not (budgeted or actual):
            continue
        rollups.append(AreaRollup(
            area_id=area.id, area_name=area.area_name, project_id=area.project_id,
            budgeted=budgeted, actual=actual, remaining=max(0.0, budgeted - actual),
        ))
    return rollups


def project_totals(
    areas: Iterable[BudgetAreaRow], line_items: Iterable[LineItemRow],
) -> dict[str, tuple[float, float]]:
    """(budgeted, actual) per project id, summed through the project's areas.

    Area sums are added in ``sort_order``, the order ``rollup_by_area`` lists them,
    so each project total equals the sum of its area rollups exactly.
    """
    area_totals = _sum_by_area(line_items)
    totals: dict[str, list[float]] = defaultdict(lambda: [0.0, 0.0])
    for area in sorted(areas, key=lambda a: a.sort_order):
        if area.id not in area_totals:
            continue
        budgeted, actual = area_totals[area.id]
        totals[area.project_id][0] += budgeted
        totals[area.project_id][1] += actual
    return {pid: (b, a) for pid, (b, a) in totals.items()}


def rollup_by_project(
    projects: Iterable[ProjectRow], areas: Iterable[BudgetAreaRow],
    line_items: Iterable[LineItemRow],
) -> list[ProjectRollup]:
    """Budgeted/actual/remaining per project through its areas, in project order."""
    totals = project_totals(areas, line_items)
    rollups: list[ProjectRollup] = []
    for project in projects:
        budgeted, actual = totals.get(project.id, (0.0, 0.0))
        if not (budgeted or actual):
            continue
        rollups.append(ProjectRollup(
            project_id=project.id, project_name=project.name,
            budgeted=budgeted, actual=actual, remaining=max(0.0, budgeted - actual),
        ))
    return rollups


def trade_key(quote: QuoteRow) -> str:
    return quote.trade_name or OTHER_TRADE


def group_quotes_by_trade(quotes: Iterable[QuoteRow]) -> dict[str, list[QuoteRow]]:
    """Quotes grouped by trade name, groups and members in input order."""
    groups: dict[str, list[QuoteRow]] = {}
    for quote in quotes:
        groups.setdefault(trade_key(quote), []).append(quote)
    return groups


def summarize_trade(trade_name: str, quotes: list[QuoteRow]) -> TradeRollup:
    # The allowance is the largest budget seen for the trade, not a sum.
    allowance = 0.0
    for q in quotes:
        if q.budget_amount is not None and q.budget_amount > allowance:
            allowance = q.budget_amount

    prices = [q.quoted_price for q in quotes if q.quoted_price is not None and q.quoted_price > 0]
    lowest = min(prices) if prices else None

    awarded = next((q for q in quotes if q.status in AWARDED_QUOTE_STATUSES), None)
    approved = (awarded.quoted_price or None) if awarded is not None else None

    return TradeRollup(
        trade_name=trade_name,
        trade_id=quotes[0].trade_category_id if quotes else None,
        budget_allowance=allowance,
        lowest_quote=lowest,
        approved_quote=approved,
        is_approved_over_budget=approved is not None and allowance > 0 and approved > allowance,
        is_lowest_under_budget=lowest is not None and allowance > 0 and lowest < allowance,
        quote_count=len(quotes),
    )


def rollup_by_trade(quotes: Iterable[QuoteRow]) -> list[TradeRollup]:
    """Per-trade quote comparison, alphabetical; trades with no allowance or prices are dropped."""
    rollups = [summarize_trade(name, group) for name, group in group_quotes_by_trade(quotes).items()]
    visible = [t for t in rollups if t.budget_allowance > 0 or t.lowest_quote or t.approved_quote]
    return sorted(visible, key=lambda t: collation_key(t.trade_name))


def percent_quoted(trades_with_quotes: int, total_trades: int) -> int:
    if total_trades <= 0:
        return 0
    return round_half_up(100 * trades_with_quotes / max(total_trades, 1))


def summarize_budget(
    project_rollups: Iterable[ProjectRollup], quotes: Iterable[QuoteRow],
) -> BudgetSummary:
    quotes = list(quotes)
    rollups = list(project_rollups)
    total_budgeted = sum(p.budgeted for p in rollups)
    total_committed = sum(p.actual for p in rollups)
    trades_with_quotes = len(group_quotes_by_trade(quotes))
    total_trades = len({trade_key(q) for q in quotes}) or trades_with_quotes
    return BudgetSummary(
        total_budgeted=total_budgeted,
        total_committed=total_committed,
        total_variance=total_committed - total_budgeted,
        percent_quoted=percent_quoted(trades_with_quotes, total_trades),
        trades_with_quotes=trades_with_quotes,
        total_trades=total_trades,
    )


def build_budget_dashboard(inputs: BudgetInputs, project_id: str | None = None) -> BudgetDashboard:
    """Scope, roll up and summarize. ``projects`` always lists every fetched project."""
    scoped = scope_inputs(inputs, project_id)
    by_project = rollup_by_project(scoped.projects, scoped.areas, scoped.line_items)
    summary = summarize_budget(by_project, scoped.quotes)
    return BudgetDashboard(
        **summary.model_dump(),
        budget_by_area=rollup_by_area(scoped.areas, scoped.line_items),
        budget_by_project=by_project,
        quotes_by_trade=rollup_by_trade(scoped.quotes),
        projects=list(inputs.projects),
    )
