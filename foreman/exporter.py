"""Executive workbook export (.xlsx) built from already-fetched rows."""
from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.worksheet import Worksheet

from foreman.budget import OTHER_TRADE
from foreman.health import build_health_report, quote_variance
from foreman.schemas import BudgetInputs, Decision, ProjectHealth
from foreman.utils import amount, collation_key
from foreman.warroom import PRIORITY_RANK

REPORT_TITLE = "Foreman"
HEADER_ROW = 4

CURRENCY = '"$"#,##0'
PERCENT = "0.0%"

_HEADER_FILL = PatternFill(fill_type="solid", fgColor="2D3748")
_HEADER_FONT = Font(color="FFFFFF", bold=True)
_SUBTOTAL_FILL = PatternFill(fill_type="solid", fgColor="E5E7EB")
_TOTAL_FILL = PatternFill(fill_type="solid", fgColor="D1D5DB")
_HEALTH_FONTS = {
    "good": Font(color="16A34A"),
    "warning": Font(color="D97706"),
    "critical": Font(color="DC2626", bold=True),
}

SUMMARY_HEADERS = [
    "Project Name", "Client", "Status", "Health", "Total Budget", "Total Committed",
    "Variance", "Variance %", "Open Tasks", "Overdue", "Blocking", "Decisions Needed",
]
BUDGET_HEADERS = ["Project", "Area", "Item", "Budgeted", "Actual", "Variance", "Variance %"]
TASK_HEADERS = [
    "Project", "Task", "Priority", "Status", "Contact", "Days Since Contact",
    "Follow-Up Date", "Blocking", "Latest Update",
]
QUOTE_HEADERS = [
    "Project", "Trade", "Vendor", "Budget Allowance", "Quoted Price", "Variance", "Variance %", "Status",
]
DECISION_HEADERS = ["Project", "Item", "Type", "Detail", "Amount", "Days Waiting"]


def _ratio(numerator: float, denominator: float) -> float | None:
    return numerator / denominator if denominator > 0 else None


def _start_sheet(ws: Worksheet, title: str, headers: list[str], generated_at: datetime) -> None:
    ws.append([f"{REPORT_TITLE} - {title}"])
    ws.append([f"Generated: {generated_at:%B %d, %Y}"])
    ws.append([])
    ws.append(headers)
    ws["A1"].font = Font(bold=True, size=14)
    ws["A2"].font = Font(italic=True, color="6B7280")
    for cell in ws[HEADER_ROW]:
        cell.fill = _HEADER_FILL
        cell.font = _HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    ws.freeze_panes = f"A{HEADER_ROW + 1}"


def _finish_sheet(ws: Worksheet, formats: dict[int, str]) -> None:
    for row in ws.iter_rows(min_row=HEADER_ROW + 1):
        for cell in row:
            fmt = formats.get(cell.column)
            if fmt and isinstance(cell.value, (int, float)) and not isinstance(cell.value, bool):
                cell.number_format = fmt
    for col_cells in ws.iter_cols(min_row=HEADER_ROW):
        values = [str(cell.value) if cell.value is not None else "" for cell in col_cells]
        width = min(60, max(10, max(len(v) for v in values) + 2))
        ws.column_dimensions[col_cells[0].column_letter].width = width


def _style_row(ws: Worksheet, fill: PatternFill) -> None:
    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)
        cell.fill = fill


# ---------------------------------------------------------------------------
# Sheets
# ---------------------------------------------------------------------------


def _summary_sheet(ws: Worksheet, projects: list[ProjectHealth], generated_at: datetime) -> None:
    _start_sheet(ws, "Executive Summary", SUMMARY_HEADERS, generated_at)
    for p in projects:
        ws.append([
            p.project_name, p.client_name, p.status, p.label, p.total_budgeted, p.total_actual,
            p.variance, p.variance_percent / 100 if p.variance_percent is not None else None,
            p.total_tasks, p.overdue, p.blocking, p.decisions_needed,
        ])
        ws.cell(row=ws.max_row, column=4).font = _HEALTH_FONTS[p.health]
    _finish_sheet(ws, {5: CURRENCY, 6: CURRENCY, 7: CURRENCY, 8: PERCENT})


def _budget_sheet(ws: Worksheet, inputs: BudgetInputs, generated_at: datetime) -> None:
    _start_sheet(ws, "Budget Detail", BUDGET_HEADERS, generated_at)
    items_by_area = defaultdict(list)
    for li in sorted(inputs.line_items, key=lambda li: li.sort_order):
        items_by_area[li.budget_area_id].append(li)
    areas_by_project = defaultdict(list)
    for area in sorted(inputs.areas, key=lambda a: a.sort_order):
        areas_by_project[area.project_id].append(area)

    for project in inputs.projects:
        project_budgeted = project_actual = 0.0
        wrote_any = False
        for area in areas_by_project.get(project.id, []):
            items = items_by_area.get(area.id, [])
            if not items:
                continue
            area_budgeted = area_actual = 0.0
            for li in items:
                budgeted, actual = amount(li.budgeted_amount), amount(li.actual_amount)
                area_budgeted += budgeted
                area_actual += actual
                ws.append([project.name, area.area_name, li.item_name, budgeted, actual,
                           actual - budgeted, _ratio(actual - budgeted, budgeted)])
            ws.append([project.name, f"{area.area_name} Subtotal", "", area_budgeted, area_actual,
                       area_actual - area_budgeted, _ratio(area_actual - area_budgeted, area_budgeted)])
            _style_row(ws, _SUBTOTAL_FILL)
            project_budgeted += area_budgeted
            project_actual += area_actual
            wrote_any = True
        if wrote_any:
            ws.append([f"{project.name} Total", "", "", project_budgeted, project_actual,
                       project_actual - project_budgeted,
                       _ratio(project_actual - project_budgeted, project_budgeted)])
            _style_row(ws, _TOTAL_FILL)
    _finish_sheet(ws, {4: CURRENCY, 5: CURRENCY, 6: CURRENCY, 7: PERCENT})


def open_tasks(tasks: Iterable[Any]) -> list[Any]:
    """Tasks still in play, most important and longest-silent first."""
    pending = [t for t in tasks if t.status not in ("completed", "dead")]
    return sorted(pending, key=lambda t: (
        PRIORITY_RANK.get(t.priority, len(PRIORITY_RANK)),
        -(getattr(t, "days_since_contact", None) or 0),
    ))


def _tasks_sheet(ws: Worksheet, tasks: Iterable[Any], generated_at: datetime) -> None:
    _start_sheet(ws, "Open Tasks", TASK_HEADERS, generated_at)
    for t in open_tasks(tasks):
        follow_up = getattr(t, "next_action_date", None)
        ws.append([
            t.project_name, t.task, t.priority, t.status.replace("_", " "),
            getattr(t, "poc_name", None) or "", getattr(t, "days_since_contact", None),
            follow_up.isoformat() if follow_up else "", "Yes" if t.is_blocking else "",
            getattr(t, "latest_update", None) or "",
        ])
    _finish_sheet(ws, {})


def _quotes_sheet(ws: Worksheet, inputs: BudgetInputs, generated_at: datetime) -> None:
    _start_sheet(ws, "Quote Comparison", QUOTE_HEADERS, generated_at)
    quotes = sorted(inputs.quotes, key=lambda q: (
        collation_key(q.project_name or ""), collation_key(q.trade_name or OTHER_TRADE),
    ))
    for q in quotes:
        variance = quote_variance(q)
        ws.append([
            q.project_name or "", q.trade_name or OTHER_TRADE, q.vendor_name or "",
            q.budget_amount, q.quoted_price, variance,
            _ratio(variance, amount(q.budget_amount)) if variance is not None else None,
            q.status.replace("_", " "),
        ])
    _finish_sheet(ws, {4: CURRENCY, 5: CURRENCY, 6: CURRENCY, 7: PERCENT})


def _decisions_sheet(ws: Worksheet, decisions: list[Decision], generated_at: datetime) -> None:
    _start_sheet(ws, "Decisions Needed", DECISION_HEADERS, generated_at)
    for d in decisions:
        waiting = (generated_at - d.created_at).days if d.created_at else None
        ws.append([
            d.project_name, d.description,
            "Approval" if d.type == "quote_approval" else "Over Budget",
            f"Over by ${d.variance:,.0f}" if d.variance else "",
            d.amount, waiting,
        ])
    _finish_sheet(ws, {5: CURRENCY})


def export_workbook(
    path: Path | str,
    *,
    tasks: Iterable[Any],
    inputs: BudgetInputs,
    generated_at: datetime | None = None,
) -> Path:
    """Write the executive workbook to *path* and return it."""
    path = Path(path)
    generated_at = generated_at or datetime.now(UTC)
    tasks = list(tasks)
    report = build_health_report(tasks, inputs)

    wb = Workbook()
    _summary_sheet(wb.active, report.projects, generated_at)
    wb.active.title = "Executive Summary"
    _budget_sheet(wb.create_sheet("Budget Detail"), inputs, generated_at)
    _tasks_sheet(wb.create_sheet("Open Tasks"), tasks, generated_at)
    _quotes_sheet(wb.create_sheet("Quote Comparison"), inputs, generated_at)
    _decisions_sheet(wb.create_sheet("Decisions Needed"), report.decisions, generated_at)

    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    return path
