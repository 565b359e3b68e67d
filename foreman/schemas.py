"""Pydantic row models, pipeline configuration and view models."""
from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any, Iterable, Literal, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, NonNegativeInt, ValidationError, field_validator

from foreman.errors import MalformedRowError

Priority = Literal["P1", "P2", "P3"]

TaskStatus = Literal[
    "open", "waiting_on_me", "waiting_on_client", "waiting_on_vendor",
    "waiting_on_contractor", "waiting_on_design_team", "waiting_on_plh",
    "follow_up", "completed", "dead",
]

StallReason = Literal["missing_info", "avoiding_contact", "unclear_next_step", "deprioritized"]

POCType = Literal["client", "vendor", "contractor", "internal", "design_team", "plh"]

QuoteStatus = Literal[
    "draft", "pending", "quoted", "approved", "declined", "rejected",
    "contract_sent", "signed", "in_progress", "completed", "dead",
]

SortMode = Literal[
    "urgency", "priority", "project", "date_newest", "date_oldest",
    "alpha_az", "alpha_za", "status",
]

TASK_STATUSES: tuple[str, ...] = TaskStatus.__args__  # type: ignore[attr-defined]
SORT_MODES: tuple[str, ...] = SortMode.__args__  # type: ignore[attr-defined]
PSEUDO_STATUSES = ("overdue", "blocking", "on_me")
AWARDED_QUOTE_STATUSES = frozenset({"approved", "signed", "contract_sent", "in_progress", "completed"})


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ---------------------------------------------------------------------------
# Row models (what the fetch layer hands to the pipelines)
# ---------------------------------------------------------------------------


class _Row(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)


class TaskRow(_Row):
    """A war-room item, denormalized with its project name and derived flags."""

    id: str
    user_id: str | None = None
    project_id: str
    project_name: str
    project_address: str | None = None
    task: str
    priority: Priority
    status: TaskStatus
    is_blocking: bool
    blocks_description: str | None = None
    blocked_by_rfi_id: str | None = None
    blocked_by_task_name: str | None = None
    is_overdue: bool
    next_action_date: date | None = None
    created_at: datetime
    days_since_contact: NonNegativeInt | None = None
    poc_name: str | None = None
    poc_type: POCType | None = None
    latest_update: str | None = None
    stall_reason: StallReason | None = None
    follow_up_days: int = 3
    last_contacted_at: datetime | None = None

    @field_validator("created_at", "last_contacted_at")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class ProjectRow(_Row):
    id: str
    name: str
    client_name: str | None = None
    address: str | None = None
    total_budget: float | None = None
    status: str = "active"


class BudgetAreaRow(_Row):
    id: str
    project_id: str
    area_name: str
    sort_order: int = 0


class LineItemRow(_Row):
    id: str
    budget_area_id: str
    item_name: str = ""
    budgeted_amount: float | None = None
    actual_amount: float | None = None
    sort_order: int = 0


class QuoteRow(_Row):
    id: str
    project_id: str
    project_name: str | None = None
    trade_name: str | None = None
    trade_category_id: str | None = None
    vendor_name: str | None = None
    budget_amount: float | None = None
    quoted_price: float | None = None
    status: QuoteStatus
    created_at: datetime | None = None
    budget_variance: float | None = None

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class BudgetInputs(BaseModel):
    """The four unscoped collections the budget pipeline works from."""

    model_config = ConfigDict(frozen=True)

    projects: list[ProjectRow] = []
    areas: list[BudgetAreaRow] = []
    line_items: list[LineItemRow] = []
    quotes: list[QuoteRow] = []


class TaskLike(Protocol):
    """Minimal shape the war-room pipeline reads.

    ``is_overdue`` and ``is_blocking`` are computed upstream and trusted as-is.
    Any object exposing these attributes works, a ``TaskRow`` is only one option.
    """

    id: Any
    project_id: Any
    project_name: str
    task: str
    priority: str
    status: str
    is_blocking: bool
    is_overdue: bool
    created_at: Any
    next_action_date: Any


RowT = TypeVar("RowT", bound=BaseModel)


def parse_rows(model: type[RowT], rows: Iterable[Any], entity: str) -> list[RowT]:
    """Validate raw rows into *model* instances.

    Raises ``MalformedRowError`` for the first row that does not validate.
    """
    parsed: list[RowT] = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as exc:
            row_id = row.get("id") if isinstance(row, dict) else getattr(row, "id", None)
            detail = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            raise MalformedRowError(entity, row_id, detail) from exc
    return parsed


# ---------------------------------------------------------------------------
# Pipeline configuration
# ---------------------------------------------------------------------------


class WarRoomFilters(BaseModel):
    """Filter and sort preferences for a single war-room computation."""

    model_config = ConfigDict(frozen=True)

    project_id: str | None = None
    status: str | None = None
    sort_by: SortMode = "urgency"


# ---------------------------------------------------------------------------
# View models
# ---------------------------------------------------------------------------


class TaskStats(BaseModel):
    total: int = 0
    overdue: int = 0
    on_me: int = 0
    blocking: int = 0


class WarRoomView(BaseModel):
    tasks: list[Any]
    stats: TaskStats


class AreaRollup(BaseModel):
    area_id: str
    area_name: str
    project_id: str
    budgeted: float
    actual: float
    remaining: float


class ProjectRollup(BaseModel):
    project_id: str
    project_name: str
    budgeted: float
    actual: float
    remaining: float


class TradeRollup(BaseModel):
    trade_name: str
    trade_id: str | None = None
    budget_allowance: float = 0.0
    lowest_quote: float | None = None
    approved_quote: float | None = None
    is_approved_over_budget: bool = False
    is_lowest_under_budget: bool = False
    quote_count: int = 0


class BudgetSummary(BaseModel):
    total_budgeted: float = 0.0
    total_committed: float = 0.0
    total_variance: float = 0.0
    percent_quoted: int = 0
    trades_with_quotes: int = 0
    total_trades: int = 0


class BudgetDashboard(BudgetSummary):
    budget_by_area: list[AreaRollup]
    budget_by_project: list[ProjectRollup]
    quotes_by_trade: list[TradeRollup]
    projects: list[ProjectRow] = []


class Decision(BaseModel):
    type: Literal["quote_approval", "over_budget"]
    id: str
    project_id: str
    project_name: str
    description: str
    amount: float | None = None
    variance: float | None = None
    created_at: datetime | None = None


class ProjectHealth(BaseModel):
    project_id: str
    project_name: str
    client_name: str = ""
    status: str = "active"
    health: Literal["good", "warning", "critical"]
    label: str
    total_tasks: int = 0
    blocking: int = 0
    overdue: int = 0
    on_me: int = 0
    total_budgeted: float = 0.0
    total_actual: float = 0.0
    variance: float = 0.0
    variance_percent: float | None = None
    utilization: float = 0.0
    approved_quotes: int = 0
    pending_quotes: int = 0
    over_budget_quotes: int = 0
    decisions_needed: int = 0


class HealthReport(BaseModel):
    projects: list[ProjectHealth]
    decisions: list[Decision]


class SearchHit(BaseModel):
    kind: Literal["project", "task", "quote"]
    id: str
    label: str
    detail: str = ""
    project_id: str | None = None
    score: float
