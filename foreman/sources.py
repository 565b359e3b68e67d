"""Row sources: where the pipelines' raw rows come from.

Two implementations of the ``RowSource`` protocol:

- ``SqlRowSource`` reads the local SQLAlchemy tables, denormalizing tasks the
  same way the hosted ``war_room`` view does.
- ``RestRowSource`` reads the hosted PostgREST views over ``httpx``.

Each entity type is one independent read; budget inputs are fetched
concurrently and awaited together. Failures surface as ``FetchError`` and are
never retried here.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased, sessionmaker

from foreman.config import Settings
from foreman.errors import FetchError, ForemanError
from foreman.models import BudgetArea, BudgetLineItem, Project, Quote, Task, TradeCategory, Vendor
from foreman.schemas import (
    BudgetAreaRow,
    BudgetInputs,
    LineItemRow,
    ProjectRow,
    QuoteRow,
    TaskRow,
    parse_rows,
)

log = logging.getLogger(__name__)

BUDGET_PROJECT_STATUSES = ("active", "on_hold")
# Statuses for which a lapsed follow-up window makes a task overdue.
FOLLOW_UP_STATUSES = frozenset({"waiting_on_client", "waiting_on_vendor", "waiting_on_contractor"})


class RowSource(Protocol):
    async def fetch_tasks(self, user_id: str | None) -> list[TaskRow]: ...

    async def fetch_budget_inputs(self) -> BudgetInputs: ...


# ---------------------------------------------------------------------------
# SQLAlchemy source
# ---------------------------------------------------------------------------


def _columns(obj: Any) -> dict[str, Any]:
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}


def _utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def war_room_fields(task: Task, now: datetime) -> dict[str, Any]:
    """Derived war-room fields for *task* as of *now*."""
    last_contact = _utc(task.last_contacted_at)
    days_since_contact = max(0, (now - last_contact).days) if last_contact else None
    follow_up_lapsed = (
        last_contact is not None
        and last_contact + timedelta(days=task.follow_up_days or 0) < now
        and task.status in FOLLOW_UP_STATUSES
    )
    past_due = task.next_action_date is not None and task.next_action_date < now.date()
    return {
        "days_since_contact": days_since_contact,
        "is_overdue": bool(past_due or follow_up_lapsed),
    }


class SqlRowSource:
    """Reads rows from the local database, one worker thread per read."""

    def __init__(
        self, session_factory: sessionmaker[Session], *, now: Callable[[], datetime] | None = None,
    ):
        self._session_factory = session_factory
        self._now = now or (lambda: datetime.now(UTC))

    async def _read(self, resource: str, reader: Callable[..., list], *args: Any) -> list:
        log.debug("Fetching %s", resource)
        try:
            return await asyncio.to_thread(reader, *args)
        except SQLAlchemyError as exc:
            log.warning("Fetching %s failed: %s", resource, exc)
            raise FetchError(resource, str(exc)) from exc

    def _read_tasks(self, user_id: str | None) -> list[TaskRow]:
        blocker = aliased(Task)
        stmt = (
            select(Task, Project.name, Project.address, blocker.task)
            .join(Project, Task.project_id == Project.id)
            .outerjoin(blocker, Task.blocked_by_rfi_id == blocker.id)
            .where(Task.is_complete.is_(False), Task.status != "dead", Project.status == "active")
        )
        if user_id:
            stmt = stmt.where(Task.user_id == user_id)
        now = self._now()
        with self._session_factory() as session:
            rows = [
                {
                    **_columns(task),
                    **war_room_fields(task, now),
                    "project_name": project_name,
                    "project_address": project_address,
                    "blocked_by_task_name": blocker_name,
                }
                for task, project_name, project_address, blocker_name in session.execute(stmt).all()
            ]
        return parse_rows(TaskRow, rows, "task")

    def _read_projects(self) -> list[ProjectRow]:
        stmt = select(Project).where(Project.status.in_(BUDGET_PROJECT_STATUSES)).order_by(Project.name)
        with self._session_factory() as session:
            rows = [_columns(p) for p in session.execute(stmt).scalars().all()]
        return parse_rows(ProjectRow, rows, "project")

    def _read_areas(self) -> list[BudgetAreaRow]:
        stmt = select(BudgetArea).order_by(BudgetArea.sort_order)
        with self._session_factory() as session:
            rows = [_columns(a) for a in session.execute(stmt).scalars().all()]
        return parse_rows(BudgetAreaRow, rows, "budget area")

    def _read_line_items(self) -> list[LineItemRow]:
        stmt = select(BudgetLineItem).order_by(BudgetLineItem.sort_order)
        with self._session_factory() as session:
            rows = [_columns(li) for li in session.execute(stmt).scalars().all()]
        return parse_rows(LineItemRow, rows, "line item")

    def _read_quotes(self) -> list[QuoteRow]:
        stmt = (
            select(Quote, Project.name, TradeCategory.name, Vendor.company_name)
            .join(Project, Quote.project_id == Project.id)
            .outerjoin(TradeCategory, Quote.trade_category_id == TradeCategory.id)
            .outerjoin(Vendor, Quote.vendor_id == Vendor.id)
        )
        with self._session_factory() as session:
            rows = []
            for quote, project_name, trade_name, vendor_name in session.execute(stmt).all():
                row = _columns(quote)
                if quote.budget_amount is not None and quote.quoted_price is not None:
                    row["budget_variance"] = quote.quoted_price - quote.budget_amount
                rows.append({**row, "project_name": project_name,
                             "trade_name": trade_name, "vendor_name": vendor_name})
        return parse_rows(QuoteRow, rows, "quote")

    async def fetch_tasks(self, user_id: str | None) -> list[TaskRow]:
        return await self._read("tasks", self._read_tasks, user_id)

    async def fetch_budget_inputs(self) -> BudgetInputs:
        projects, areas, line_items, quotes = await asyncio.gather(
            self._read("projects", self._read_projects),
            self._read("budget areas", self._read_areas),
            self._read("line items", self._read_line_items),
            self._read("quotes", self._read_quotes),
        )
        return BudgetInputs(projects=projects, areas=areas, line_items=line_items, quotes=quotes)


# ---------------------------------------------------------------------------
# PostgREST source
# ---------------------------------------------------------------------------


class RestRowSource:
    """Reads rows from a PostgREST endpoint (e.g. a hosted Supabase project)."""

    def __init__(
        self, base_url: str, api_key: str, *, timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1/",
            headers={"apikey": api_key, "Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RestRowSource:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _get(self, resource: str, params: dict[str, str]) -> list[dict[str, Any]]:
        log.debug("Fetching %s", resource)
        try:
            resp = await self._client.get(resource, params={"select": "*", **params})
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("Fetching %s failed: %s", resource, exc)
            raise FetchError(resource, str(exc) or type(exc).__name__) from exc
        if not isinstance(data, list):
            raise FetchError(resource, "expected a JSON array")
        return data

    async def fetch_tasks(self, user_id: str | None) -> list[TaskRow]:
        params = {"user_id": f"eq.{user_id}"} if user_id else {}
        return parse_rows(TaskRow, await self._get("war_room", params), "task")

    async def fetch_budget_inputs(self) -> BudgetInputs:
        projects, areas, line_items, quotes = await asyncio.gather(
            self._get("projects", {"status": f"in.({','.join(BUDGET_PROJECT_STATUSES)})", "order": "name"}),
            self._get("project_budget_areas", {"order": "sort_order"}),
            self._get("budget_line_items", {"order": "sort_order"}),
            self._get("quote_comparison", {}),
        )
        return BudgetInputs(
            projects=parse_rows(ProjectRow, projects, "project"),
            areas=parse_rows(BudgetAreaRow, areas, "budget area"),
            line_items=parse_rows(LineItemRow, line_items, "line item"),
            quotes=parse_rows(QuoteRow, quotes, "quote"),
        )


def build_source(settings: Settings, session_factory: sessionmaker[Session] | None = None) -> RowSource:
    """Row source selected by ``settings.source``."""
    if settings.source == "rest":
        if not settings.supabase_url or not settings.supabase_key:
            raise ForemanError("SUPABASE_URL and SUPABASE_KEY must be set for the rest source")
        return RestRowSource(
            settings.supabase_url, settings.supabase_key, timeout=settings.request_timeout_seconds,
        )
    if session_factory is None:
        raise ForemanError("The sql source needs an initialized database")
    return SqlRowSource(session_factory)
