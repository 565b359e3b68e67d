"""Shared fixtures: a seeded, file-backed SQLite database and isolated settings.

Row-source reads run on worker threads, so the database lives in a file under
``tmp_path`` instead of in memory.
"""
from __future__ import annotations

from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from foreman.config import get_settings
from foreman.models import (
    Base, BudgetArea, BudgetLineItem, Project, Quote, Task, TradeCategory, Vendor,
)


@pytest.fixture()
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'rows.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def seeded(session_factory):
    with session_factory() as session:
        maple = Project(id="p1", user_id="u1", name="Maple House", address="12 Maple St", status="active")
        birch = Project(id="p2", user_id="u1", name="Birch Loft", status="on_hold")
        old = Project(id="p3", user_id="u1", name="Old Barn", status="completed")
        session.add_all([maple, birch, old])
        session.flush()
        session.add_all([
            Task(id="t1", user_id="u1", project_id="p1", task="Pick tile", priority="P1",
                 status="waiting_on_client", follow_up_days=3,
                 last_contacted_at=datetime(2024, 6, 1, 12, 0), created_at=datetime(2024, 5, 1)),
            Task(id="t2", user_id="u1", project_id="p1", task="Frame walls", priority="P2",
                 status="open", is_blocking=True, blocked_by_rfi_id="t1",
                 next_action_date=date(2024, 6, 20), created_at=datetime(2024, 5, 2)),
            Task(id="t3", user_id="u1", project_id="p1", task="Done thing", priority="P3",
                 status="open", is_complete=True, created_at=datetime(2024, 5, 3)),
            Task(id="t4", user_id="u1", project_id="p1", task="Dead thing", priority="P3",
                 status="dead", created_at=datetime(2024, 5, 3)),
            Task(id="t5", user_id="u1", project_id="p2", task="On hold task", priority="P3",
                 status="open", created_at=datetime(2024, 5, 3)),
            Task(id="t6", user_id="u2", project_id="p1", task="Someone else", priority="P2",
                 status="open", next_action_date=date(2024, 6, 1), created_at=datetime(2024, 5, 4)),
        ])
        session.add_all([
            BudgetArea(id="a1", project_id="p1", area_name="Kitchen", sort_order=2),
            BudgetArea(id="a2", project_id="p1", area_name="Bath", sort_order=1),
            TradeCategory(id="tc1", name="Electrical"),
            Vendor(id="v1", company_name="Sparks LLC"),
        ])
        session.flush()
        session.add_all([
            BudgetLineItem(id="li1", budget_area_id="a1", item_name="Cabinets",
                           budgeted_amount=1000, actual_amount=1200),
            Quote(id="q1", project_id="p1", trade_category_id="tc1", vendor_id="v1",
                  budget_amount=5000, quoted_price=5500, status="quoted",
                  created_at=datetime(2024, 6, 1)),
            Quote(id="q2", project_id="p2", status="pending", created_at=datetime(2024, 6, 2)),
        ])
        session.commit()
    return session_factory


@pytest.fixture()
def settings_env(tmp_path, monkeypatch):
    """Point settings at a temporary project root and database."""
    monkeypatch.setenv("FOREMAN_HOME", str(tmp_path))
    monkeypatch.setenv("FOREMAN_DATABASE_URL", f"sqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setenv("FOREMAN_SOURCE", "sql")
    monkeypatch.delenv("FOREMAN_USER_ID", raising=False)
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()
