"""Integration tests for the FastAPI endpoints.

The row source dependency is overridden with a ``SqlRowSource`` over the seeded
test database; settings point at a temporary project root.
"""
from __future__ import annotations

from datetime import UTC, datetime
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from foreman.errors import FetchError, MalformedRowError
from foreman.sources import SqlRowSource

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=UTC)


class BrokenSource:
    def __init__(self, exc: Exception):
        self.exc = exc

    async def fetch_tasks(self, user_id):
        raise self.exc

    async def fetch_budget_inputs(self):
        raise self.exc


class TasksDownSource:
    """Budget reads succeed, task reads fail."""
    def __init__(self, inner):
        self.inner = inner

    async def fetch_tasks(self, user_id):
        raise FetchError("war_room", "connection refused")

    async def fetch_budget_inputs(self):
        return await self.inner.fetch_budget_inputs()


@pytest.fixture()
def api(settings_env):
    """FastAPI app plus a helper to swap the row source."""
    from foreman.app import app, row_source

    def use(source):
        app.dependency_overrides[row_source] = lambda: source

    with TestClient(app) as c:
        yield c, use
    app.dependency_overrides.clear()


@pytest.fixture()
def client(api, seeded):
    c, use = api
    use(SqlRowSource(seeded, now=lambda: NOW))
    return c


class TestWarRoomEndpoints:
    def test_war_room(self, client):
        resp = client.get("/api/war-room", params={"user_id": "u1"})
        assert resp.status_code == 200
        data = resp.json()
        assert [t["id"] for t in data["tasks"]] == ["t2", "t1"]
        assert data["stats"] == {"total": 2, "overdue": 1, "on_me": 0, "blocking": 1}
        assert data["tasks"][0]["blocked_by_task_name"] == "Pick tile"

    def test_war_room_filters(self, client):
        resp = client.get("/api/war-room", params={"user_id": "u1", "status": "overdue"})
        data = resp.json()
        assert [t["id"] for t in data["tasks"]] == ["t1"]
        assert data["stats"]["total"] == 2

    def test_war_room_all_users(self, client):
        resp = client.get("/api/war-room", params={"sort_by": "date_oldest"})
        assert [t["id"] for t in resp.json()["tasks"]] == ["t2", "t1", "t6"]

    def test_invalid_sort_mode(self, client):
        assert client.get("/api/war-room", params={"sort_by": "newest"}).status_code == 422

    def test_stats(self, client):
        resp = client.get("/api/war-room/stats", params={"user_id": "u1"})
        assert resp.json() == {"total": 2, "overdue": 1, "on_me": 0, "blocking": 1}


class TestBudgetEndpoints:
    def test_budget(self, client):
        data = client.get("/api/budget").json()
        assert data["total_budgeted"] == 1000
        assert data["total_committed"] == 1200
        assert data["total_variance"] == 200
        assert [a["area_id"] for a in data["budget_by_area"]] == ["a1"]
        assert [t["trade_name"] for t in data["quotes_by_trade"]] == ["Electrical"]
        assert [p["id"] for p in data["projects"]] == ["p2", "p1"]

    def test_budget_scoped(self, client):
        data = client.get("/api/budget", params={"project_id": "p2"}).json()
        assert data["budget_by_area"] == []
        assert data["total_trades"] == 1
        assert len(data["projects"]) == 2


class TestHealthEndpoints:
    def test_health(self, client):
        data = client.get("/api/health", params={"user_id": "u1"}).json()
        labels = {p["project_id"]: p["label"] for p in data["projects"]}
        assert labels == {"p1": "Blocked", "p2": "On Track"}
        assert [d["id"] for d in data["decisions"]] == ["q1"]

    def test_project_health(self, client):
        resp = client.get("/api/health/p1", params={"user_id": "u1"})
        assert resp.status_code == 200
        assert resp.json()["utilization"] == 120

    def test_project_health_404(self, client):
        assert client.get("/api/health/nope").status_code == 404

    def test_decisions(self, client):
        data = client.get("/api/decisions").json()
        assert [(d["type"], d["id"]) for d in data] == [("quote_approval", "q1")]


class TestSearchAndExport:
    def test_search(self, client):
        hits = client.get("/api/search", params={"q": "maple house"}).json()
        assert hits[0]["kind"] == "project"
        assert hits[0]["id"] == "p1"

    def test_search_requires_query(self, client):
        assert client.get("/api/search").status_code == 422

    def test_export(self, client, settings_env):
        resp = client.get("/api/export", params={"user_id": "u1"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/vnd.openxmlformats")
        wb = load_workbook(BytesIO(resp.content))
        assert wb.sheetnames == [
            "Executive Summary", "Budget Detail", "Open Tasks", "Quote Comparison", "Decisions Needed",
        ]
        assert list((settings_env / "data" / "exports").glob("*.xlsx"))


class TestErrorMapping:
    def test_fetch_error_is_502(self, api):
        c, use = api
        use(BrokenSource(FetchError("war_room", "connection refused")))
        resp = c.get("/api/war-room")
        assert resp.status_code == 502
        assert resp.json()["resource"] == "war_room"

    def test_malformed_row_is_500(self, api):
        c, use = api
        use(BrokenSource(MalformedRowError("quote", "q9", "status: bad")))
        resp = c.get("/api/budget")
        assert resp.status_code == 500
        assert resp.json()["row_id"] == "q9"

    def test_decisions_only_read_quotes(self, api, seeded):
        c, use = api
        use(TasksDownSource(SqlRowSource(seeded, now=lambda: NOW)))
        resp = c.get("/api/decisions")
        assert resp.status_code == 200
        assert [d["id"] for d in resp.json()] == ["q1"]
        assert c.get("/api/health").status_code == 502
