"""Tests for the command-palette search."""
from __future__ import annotations

from datetime import UTC, datetime

from foreman.schemas import ProjectRow, QuoteRow, TaskRow
from foreman.search import search

PROJECTS = [
    ProjectRow(id="p1", name="Maple House", client_name="The Lees", address="12 Maple Street"),
    ProjectRow(id="p2", name="Birch Loft", client_name="Ortiz"),
]
TASKS = [
    TaskRow(id="t1", project_id="p1", project_name="Maple House", task="Confirm tile delivery",
            priority="P1", status="open", is_blocking=False, is_overdue=False,
            created_at=datetime(2024, 1, 1, tzinfo=UTC), poc_name="Dana"),
]
QUOTES = [
    QuoteRow(id="q1", project_id="p2", project_name="Birch Loft", trade_name="Plumbing",
             vendor_name="Flow Bros", status="quoted"),
]


class TestSearch:
    def test_blank_query(self):
        assert search("", projects=PROJECTS) == []
        assert search("   ", projects=PROJECTS) == []

    def test_finds_project_by_name(self):
        hits = search("maple house", projects=PROJECTS, tasks=TASKS, quotes=QUOTES)
        assert hits[0].kind == "project"
        assert hits[0].id == "p1"

    def test_finds_task_and_quote(self):
        hits = search("tile delivery", projects=PROJECTS, tasks=TASKS, quotes=QUOTES)
        assert hits[0].kind == "task"
        assert hits[0].project_id == "p1"
        hits = search("flow bros", projects=PROJECTS, tasks=TASKS, quotes=QUOTES)
        assert hits[0].kind == "quote"
        assert hits[0].label == "Flow Bros"

    def test_scores_descending_and_limit(self):
        hits = search("birch", projects=PROJECTS, tasks=TASKS, quotes=QUOTES, min_score=0)
        scores = [h.score for h in hits]
        assert scores == sorted(scores, reverse=True)
        assert len(search("birch", projects=PROJECTS, tasks=TASKS, quotes=QUOTES, min_score=0, limit=1)) == 1

    def test_min_score_filters_noise(self):
        assert search("zzzzqqq", projects=PROJECTS, tasks=TASKS, quotes=QUOTES) == []
