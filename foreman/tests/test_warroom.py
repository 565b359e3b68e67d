"""Tests for the war-room filter, sort and stats pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

import pytest
from pydantic import ValidationError

from foreman.errors import MalformedRowError
from foreman.schemas import SORT_MODES, TaskRow, WarRoomFilters
from foreman.warroom import (
    build_war_room,
    comparator_for,
    compare_status,
    compare_urgency,
    compute_task_stats,
    filter_tasks,
    sort_tasks,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_task(id: str, **overrides: Any) -> TaskRow:
    fields = {
        "id": id,
        "project_id": "p1",
        "project_name": "Maple House",
        "task": f"Task {id}",
        "priority": "P2",
        "status": "open",
        "is_blocking": False,
        "is_overdue": False,
        "created_at": datetime(2024, 1, 1, tzinfo=UTC),
    }
    fields.update(overrides)
    return TaskRow(**fields)


def ids(tasks) -> list[str]:
    return [t.id for t in tasks]


@pytest.fixture()
def tasks() -> list[TaskRow]:
    return [
        make_task("1", priority="P3", status="waiting_on_client", project_id="p1",
                  created_at=datetime(2024, 1, 3, tzinfo=UTC), task="order tile"),
        make_task("2", priority="P1", status="waiting_on_me", project_id="p2",
                  project_name="Birch Loft", is_overdue=True,
                  created_at=datetime(2024, 1, 1, tzinfo=UTC), task="Approve cabinets"),
        make_task("3", priority="P2", status="open", is_blocking=True, project_id="p1",
                  created_at=datetime(2024, 1, 2, tzinfo=UTC), task="Electrical rough-in"),
        make_task("4", priority="P1", status="follow_up", project_id="p2",
                  project_name="Birch Loft", next_action_date=date(2024, 2, 1),
                  created_at=datetime(2024, 1, 5, tzinfo=UTC), task="Call plumber"),
        make_task("5", priority="P1", status="open", project_id="p1",
                  next_action_date=date(2024, 1, 15),
                  created_at=datetime(2024, 1, 4, tzinfo=UTC), task="book inspection"),
    ]


# ---------------------------------------------------------------------------
# Filter stage
# ---------------------------------------------------------------------------


class TestFilterTasks:
    def test_no_constraints_keeps_everything_in_order(self, tasks):
        assert ids(filter_tasks(tasks)) == ["1", "2", "3", "4", "5"]

    def test_project_filter(self, tasks):
        assert ids(filter_tasks(tasks, project_id="p2")) == ["2", "4"]

    def test_pseudo_statuses(self, tasks):
        assert ids(filter_tasks(tasks, status="overdue")) == ["2"]
        assert ids(filter_tasks(tasks, status="blocking")) == ["3"]
        assert ids(filter_tasks(tasks, status="on_me")) == ["2"]

    def test_literal_status(self, tasks):
        assert ids(filter_tasks(tasks, status="open")) == ["3", "5"]

    def test_unknown_token_uses_literal_equality(self, tasks):
        assert filter_tasks(tasks, status="no_such_status") == []

    def test_filter_composition_is_intersection(self, tasks):
        for project_id in ("p1", "p2"):
            for status in ("open", "overdue", "blocking", "on_me", "follow_up"):
                both = ids(filter_tasks(tasks, project_id=project_id, status=status))
                by_project = set(ids(filter_tasks(tasks, project_id=project_id)))
                by_status = set(ids(filter_tasks(tasks, status=status)))
                assert set(both) == by_project & by_status

    def test_does_not_mutate_input(self, tasks):
        before = list(tasks)
        filter_tasks(tasks, project_id="p1", status="open")
        assert tasks == before

    def test_falsy_project_id_still_filters(self):
        @dataclass
        class Row:
            id: str
            project_id: int

        rows = [Row("a", 0), Row("b", 1)]
        assert ids(filter_tasks(rows, project_id=0)) == ["a"]
        assert ids(filter_tasks(rows, project_id=1)) == ["b"]

    def test_empty_status_is_a_literal_token(self, tasks):
        assert filter_tasks(tasks, status="") == []


# ---------------------------------------------------------------------------
# Sort stage
# ---------------------------------------------------------------------------


class TestSortTasks:
    def test_priority_blocking_dominates(self):
        tasks = [
            make_task("1", is_blocking=False, priority="P2", status="open"),
            make_task("2", is_blocking=True, priority="P3", status="open"),
        ]
        assert ids(sort_tasks(tasks, "priority")) == ["2", "1"]

    def test_urgency_order(self, tasks):
        # blocking first, then overdue, then waiting on me, then priority, then next action date
        assert ids(sort_tasks(tasks, "urgency")) == ["3", "2", "5", "4", "1"]

    def test_urgency_null_next_action_sorts_last(self):
        tasks = [
            make_task("a", priority="P1"),
            make_task("b", priority="P1", next_action_date=date(2024, 3, 1)),
            make_task("c", priority="P1", next_action_date=date(2024, 2, 1)),
        ]
        assert ids(sort_tasks(tasks, "urgency")) == ["c", "b", "a"]

    def test_default_mode_is_urgency(self, tasks):
        assert sort_tasks(tasks) == sort_tasks(tasks, "urgency")

    def test_project_mode(self, tasks):
        assert ids(sort_tasks(tasks, "project")) == ["3", "2", "4", "5", "1"]

    def test_date_modes(self, tasks):
        assert ids(sort_tasks(tasks, "date_newest")) == ["3", "4", "5", "1", "2"]
        assert ids(sort_tasks(tasks, "date_oldest")) == ["3", "2", "1", "5", "4"]

    def test_alpha_modes_ignore_blocking_and_case(self, tasks):
        assert ids(sort_tasks(tasks, "alpha_az")) == ["2", "5", "4", "3", "1"]
        assert ids(sort_tasks(tasks, "alpha_za")) == ["1", "3", "4", "5", "2"]

    def test_alpha_ignores_accents(self):
        tasks = [make_task("1", task="Zinc"), make_task("2", task="Éclairage"), make_task("3", task="door")]
        assert ids(sort_tasks(tasks, "alpha_az")) == ["3", "2", "1"]

    def test_status_mode(self, tasks):
        assert ids(sort_tasks(tasks, "status")) == ["3", "5", "2", "1", "4"]

    def test_unranked_status_sorts_after_ranked(self):
        @dataclass
        class Loose:
            id: str
            status: str

        assert compare_status(Loose("a", "archived"), Loose("b", "dead")) == 1
        assert compare_status(Loose("a", "archived"), Loose("b", "archived")) == 0

    def test_mixed_created_at_representations(self):
        @dataclass
        class Row:
            id: str
            created_at: Any
            project_name: str = "P"
            task: str = "t"
            priority: str = "P2"
            status: str = "open"
            is_blocking: bool = False
            is_overdue: bool = False
            next_action_date: Any = None

        rows = [
            Row("iso", "2024-01-02T00:00:00+00:00"),
            Row("naive", datetime(2024, 1, 3)),
            Row("date", date(2024, 1, 1)),
        ]
        assert ids(sort_tasks(rows, "date_oldest")) == ["date", "iso", "naive"]

    @pytest.mark.parametrize("mode", SORT_MODES)
    def test_idempotent(self, tasks, mode):
        once = sort_tasks(tasks, mode)
        assert sort_tasks(once, mode) == once

    @pytest.mark.parametrize("mode", SORT_MODES)
    def test_stable_for_equal_keys(self, mode):
        clones = [make_task(str(i), task="same") for i in range(6)]
        assert ids(sort_tasks(clones, mode)) == [str(i) for i in range(6)]

    @pytest.mark.parametrize("mode", [m for m in SORT_MODES if m not in ("alpha_az", "alpha_za")])
    def test_blocking_precedence(self, tasks, mode):
        flags = [t.is_blocking for t in sort_tasks(tasks, mode)]
        assert flags == sorted(flags, reverse=True)

    def test_returns_new_list(self, tasks):
        before = list(tasks)
        result = sort_tasks(tasks, "alpha_az")
        assert result is not tasks
        assert tasks == before

    def test_unknown_mode_raises(self, tasks):
        with pytest.raises(ValueError, match="Unknown sort mode"):
            sort_tasks(tasks, "newest")
        with pytest.raises(ValueError):
            comparator_for("")


class TestMalformedRows:
    @dataclass
    class Partial:
        id: str
        priority: Any = "P1"
        status: Any = "open"
        is_blocking: Any = False
        is_overdue: Any = False
        created_at: Any = "2024-01-01"
        project_name: Any = "P"
        task: Any = "t"
        next_action_date: Any = None

    def test_project_filter_on_row_without_project_id(self):
        with pytest.raises(MalformedRowError) as info:
            filter_tasks([self.Partial("bare")], project_id="p1")
        assert info.value.row_id == "bare"

    def test_missing_status_raises(self):
        rows = [self.Partial("ok"), self.Partial("bad", status=None)]
        with pytest.raises(MalformedRowError) as info:
            sort_tasks(rows, "priority")
        assert info.value.row_id == "bad"

    def test_unknown_priority_raises(self):
        with pytest.raises(MalformedRowError, match="priority"):
            sort_tasks([self.Partial("x", priority="P9")], "urgency")

    def test_unparseable_created_at_raises(self):
        with pytest.raises(MalformedRowError, match="created_at"):
            sort_tasks([self.Partial("x", created_at="yesterday")], "date_newest")

    def test_missing_optional_fields_do_not_raise(self):
        rows = [self.Partial("a"), self.Partial("b", next_action_date="2024-05-01")]
        assert ids(sort_tasks(rows, "urgency")) == ["b", "a"]
        assert compare_urgency(rows[0], rows[0]) == 0

    def test_row_model_rejects_bad_status(self):
        with pytest.raises(ValidationError):
            make_task("x", status="on_fire")


# ---------------------------------------------------------------------------
# Stats and assembly
# ---------------------------------------------------------------------------


class TestStats:
    def test_counts(self, tasks):
        stats = compute_task_stats(tasks)
        assert (stats.total, stats.overdue, stats.on_me, stats.blocking) == (5, 1, 1, 1)

    def test_empty(self):
        assert compute_task_stats([]).total == 0


class TestBuildWarRoom:
    def test_stats_ignore_filters(self, tasks):
        view = build_war_room(tasks, WarRoomFilters(project_id="p2", sort_by="alpha_az"))
        assert ids(view.tasks) == ["2", "4"]
        assert view.stats.total == 5

    def test_defaults(self, tasks):
        view = build_war_room(tasks)
        assert ids(view.tasks) == ids(sort_tasks(tasks, "urgency"))

    def test_accepts_any_iterable(self, tasks):
        view = build_war_room(iter(tasks), WarRoomFilters(status="blocking"))
        assert ids(view.tasks) == ["3"]
        assert view.stats.blocking == 1
