"""War-room task pipeline: filter, order and count tasks.

Everything here is a pure function of already-fetched rows. Tasks are read
through the ``TaskLike`` attribute shape; nothing is mutated, logged or fetched.

Ordering
--------
Each sort mode has its own comparator in ``SORT_COMPARATORS``. Except for the two
alphabetical modes, ``comparator_for`` wraps the mode comparator so that blocking
tasks always come first. Sorting uses Python's stable ``sorted`` so ties keep
their input order and sorting a sorted list is a no-op.
"""
from __future__ import annotations

from functools import cmp_to_key
from typing import Any, Callable, Iterable

from foreman.errors import MalformedRowError
from foreman.schemas import TaskStats, WarRoomFilters, WarRoomView
from foreman.utils import collation_key, compare, to_instant

Comparator = Callable[[Any, Any], int]

PRIORITY_RANK = {"P1": 0, "P2": 1, "P3": 2}

STATUS_RANK = {
    "open": 1,
    "waiting_on_me": 2,
    "waiting_on_client": 3,
    "waiting_on_vendor": 4,
    "waiting_on_contractor": 5,
    "waiting_on_design_team": 6,
    "waiting_on_plh": 7,
    "follow_up": 8,
    "completed": 9,
    "dead": 10,
}
UNRANKED_STATUS = 99

REQUIRED_FIELDS = (
    "priority", "status", "is_blocking", "is_overdue", "created_at", "project_name", "task",
)

# ---------------------------------------------------------------------------
# Field access
# ---------------------------------------------------------------------------


def _required(task: Any, field: str) -> Any:
    value = getattr(task, field, None)
    if value is None:
        raise MalformedRowError("task", getattr(task, "id", None), f"missing required field '{field}'")
    return value


def priority_rank(task: Any) -> int:
    priority = _required(task, "priority")
    try:
        return PRIORITY_RANK[priority]
    except KeyError:
        raise MalformedRowError("task", getattr(task, "id", None), f"unknown priority {priority!r}") from None


def status_rank(task: Any) -> int:
    return STATUS_RANK.get(_required(task, "status"), UNRANKED_STATUS)


def _created_at(task: Any):
    value = _required(task, "created_at")
    try:
        return to_instant(value)
    except (TypeError, ValueError) as exc:
        raise MalformedRowError("task", getattr(task, "id", None), f"bad created_at: {exc}") from exc


def _next_action(task: Any):
    value = getattr(task, "next_action_date", None)
    if value is None or value == "":
        return None
    try:
        return to_instant(value)
    except (TypeError, ValueError) as exc:
        raise MalformedRowError("task", getattr(task, "id", None), f"bad next_action_date: {exc}") from exc


def validate_task(task: Any) -> None:
    """Raise ``MalformedRowError`` unless every field the comparators read is usable."""
    for field in REQUIRED_FIELDS:
        _required(task, field)
    priority_rank(task)
    _created_at(task)
    _next_action(task)


# ---------------------------------------------------------------------------
# Filter stage
# ---------------------------------------------------------------------------

_PSEUDO_STATUS_MATCHERS: dict[str, Callable[[Any], bool]] = {
    "overdue": lambda t: bool(_required(t, "is_overdue")),
    "blocking": lambda t: bool(_required(t, "is_blocking")),
    "on_me": lambda t: _required(t, "status") == "waiting_on_me",
}


def matches_status(task: Any, token: str) -> bool:
    """True if *task* satisfies a status token (literal status or pseudo-status)."""
    matcher = _PSEUDO_STATUS_MATCHERS.get(token)
    if matcher is not None:
        return matcher(task)
    return _required(task, "status") == token


def filter_tasks(
    tasks: Iterable[Any], *, project_id: Any = None, status: str | None = None,
) -> list[Any]:
    """Return tasks matching both the project and the status constraint, in input order.

    A ``None`` constraint matches everything; any other value, falsy ids included, must match.
    """
    items = list(tasks)
    if project_id is not None:
        items = [t for t in items if _required(t, "project_id") == project_id]
    if status is not None:
        items = [t for t in items if matches_status(t, status)]
    return items


# ---------------------------------------------------------------------------
# Sort stage
# ---------------------------------------------------------------------------


def _flag_first(a: bool, b: bool) -> int:
    return compare(bool(b), bool(a))


def compare_blocking(a: Any, b: Any) -> int:
    return _flag_first(_required(a, "is_blocking"), _required(b, "is_blocking"))


def compare_urgency(a: Any, b: Any) -> int:
    result = _flag_first(_required(a, "is_overdue"), _required(b, "is_overdue"))
    if result:
        return result
    result = _flag_first(_required(a, "status") == "waiting_on_me", _required(b, "status") == "waiting_on_me")
    if result:
        return result
    result = compare(priority_rank(a), priority_rank(b))
    if result:
        return result
    # Tasks without a next action date go last.
    a_date, b_date = _next_action(a), _next_action(b)
    if a_date is not None and b_date is not None:
        return compare(a_date, b_date)
    if a_date is not None:
        return -1
    if b_date is not None:
        return 1
    return 0


def compare_priority(a: Any, b: Any) -> int:
    return compare(priority_rank(a), priority_rank(b))


def compare_project(a: Any, b: Any) -> int:
    result = compare(collation_key(_required(a, "project_name")), collation_key(_required(b, "project_name")))
    return result or compare_priority(a, b)


def compare_date_newest(a: Any, b: Any) -> int:
    return compare(_created_at(b), _created_at(a))


def compare_date_oldest(a: Any, b: Any) -> int:
    return compare(_created_at(a), _created_at(b))


def compare_alpha_az(a: Any, b: Any) -> int:
    return compare(collation_key(_required(a, "task")), collation_key(_required(b, "task")))


def compare_alpha_za(a: Any, b: Any) -> int:
    return compare_alpha_az(b, a)


def compare_status(a: Any, b: Any) -> int:
    return compare(status_rank(a), status_rank(b))


SORT_COMPARATORS: dict[str, Comparator] = {
    "urgency": compare_urgency,
    "priority": compare_priority,
    "project": compare_project,
    "date_newest": compare_date_newest,
    "date_oldest": compare_date_oldest,
    "alpha_az": compare_alpha_az,
    "alpha_za": compare_alpha_za,
    "status": compare_status,
}

BLOCKING_EXEMPT_MODES = frozenset({"alpha_az", "alpha_za"})


def comparator_for(mode: str) -> Comparator:
    """Full comparator for *mode*, including the blocking-first rule where it applies."""
    try:
        mode_compare = SORT_COMPARATORS[mode]
    except KeyError:
        raise ValueError(f"Unknown sort mode: {mode!r}") from None
    if mode in BLOCKING_EXEMPT_MODES:
        return mode_compare

    def blocking_first(a: Any, b: Any) -> int:
        return compare_blocking(a, b) or mode_compare(a, b)

    return blocking_first


def sort_tasks(tasks: Iterable[Any], mode: str = "urgency") -> list[Any]:
    """Return a new list of *tasks* ordered by *mode*. Stable; raises on malformed rows."""
    task_compare = comparator_for(mode)
    items = list(tasks)
    for task in items:
        validate_task(task)
    return sorted(items, key=cmp_to_key(task_compare))


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def compute_task_stats(tasks: Iterable[Any]) -> TaskStats:
    """Counts over the whole, unfiltered collection."""
    stats = TaskStats()
    for task in tasks:
        stats.total += 1
        if _required(task, "is_overdue"):
            stats.overdue += 1
        if _required(task, "status") == "waiting_on_me":
            stats.on_me += 1
        if _required(task, "is_blocking"):
            stats.blocking += 1
    return stats


def build_war_room(tasks: Iterable[Any], filters: WarRoomFilters | None = None) -> WarRoomView:
    """Filter and sort *tasks* per *filters*; stats always cover every task."""
    filters = filters or WarRoomFilters()
    items = list(tasks)
    visible = filter_tasks(items, project_id=filters.project_id, status=filters.status)
    return WarRoomView(tasks=sort_tasks(visible, filters.sort_by), stats=compute_task_stats(items))
