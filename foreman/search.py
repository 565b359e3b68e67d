"""Global command-palette search over projects, tasks and quotes."""
from __future__ import annotations

from typing import Any, Iterable

from rapidfuzz import fuzz
from rapidfuzz.utils import default_process

from foreman.schemas import ProjectRow, QuoteRow, SearchHit

DEFAULT_MIN_SCORE = 60.0
DEFAULT_LIMIT = 20


def _joined(*parts: str | None) -> str:
    return " ".join(p for p in parts if p)


def _candidates(
    projects: Iterable[ProjectRow], tasks: Iterable[Any], quotes: Iterable[QuoteRow],
) -> list[tuple[str, dict[str, Any]]]:
    entries: list[tuple[str, dict[str, Any]]] = []
    for p in projects:
        entries.append((
            _joined(p.name, p.client_name, p.address),
            {"kind": "project", "id": p.id, "label": p.name,
             "detail": p.client_name or "", "project_id": p.id},
        ))
    for t in tasks:
        entries.append((
            _joined(t.task, t.project_name, getattr(t, "poc_name", None)),
            {"kind": "task", "id": str(t.id), "label": t.task,
             "detail": t.project_name or "", "project_id": str(t.project_id)},
        ))
    for q in quotes:
        entries.append((
            _joined(q.vendor_name, q.trade_name, q.project_name),
            {"kind": "quote", "id": q.id, "label": q.vendor_name or q.trade_name or "Quote",
             "detail": _joined(q.trade_name, q.project_name), "project_id": q.project_id},
        ))
    return entries


def search(
    query: str,
    *,
    projects: Iterable[ProjectRow] = (),
    tasks: Iterable[Any] = (),
    quotes: Iterable[QuoteRow] = (),
    limit: int = DEFAULT_LIMIT,
    min_score: float = DEFAULT_MIN_SCORE,
) -> list[SearchHit]:
    """Fuzzy-match *query* against every entity, best matches first.

    Ties keep the order projects, tasks, quotes and their input order.
    """
    if not query or not query.strip():
        return []
    hits: list[SearchHit] = []
    for text, fields in _candidates(projects, tasks, quotes):
        score = fuzz.WRatio(query, text, processor=default_process)
        if score >= min_score:
            hits.append(SearchHit(score=round(score, 1), **fields))
    hits.sort(key=lambda h: h.score, reverse=True)
    return hits[:max(limit, 0)]
