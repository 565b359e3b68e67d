from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import FileResponse, JSONResponse

from foreman import services
from foreman.config import get_settings
from foreman.db import init_db
from foreman.errors import FetchError, MalformedRowError
from foreman.schemas import (
    BudgetDashboard,
    Decision,
    HealthReport,
    ProjectHealth,
    SearchHit,
    SortMode,
    TaskStats,
    WarRoomFilters,
)
from foreman.search import DEFAULT_LIMIT
from foreman.sources import RestRowSource, RowSource, build_source

log = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    factory = init_db() if settings.source == "sql" else None
    app.state.row_source = build_source(settings, factory)
    try:
        yield
    finally:
        if isinstance(app.state.row_source, RestRowSource):
            await app.state.row_source.aclose()


app = FastAPI(
    title="Foreman",
    version="0.1.0",
    description=(
        "Read-only command center API for construction projects. "
        "Serves the war room task list, budget rollups, project health and search. "
        "All endpoints return JSON except the workbook export. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "War Room", "description": "Open tasks, filtered and ordered by urgency."},
        {"name": "Budget", "description": "Budget rollups by area, project and trade."},
        {"name": "Health", "description": "Per-project health and decisions needing approval."},
        {"name": "Search", "description": "Fuzzy search across projects, tasks and quotes."},
        {"name": "Export", "description": "Executive workbook download."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & error mapping
# ---------------------------------------------------------------------------


def row_source(request: Request) -> RowSource:
    return request.app.state.row_source


def _user(user_id: str | None) -> str | None:
    return user_id or get_settings().user_id or None


@app.exception_handler(FetchError)
async def fetch_error_handler(request: Request, exc: FetchError):
    log.warning("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": str(exc), "resource": exc.resource})


@app.exception_handler(MalformedRowError)
async def malformed_row_handler(request: Request, exc: MalformedRowError):
    log.error("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc), "entity": exc.entity, "row_id": exc.row_id},
    )


# ---------------------------------------------------------------------------
# Routes: War room
# ---------------------------------------------------------------------------


@app.get("/api/war-room", tags=["War Room"], summary="Filtered and sorted open tasks with global stats")
async def war_room(
    user_id: str | None = Query(None, description="Whose tasks; defaults to FOREMAN_USER_ID"),
    project_id: str | None = Query(None, description="Only tasks of this project"),
    status: str | None = Query(None, description="Task status or one of overdue, blocking, on_me"),
    sort_by: SortMode = Query("urgency", description="Sort mode"),
    source: RowSource = Depends(row_source),
):
    filters = WarRoomFilters(project_id=project_id, status=status, sort_by=sort_by)
    view = await services.load_war_room(source, _user(user_id), filters)
    return services.dump(view)


@app.get("/api/war-room/stats", response_model=TaskStats,
         tags=["War Room"], summary="Counts over every open task")
async def war_room_stats(user_id: str | None = None, source: RowSource = Depends(row_source)):
    return await services.load_war_room_stats(source, _user(user_id))


# ---------------------------------------------------------------------------
# Routes: Budget
# ---------------------------------------------------------------------------


@app.get("/api/budget", response_model=BudgetDashboard,
         tags=["Budget"], summary="Budget dashboard, optionally scoped to one project")
async def budget(project_id: str | None = None, source: RowSource = Depends(row_source)):
    return await services.load_budget_dashboard(source, project_id)


# ---------------------------------------------------------------------------
# Routes: Health
# ---------------------------------------------------------------------------


@app.get("/api/health", response_model=HealthReport,
         tags=["Health"], summary="Health of every active or on-hold project")
async def health(user_id: str | None = None, source: RowSource = Depends(row_source)):
    return await services.load_health_report(source, _user(user_id))


@app.get("/api/health/{project_id}", response_model=ProjectHealth,
         tags=["Health"], summary="Health of one project")
async def project_health(project_id: str, user_id: str | None = None,
                         source: RowSource = Depends(row_source)):
    result = await services.load_project_health(source, project_id, _user(user_id))
    if result is None:
        raise HTTPException(404, "Project not found")
    return result


@app.get("/api/decisions", response_model=list[Decision],
         tags=["Health"], summary="Quotes needing approval and over-budget quotes")
async def decisions(source: RowSource = Depends(row_source)):
    return await services.load_decisions(source)


# ---------------------------------------------------------------------------
# Routes: Search & export
# ---------------------------------------------------------------------------


@app.get("/api/search", response_model=list[SearchHit],
         tags=["Search"], summary="Fuzzy search across projects, tasks and quotes")
async def search(
    q: str = Query(..., description="Search text"),
    user_id: str | None = None,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=100),
    source: RowSource = Depends(row_source),
):
    return await services.run_search(
        source, q, user_id=_user(user_id), limit=limit, min_score=get_settings().search_min_score,
    )


@app.get("/api/export", tags=["Export"], summary="Download the executive workbook (.xlsx)")
async def export(user_id: str | None = None, source: RowSource = Depends(row_source)):
    settings = get_settings()
    filename = f"foreman-report-{datetime.now(UTC):%Y-%m-%d}.xlsx"
    path = await services.run_export(source, settings.exports_dir / filename, _user(user_id))
    return FileResponse(path, media_type=XLSX_MEDIA_TYPE, filename=filename)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("foreman.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
