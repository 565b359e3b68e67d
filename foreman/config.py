from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


def _resolve_project_root() -> Path:
    override = os.getenv("FOREMAN_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    return float(raw) if raw else default


class Settings(BaseModel):
    project_root: Path = Field(default_factory=_resolve_project_root)
    data_dir: Path = Field(default_factory=lambda: _resolve_project_root() / "data")
    exports_dir: Path = Field(default_factory=lambda: _resolve_project_root() / "data" / "exports")

    database_url_override: str = Field(default_factory=lambda: os.getenv("FOREMAN_DATABASE_URL", "").strip())

    source: Literal["sql", "rest"] = Field(
        default_factory=lambda: os.getenv("FOREMAN_SOURCE", "sql").strip().lower() or "sql"
    )
    supabase_url: str = Field(default_factory=lambda: os.getenv("SUPABASE_URL", "").strip())
    supabase_key: str = Field(default_factory=lambda: os.getenv("SUPABASE_KEY", "").strip())
    user_id: str = Field(default_factory=lambda: os.getenv("FOREMAN_USER_ID", "").strip())

    request_timeout_seconds: float = Field(default_factory=lambda: _env_float("FOREMAN_REQUEST_TIMEOUT", 15.0))
    search_min_score: float = Field(default_factory=lambda: _env_float("FOREMAN_SEARCH_MIN_SCORE", 60.0))

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.exports_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_url(self) -> str:
        return self.database_url_override or f"sqlite:///{self.data_dir / 'foreman.db'}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
