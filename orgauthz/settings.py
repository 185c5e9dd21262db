from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    App settings.

    Notes:
    - Defaults are local and deterministic (SQLite file, in-process cache).
    - `cache_backend=redis` is required when several instances must share
      decision-cache invalidations.
    """

    model_config = SettingsConfigDict(env_prefix="ORGAUTHZ_", extra="ignore")

    db_url: str | None = None
    authz_config_path: str | None = None
    log_level: str = "INFO"

    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"

    def resolved_db_url(self) -> str:
        if self.db_url:
            return self.db_url

        repo_root = Path(__file__).resolve().parents[1]
        db_path = repo_root / "orgauthz.db"
        return f"sqlite:///{db_path}"

    def resolved_authz_config_path(self) -> Path:
        if self.authz_config_path:
            return Path(self.authz_config_path)

        repo_root = Path(__file__).resolve().parents[1]
        return repo_root / "config" / "authz_config.yaml"


@lru_cache
def get_settings() -> Settings:
    return Settings()
