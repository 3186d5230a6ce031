import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def normalize_database_url(url: Optional[str]) -> Optional[str]:
    if not url or not url.strip():
        return None
    url = url.strip()
    # Hosting providers hand out sync URLs, the engine is async
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class DatabaseConfig(BaseModel):
    url: Optional[str] = Field(default=None)
    echo: bool = Field(default=False)

    @field_validator("url", mode="before")
    def _normalize_url(cls, v: Optional[str]) -> Optional[str]:
        return normalize_database_url(v)


class DataConfig(BaseModel):
    data_dir: Path = Field(default=Path("backend/data"))
    legacy_archive_file: str = Field(default="experience_upgrades.json", min_length=1)

    @field_validator("data_dir", mode="before")
    def _expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser()

    @property
    def legacy_archive_path(self) -> Path:
        return self.data_dir / self.legacy_archive_file


class Settings(BaseModel):
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    data: DataConfig = Field(default_factory=DataConfig)

    model_config = ConfigDict(arbitrary_types_allowed=True)


DEFAULT_CONFIG_PATH = Path(os.environ.get("CONFIG_PATH", "config/config.json"))


def _load_file_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Invalid JSON configuration at {path}") from exc


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _load_env() -> dict[str, Any]:
    env_config: dict[str, Any] = {}

    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        env_config.setdefault("database", {})["url"] = database_url

    echo = os.environ.get("DATABASE_ECHO")
    if echo:
        env_config.setdefault("database", {})["echo"] = _env_flag(echo)

    data_dir = os.environ.get("DATA_DIR")
    if data_dir:
        env_config.setdefault("data", {})["data_dir"] = data_dir

    legacy_file = os.environ.get("LEGACY_ARCHIVE_FILE")
    if legacy_file:
        env_config.setdefault("data", {})["legacy_archive_file"] = legacy_file

    return env_config


def merge_settings(env_config: dict[str, Any], file_config: dict[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    merged["database"] = {**(file_config.get("database") or {}), **env_config.get("database", {})}
    merged["data"] = {**(file_config.get("data") or {}), **env_config.get("data", {})}
    return merged


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    env_config = _load_env()
    file_config = _load_file_config(DEFAULT_CONFIG_PATH)
    merged = merge_settings(env_config=env_config, file_config=file_config)
    try:
        return Settings.model_validate(merged)
    except ValidationError as exc:
        raise RuntimeError(f"Configuration error: {exc}") from exc


__all__ = ["Settings", "DatabaseConfig", "DataConfig", "get_settings", "normalize_database_url"]
