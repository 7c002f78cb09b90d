"""Configuration management for Parallax MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .engine.worktrees import DEFAULT_WORKTREE_DIR, SYMLINK_CANDIDATES


class ParallaxSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    git_path: str | None = Field(default=None, validation_alias="PARALLAX_GIT_PATH")
    git_timeout: float = Field(default=120.0, validation_alias="PARALLAX_GIT_TIMEOUT")
    main_branch_ttl: float = Field(default=60.0, validation_alias="PARALLAX_MAIN_BRANCH_TTL")
    merge_base_ttl: float = Field(default=30.0, validation_alias="PARALLAX_MERGE_BASE_TTL")
    worktree_dir: str = Field(default=DEFAULT_WORKTREE_DIR, validation_alias="PARALLAX_WORKTREE_DIR")
    symlink_candidates: Annotated[tuple[str, ...], NoDecode] = Field(
        default=SYMLINK_CANDIDATES, validation_alias="PARALLAX_SYMLINK_CANDIDATES"
    )
    project_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("projects"),), validation_alias="PARALLAX_PROJECT_PATHS"
    )
    journal_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="PARALLAX_JOURNAL_PATH"
    )
    journal_enabled: bool = Field(default=True, validation_alias="PARALLAX_JOURNAL_ENABLED")
    log_level: str = Field(default="INFO", validation_alias="PARALLAX_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "PARALLAX_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("git_timeout", "main_branch_ttl", "merge_base_ttl")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts and cache TTLs must be > 0 seconds")
        return value

    @field_validator("worktree_dir")
    @classmethod
    def _validate_worktree_dir(cls, value: str) -> str:
        normalized = value.strip().strip("/")
        if not normalized or normalized.startswith("..") or os.path.isabs(value):
            raise ValueError("PARALLAX_WORKTREE_DIR must be a relative directory inside the repository")
        return normalized

    @field_validator("symlink_candidates", mode="before")
    @classmethod
    def _parse_symlink_candidates(cls, value):
        if value is None or value == "":
            return SYMLINK_CANDIDATES
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(os.pathsep) if part.strip())
        raise TypeError("PARALLAX_SYMLINK_CANDIDATES must be a list of names or a path-separated string")

    @field_validator("project_paths", mode="before")
    @classmethod
    def _parse_project_paths(cls, value):
        if value is None or value == "":
            return (Path("projects"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("projects"),)
        raise TypeError("PARALLAX_PROJECT_PATHS must be a list of paths or a path-separated string")


@lru_cache(maxsize=1)
def get_settings() -> ParallaxSettings:
    """Return cached settings instance."""

    settings = ParallaxSettings()
    settings.journal_path = settings.journal_path.expanduser().resolve()
    settings.project_paths = tuple(path.expanduser().resolve() for path in settings.project_paths)
    return settings


__all__ = ["ParallaxSettings", "get_settings"]
