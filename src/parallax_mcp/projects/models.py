"""Project profile models."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..tasks import DEFAULT_BRANCH_PREFIX, sanitize_branch_prefix


class ProjectProfile(BaseModel):
    """Per-repository defaults applied when tasks are created and closed."""

    id: str = Field(..., description="Unique identifier for the project.")
    name: str = Field(..., description="Display name for the project.")
    path: Path = Field(..., description="Absolute path to the repository root.")
    branch_prefix: str = Field(
        default=DEFAULT_BRANCH_PREFIX,
        description="Prefix for task branches, e.g. 'task' gives 'task/<slug>'.",
    )
    delete_branch_on_close: bool = Field(
        default=True,
        description="Whether closing a task also deletes its branch.",
    )
    symlink_dirs: list[str] | None = Field(
        default=None,
        description="Directories to share into new worktrees; None means detect ignored ones.",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata for reporting.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Project id must not be empty")
        return normalized

    @field_validator("path")
    @classmethod
    def _require_absolute(cls, value: Path) -> Path:
        expanded = value.expanduser()
        if not expanded.is_absolute():
            raise ValueError("Project path must be absolute")
        return expanded

    @field_validator("branch_prefix", mode="before")
    @classmethod
    def _sanitize_prefix(cls, value: Any) -> str:
        return sanitize_branch_prefix(value if isinstance(value, str) else None)


__all__ = ["ProjectProfile"]
