"""Result models returned by the worktree engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(slots=True)
class ChangedFile:
    path: str
    lines_added: int
    lines_removed: int
    status: str
    committed: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class MergeStatus:
    main_ahead_count: int
    conflicting_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class WorktreeStatus:
    has_committed_changes: bool
    has_uncommitted_changes: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class WorktreeInfo:
    path: str
    branch: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class LineDelta:
    lines_added: int = 0
    lines_removed: int = 0


@dataclass(slots=True)
class MergeResult:
    main_branch: str
    lines_added: int
    lines_removed: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


__all__ = [
    "ChangedFile",
    "LineDelta",
    "MergeResult",
    "MergeStatus",
    "WorktreeInfo",
    "WorktreeStatus",
]
