"""Data models for journaled engine activity."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class WorktreeRecord:
    repo_root: str
    branch: str
    path: str | None
    status: str
    recorded_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TransactionRecord:
    operation: str
    repo_path: str
    branch: str | None
    outcome: str
    detail: str | None
    recorded_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


__all__ = ["TransactionRecord", "WorktreeRecord"]
