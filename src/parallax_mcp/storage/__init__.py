"""Diagnostic journal storage for Parallax MCP."""

from .chroma import ChromaJournal, ChromaUnavailableError, JournalEvent
from .models import TransactionRecord, WorktreeRecord

__all__ = [
    "ChromaJournal",
    "ChromaUnavailableError",
    "JournalEvent",
    "TransactionRecord",
    "WorktreeRecord",
]
