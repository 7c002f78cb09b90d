"""Chroma-based journal of worktree and transaction activity."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import TransactionRecord, WorktreeRecord

WORKTREE_EVENT = "worktree_update"
TRANSACTION_EVENT = "transaction"

_RECORD_KEYS = {"repo_root", "branch", "path", "status", "timestamp"}
_TRANSACTION_KEYS = {"operation", "repo_path", "branch", "outcome", "detail", "timestamp"}


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by the journal."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by the journal."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class JournalEvent:
    """Represents a stored event in Chroma."""

    id: str
    stream: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _scalar_metadata(values: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata accepts only str/int/float/bool values.
    cleaned: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = json.dumps(value)
    return cleaned


class ChromaJournal:
    """Append-only journal of engine activity persisted via ChromaDB."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "parallax_journal",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    @property
    def path(self) -> Path:
        return self._path

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install parallax-mcp with journal extras"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[JournalEvent]:
        events: list[JournalEvent] = []
        ids = result.get("ids") or []
        documents = result.get("documents") or []
        metadatas = result.get("metadatas") or []
        for event_id, document, metadata in zip(ids, documents, metadatas):
            metadata = metadata or {}
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                JournalEvent(
                    id=event_id,
                    stream=metadata.get("stream", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        stream: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> JournalEvent:
        collection = self._ensure_collection()
        counter = self._counters[stream] = self._counters[stream] + 1
        event_id = f"{stream}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata = {
            "stream": stream,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            record_metadata.update(_scalar_metadata(metadata))

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return JournalEvent(
            id=event_id,
            stream=stream,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def fetch_stream_events(self, stream: str, *, limit: int | None = None) -> list[JournalEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"stream": stream}, limit=limit)
        return self._convert_result(result)

    def record_worktree(
        self,
        *,
        repo_root: str,
        branch: str,
        path: str | None,
        status: str,
        metadata: dict[str, Any] | None = None,
    ) -> WorktreeRecord:
        timestamp = self._clock()
        payload: dict[str, Any] = {
            "repo_root": repo_root,
            "branch": branch,
            "path": path,
            "status": status,
            "timestamp": timestamp.isoformat(),
        }
        if metadata:
            payload.update(metadata)

        event = self.record_event(
            stream=f"worktree::{repo_root}::{branch}",
            event_type=WORKTREE_EVENT,
            body=payload,
            metadata={"repo_root": repo_root, "branch": branch, "status": status},
        )

        return WorktreeRecord(
            repo_root=repo_root,
            branch=branch,
            path=path,
            status=status,
            recorded_at=event.timestamp,
            metadata=metadata or {},
        )

    def list_worktrees(self, branch: str | None = None) -> list[WorktreeRecord]:
        filters: dict[str, Any] = {"event_type": WORKTREE_EVENT}
        if branch:
            filters = {"$and": [filters, {"branch": branch}]}
        records: list[WorktreeRecord] = []
        for event in self.search_events(filters=filters):
            doc = json.loads(event.document)
            records.append(
                WorktreeRecord(
                    repo_root=doc["repo_root"],
                    branch=doc["branch"],
                    path=doc.get("path"),
                    status=doc.get("status", "unknown"),
                    recorded_at=event.timestamp,
                    metadata={k: v for k, v in doc.items() if k not in _RECORD_KEYS},
                )
            )
        return records

    def record_transaction(
        self,
        *,
        operation: str,
        repo_path: str,
        outcome: str,
        branch: str | None = None,
        detail: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransactionRecord:
        timestamp = self._clock()
        payload: dict[str, Any] = {
            "operation": operation,
            "repo_path": repo_path,
            "branch": branch,
            "outcome": outcome,
            "detail": detail,
            "timestamp": timestamp.isoformat(),
        }
        if metadata:
            payload.update(metadata)

        event = self.record_event(
            stream=f"transaction::{repo_path}",
            event_type=TRANSACTION_EVENT,
            body=payload,
            metadata={
                "operation": operation,
                "repo_path": repo_path,
                "branch": branch,
                "outcome": outcome,
            },
        )

        return TransactionRecord(
            operation=operation,
            repo_path=repo_path,
            branch=branch,
            outcome=outcome,
            detail=detail,
            recorded_at=event.timestamp,
            metadata=metadata or {},
        )

    def list_transactions(
        self,
        *,
        operation: str | None = None,
        outcome: str | None = None,
    ) -> list[TransactionRecord]:
        clauses: list[dict[str, Any]] = [{"event_type": TRANSACTION_EVENT}]
        if operation:
            clauses.append({"operation": operation})
        if outcome:
            clauses.append({"outcome": outcome})
        filters = clauses[0] if len(clauses) == 1 else {"$and": clauses}

        records: list[TransactionRecord] = []
        for event in self.search_events(filters=filters):
            doc = json.loads(event.document)
            records.append(
                TransactionRecord(
                    operation=doc["operation"],
                    repo_path=doc["repo_path"],
                    branch=doc.get("branch"),
                    outcome=doc.get("outcome", "unknown"),
                    detail=doc.get("detail"),
                    recorded_at=event.timestamp,
                    metadata={k: v for k, v in doc.items() if k not in _TRANSACTION_KEYS},
                )
            )
        return records

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[JournalEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=filters, limit=limit)
        events = self._convert_result(result)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events


__all__ = ["ChromaJournal", "ChromaUnavailableError", "JournalEvent"]
