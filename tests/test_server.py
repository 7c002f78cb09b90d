from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from parallax_mcp import __version__
from parallax_mcp.config import ParallaxSettings
from parallax_mcp.git import FakeGitRunner, GitNotFoundError
from parallax_mcp.git.runner import fail, ok
from parallax_mcp.server import create_server
from parallax_mcp.storage import ChromaUnavailableError, TransactionRecord


class StubJournal:
    def __init__(self, *_, **__) -> None:
        self.pinged = False

    def ping(self) -> bool:
        self.pinged = True
        return True

    def record_worktree(self, **kwargs):
        return None

    def record_transaction(self, **kwargs):
        return None

    def list_transactions(self, **_):
        stamp = datetime(2025, 1, 1, tzinfo=timezone.utc)
        return [
            TransactionRecord("merge", "/repo", "task/a", "succeeded", None, stamp),
            TransactionRecord("merge", "/repo", "task/b", "failed", "Merge failed: conflict", stamp),
            TransactionRecord("push", "/repo", "task/a", "succeeded", None, stamp),
        ]


class UnavailableJournal(StubJournal):
    def ping(self) -> bool:
        raise ChromaUnavailableError("chromadb package is not installed")


@pytest.fixture()
def settings(tmp_path: Path) -> ParallaxSettings:
    settings = ParallaxSettings()
    settings.project_paths = (tmp_path,)
    settings.journal_path = tmp_path / "journal"
    return settings


def test_create_server_reports_status(settings: ParallaxSettings) -> None:
    runner = FakeGitRunner([(("--version",), ok("git version 2.45.1\n"))])
    journal = StubJournal()

    server = create_server(settings, runner=runner, journal=journal)

    assert journal.pinged
    payload = server.status_snapshot("req-1")
    assert payload["server_version"] == __version__
    assert payload["git"]["version"] == "git version 2.45.1"
    assert payload["journal"]["available"] is True
    assert payload["journal"]["outcome_counts"] == {"succeeded": 2, "failed": 1}
    assert len(payload["journal"]["recent_transactions"]) == 3
    assert payload["engine"]["caches"]["main_branch"] == {"entries": 0, "ttl": 60.0}
    assert payload["engine"]["lock_keys"] == []
    assert payload["projects"] == {"count": 0, "ids": [], "error": None}
    assert payload["request_id"] == "req-1"
    json.dumps(payload)


def test_create_server_tolerates_unavailable_journal(
    settings: ParallaxSettings, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("parallax_mcp.server.ChromaJournal", UnavailableJournal)

    server = create_server(settings, runner=FakeGitRunner())

    assert server.journal is None
    assert server.journal_metadata["available"] is False
    assert "not installed" in server.journal_metadata["error"]
    assert server.status_snapshot()["journal"]["recent_transactions"] == []


def test_journal_can_be_disabled(settings: ParallaxSettings, monkeypatch: pytest.MonkeyPatch) -> None:
    settings.journal_enabled = False
    monkeypatch.setattr("parallax_mcp.server.ChromaJournal", UnavailableJournal)

    server = create_server(settings, runner=FakeGitRunner())

    assert server.journal is None
    assert server.journal_metadata == {
        "enabled": False,
        "available": False,
        "path": str(settings.journal_path),
        "error": None,
    }


def test_git_version_failure_is_reported(settings: ParallaxSettings) -> None:
    runner = FakeGitRunner([(("--version",), fail("broken install"))])

    server = create_server(settings, runner=runner, journal=StubJournal())

    assert server.git_metadata["version"] is None
    assert server.git_metadata["error"] == "broken install"


def test_missing_git_aborts_startup(settings: ParallaxSettings) -> None:
    settings.git_path = str(Path(settings.journal_path) / "no-such-git")

    with pytest.raises(GitNotFoundError):
        create_server(settings, journal=StubJournal())


def test_engine_uses_configured_ttls(settings: ParallaxSettings) -> None:
    settings.main_branch_ttl = 5.0
    settings.worktree_dir = ".tasks"

    server = create_server(settings, runner=FakeGitRunner(), journal=StubJournal())

    assert server.engine.main_branch_cache.ttl == 5.0
    assert server.engine.worktrees.worktree_path("/repo", "task/a") == "/repo/.tasks/task/a"
