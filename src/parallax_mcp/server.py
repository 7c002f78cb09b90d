"""FastMCP server bootstrap for Parallax."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import ParallaxSettings, get_settings
from .engine import WorktreeEngine
from .git import GitNotFoundError, GitRunner
from .projects import ProjectLoadError, ProjectLoader
from .storage import ChromaJournal, ChromaUnavailableError
from .tools import register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Parallax server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def build_status_payload(
    *,
    settings: ParallaxSettings,
    engine: WorktreeEngine,
    projects: ProjectLoader,
    git_metadata: dict[str, Any],
    journal: ChromaJournal | None,
    journal_metadata: dict[str, Any],
    worktree_state: dict[str, dict[str, Any]],
    request_id: Any = None,
) -> dict[str, Any]:
    """Summarize runtime state for the status resource."""

    try:
        project_ids = sorted(projects.load_all().keys())
        project_error: str | None = None
    except ProjectLoadError as exc:
        project_ids = []
        project_error = str(exc)

    recent_transactions: list[dict[str, Any]] = []
    outcome_counts: dict[str, int] = {}
    storage_error = None
    if journal is not None:
        try:
            records = journal.list_transactions()
            for record in records:
                outcome_counts[record.outcome] = outcome_counts.get(record.outcome, 0) + 1
            recent_transactions = [
                {
                    "operation": record.operation,
                    "repo_path": record.repo_path,
                    "branch": record.branch,
                    "outcome": record.outcome,
                    "recorded_at": record.recorded_at.isoformat(),
                }
                for record in records[-5:]
            ]
        except Exception as exc:  # status must render even when the journal misbehaves
            storage_error = str(exc)

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server_version": __version__,
        "log_level": settings.log_level,
        "git": {
            "path": settings.git_path,
            "timeout": settings.git_timeout,
            **git_metadata,
        },
        "projects": {
            "count": len(project_ids),
            "ids": project_ids,
            "error": project_error,
        },
        "engine": {
            "caches": {
                engine.main_branch_cache.name: {
                    "entries": len(engine.main_branch_cache),
                    "ttl": engine.main_branch_cache.ttl,
                },
                engine.merge_base_cache.name: {
                    "entries": len(engine.merge_base_cache),
                    "ttl": engine.merge_base_cache.ttl,
                },
            },
            "lock_keys": sorted(engine.locks.keys),
            "worktrees": list(worktree_state.values())[-5:],
        },
        "journal": {
            **journal_metadata,
            "recent_transactions": recent_transactions,
            "outcome_counts": outcome_counts,
            "error": storage_error or journal_metadata.get("error"),
        },
        "request_id": request_id,
    }


def create_server(
    settings: Optional[ParallaxSettings] = None,
    runner: GitRunner | None = None,
    journal: ChromaJournal | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the worktree engine and its tools."""

    settings = settings or get_settings()

    project_loader = ProjectLoader(settings.project_paths)

    if runner is None:
        try:
            runner = GitRunner(
                Path(settings.git_path) if settings.git_path else None,
                timeout=settings.git_timeout,
            )
        except GitNotFoundError:
            logger.error("git executable is required", extra={"git_path": settings.git_path})
            raise

    git_metadata: dict[str, Any] = {"executable": str(runner.executable), "version": None, "error": None}
    version_result = _run_sync(runner.version())
    if version_result.ok:
        git_metadata["version"] = version_result.stdout.strip()
    else:
        git_metadata["error"] = version_result.stderr.strip() or "git --version failed"

    journal_metadata: dict[str, Any] = {
        "enabled": settings.journal_enabled,
        "available": False,
        "path": str(settings.journal_path),
        "error": None,
    }
    if journal is None and settings.journal_enabled:
        journal = ChromaJournal(settings.journal_path)
    if journal is not None:
        try:
            journal.ping()
            journal_metadata["available"] = True
        except ChromaUnavailableError as exc:
            journal_metadata["error"] = str(exc)
            journal = None

    engine = WorktreeEngine(
        runner,
        main_branch_ttl=settings.main_branch_ttl,
        merge_base_ttl=settings.merge_base_ttl,
        worktree_dir=settings.worktree_dir,
        symlink_candidates=settings.symlink_candidates,
    )

    server = FastMCP(
        name="Parallax MCP",
        version=__version__,
        instructions=(
            "Parallax runs parallel coding tasks against one repository, each in its own "
            "git worktree and branch. Use the tools to create tasks, inspect their changes "
            "and conflicts, and merge, rebase or push them back."
        ),
    )

    handles = register_tools(
        server,
        engine=engine,
        settings=settings,
        projects=project_loader,
        journal=journal,
    )

    def status_snapshot(request_id: Any = None) -> dict[str, Any]:
        return build_status_payload(
            settings=settings,
            engine=engine,
            projects=project_loader,
            git_metadata=git_metadata,
            journal=journal,
            journal_metadata=journal_metadata,
            worktree_state=handles.worktree_state,
            request_id=request_id,
        )

    @server.resource(
        "resource://parallax/status",
        name="parallax_status",
        title="Parallax MCP Status",
        description="Provides the current runtime status for the Parallax MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        return json.dumps(status_snapshot(getattr(context, "request_id", None)))

    setattr(server, "engine", engine)
    setattr(server, "project_loader", project_loader)
    setattr(server, "git_runner", runner)
    setattr(server, "git_metadata", git_metadata)
    setattr(server, "journal", journal)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_snapshot", status_snapshot)
    return server


def main() -> None:
    """Entry point for running the Parallax MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching Parallax MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "git_version": getattr(server, "git_metadata", {}).get("version"),
            "journal_available": getattr(server, "journal_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
