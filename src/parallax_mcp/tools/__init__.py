"""Tool registration for Parallax MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastmcp import Context, FastMCP

from ..config import ParallaxSettings
from ..engine import WorktreeEngine, WorktreeEngineError
from ..git import GitRunnerError
from ..projects import ProjectLoader, ProjectProfile
from ..storage import ChromaJournal
from ..tasks import DEFAULT_BRANCH_PREFIX, build_branch_name

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    get_git_ignored_dirs: Any
    get_main_branch: Any
    get_current_branch: Any
    get_changed_files: Any
    get_file_diff: Any
    get_worktree_status: Any
    check_merge_status: Any
    merge_task: Any
    get_branch_log: Any
    push_task: Any
    rebase_task: Any
    create_worktree: Any
    remove_worktree: Any
    create_task: Any
    delete_task: Any
    list_projects: Any
    worktree_state: dict[str, dict[str, Any]]


def register_tools(
    server: FastMCP,
    *,
    engine: WorktreeEngine,
    settings: ParallaxSettings,
    projects: ProjectLoader,
    journal: ChromaJournal | None,
) -> ToolHandles:
    """Register Parallax's MCP tools on the server."""

    worktree_map: dict[str, dict[str, Any]] = {}

    def _track_worktree(repo_root: str, branch: str, path: str | None, status: str) -> dict[str, Any]:
        snapshot = {
            "repo_root": repo_root,
            "branch": branch,
            "path": path,
            "status": status,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        worktree_map[f"{repo_root}::{branch}"] = snapshot
        if journal is not None:
            journal.record_worktree(repo_root=repo_root, branch=branch, path=path, status=status)
        return snapshot

    def _record_transaction(
        operation: str,
        repo_path: str,
        outcome: str,
        *,
        branch: str | None = None,
        detail: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if journal is None:
            return
        journal.record_transaction(
            operation=operation,
            repo_path=repo_path,
            outcome=outcome,
            branch=branch,
            detail=detail,
            metadata=metadata,
        )

    def _failed(
        context: Context | None,
        operation: str,
        repo_path: str,
        exc: Exception,
        branch: str | None = None,
    ) -> None:
        _record_transaction(operation, repo_path, "failed", branch=branch, detail=str(exc))
        _emit_log(
            context,
            "warning",
            "Repository operation failed",
            extra={"operation": operation, "repo_path": repo_path, "branch": branch, "error": str(exc)},
        )

    def _resolve_project(project_id: str | None, repo_root: str | None) -> tuple[str, ProjectProfile | None]:
        if project_id:
            project = projects.get(project_id)
            return str(project.path), project
        if repo_root:
            return repo_root, None
        raise ValueError("Either project_id or repo_root is required")

    async def _get_git_ignored_dirs(project_root: str) -> list[str]:
        """List candidate agent/editor directories that are git-ignored in the project."""

        return await engine.get_git_ignored_dirs(project_root)

    async def _get_main_branch(project_root: str) -> str:
        return await engine.get_main_branch(project_root)

    async def _get_current_branch(project_root: str) -> str:
        return await engine.get_current_branch(project_root)

    async def _get_changed_files(worktree_path: str) -> list[dict[str, Any]]:
        files = await engine.get_changed_files(worktree_path)
        return [item.to_dict() for item in files]

    async def _get_file_diff(worktree_path: str, file_path: str) -> str:
        return await engine.get_file_diff(worktree_path, file_path)

    async def _get_worktree_status(worktree_path: str) -> dict[str, Any]:
        status = await engine.get_worktree_status(worktree_path)
        return status.to_dict()

    async def _check_merge_status(worktree_path: str) -> dict[str, Any]:
        status = await engine.check_merge_status(worktree_path)
        return status.to_dict()

    async def _get_branch_log(worktree_path: str) -> str:
        return await engine.get_branch_log(worktree_path)

    tool_ignored = server.tool(
        name="get_git_ignored_dirs",
        description="List agent and editor directories present in the project that git ignores.",
    )(_get_git_ignored_dirs)
    tool_main = server.tool(
        name="get_main_branch",
        description="Detect the repository's main branch (origin HEAD, then main, then master).",
    )(_get_main_branch)
    tool_current = server.tool(
        name="get_current_branch",
        description="Return the short name of the branch checked out in the given directory.",
    )(_get_current_branch)
    tool_changed = server.tool(
        name="get_changed_files",
        description=(
            "List files changed in a task worktree, committed changes since the merge base "
            "first, each with line counts, status letter and committed flag."
        ),
    )(_get_changed_files)
    tool_diff = server.tool(
        name="get_file_diff",
        description="Unified diff of one file against the merge base; untracked files get a synthesized diff.",
    )(_get_file_diff)
    tool_status = server.tool(
        name="get_worktree_status",
        description="Report whether a worktree has commits ahead of main and uncommitted changes.",
    )(_get_worktree_status)
    tool_merge_status = server.tool(
        name="check_merge_status",
        description="Count commits main is ahead by and list files a merge would conflict on.",
    )(_check_merge_status)
    tool_log = server.tool(
        name="get_branch_log",
        description="Commit subjects on the task branch since main, one '- subject' per line.",
    )(_get_branch_log)

    async def _merge_task(
        project_root: str,
        branch_name: str,
        squash: bool = False,
        message: str | None = None,
        cleanup: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Merge a task branch into main, rolling back on failure."""

        try:
            result = await engine.merge_task(
                project_root, branch_name, squash=squash, message=message, cleanup=cleanup
            )
        except (WorktreeEngineError, GitRunnerError) as exc:
            _failed(context, "merge", project_root, exc, branch_name)
            raise

        payload = result.to_dict()
        _record_transaction(
            "merge",
            project_root,
            "succeeded",
            branch=branch_name,
            metadata={"squash": squash, "cleanup": cleanup, **payload},
        )
        if cleanup:
            _track_worktree(project_root, branch_name, None, "removed")
        _emit_log(
            context,
            "info",
            "Merged task",
            extra={"branch": branch_name, "main_branch": result.main_branch, "squash": squash},
        )
        return payload

    async def _push_task(
        project_root: str,
        branch_name: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        try:
            await engine.push_task(project_root, branch_name)
        except (WorktreeEngineError, GitRunnerError) as exc:
            _failed(context, "push", project_root, exc, branch_name)
            raise
        _record_transaction("push", project_root, "succeeded", branch=branch_name)
        _emit_log(context, "info", "Pushed task", extra={"branch": branch_name})
        return {"branch": branch_name, "pushed": True}

    async def _rebase_task(worktree_path: str, context: Context | None = None) -> dict[str, Any]:
        try:
            await engine.rebase_task(worktree_path)
        except (WorktreeEngineError, GitRunnerError) as exc:
            _failed(context, "rebase", worktree_path, exc)
            raise
        _record_transaction("rebase", worktree_path, "succeeded")
        _emit_log(context, "info", "Rebased task", extra={"worktree_path": worktree_path})
        return {"worktree_path": worktree_path, "rebased": True}

    tool_merge = server.tool(
        name="merge_task",
        description=(
            "Merge a task branch into main from the project root. Requires a clean root; "
            "any failure restores the previous branch. Returns main branch and line totals."
        ),
        annotations={
            "title": "Merge task branch",
            "destructiveHint": True,
            "idempotentHint": False,
        },
    )(_merge_task)
    tool_push = server.tool(
        name="push_task",
        description="Push a task branch to origin and set upstream tracking.",
    )(_push_task)
    tool_rebase = server.tool(
        name="rebase_task",
        description="Rebase the worktree's branch onto main; aborts cleanly on conflict.",
    )(_rebase_task)

    async def _create_worktree(
        repo_root: str,
        branch_name: str,
        symlink_dirs: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        info = await engine.create_worktree(repo_root, branch_name, symlink_dirs or [])
        _track_worktree(repo_root, info.branch, info.path, "active")
        _emit_log(context, "info", "Created worktree", extra={"branch": info.branch, "worktree_path": info.path})
        return info.to_dict()

    async def _remove_worktree(
        repo_root: str,
        branch_name: str,
        delete_branch: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        await engine.remove_worktree(repo_root, branch_name, delete_branch)
        _track_worktree(repo_root, branch_name, None, "removed")
        _emit_log(
            context,
            "info",
            "Removed worktree",
            extra={"branch": branch_name, "delete_branch": delete_branch},
        )
        return {"branch": branch_name, "removed": True, "branch_deleted": delete_branch}

    tool_create_worktree = server.tool(
        name="create_worktree",
        description="Create <repo>/.worktrees/<branch> on a new or existing branch, linking shared directories.",
    )(_create_worktree)
    tool_remove_worktree = server.tool(
        name="remove_worktree",
        description="Remove a task worktree and optionally delete its branch; missing pieces are ignored.",
    )(_remove_worktree)

    async def _create_task(
        name: str,
        project_id: str | None = None,
        repo_root: str | None = None,
        branch_prefix: str | None = None,
        symlink_dirs: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a task branch and worktree named after ``name``."""

        root, project = _resolve_project(project_id, repo_root)
        prefix = branch_prefix or (project.branch_prefix if project else DEFAULT_BRANCH_PREFIX)
        branch_name = build_branch_name(prefix, name)

        shared = symlink_dirs if symlink_dirs is not None else (project.symlink_dirs if project else None)
        if shared is None:
            shared = await engine.get_git_ignored_dirs(root)

        info = await engine.create_worktree(root, branch_name, shared)
        _track_worktree(root, info.branch, info.path, "active")
        _emit_log(
            context,
            "info",
            "Created task",
            extra={"task_name": name, "branch": info.branch, "worktree_path": info.path},
        )
        return {
            "name": name,
            "project_id": project.id if project else None,
            "repo_root": root,
            "branch": info.branch,
            "path": info.path,
            "symlink_dirs": list(shared),
        }

    async def _delete_task(
        branch_name: str,
        project_id: str | None = None,
        repo_root: str | None = None,
        delete_branch: bool | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Remove a task's worktree, deleting its branch per project policy."""

        root, project = _resolve_project(project_id, repo_root)
        if delete_branch is None:
            delete_branch = project.delete_branch_on_close if project else True

        await engine.remove_worktree(root, branch_name, delete_branch)
        _track_worktree(root, branch_name, None, "removed")
        _emit_log(
            context,
            "info",
            "Deleted task",
            extra={"branch": branch_name, "delete_branch": delete_branch},
        )
        return {"repo_root": root, "branch": branch_name, "branch_deleted": delete_branch}

    def _list_projects(context: Context | None = None) -> list[dict[str, Any]]:
        """List configured project profiles."""

        catalog = [
            {
                "id": project.id,
                "name": project.name,
                "path": str(project.path),
                "branch_prefix": project.branch_prefix,
                "delete_branch_on_close": project.delete_branch_on_close,
                "symlink_dirs": project.symlink_dirs,
            }
            for project in projects.load_all().values()
        ]
        _emit_log(context, "debug", "Listing projects", extra={"count": len(catalog)})
        return catalog

    tool_create_task = server.tool(
        name="create_task",
        description=(
            "Start a task: derive '<prefix>/<slug>' from the task name, create its worktree, "
            "and link shared directories using the project's defaults."
        ),
    )(_create_task)
    tool_delete_task = server.tool(
        name="delete_task",
        description="Close a task: remove its worktree and delete the branch unless the project keeps it.",
    )(_delete_task)
    tool_list_projects = server.tool(
        name="list_projects",
        description=f"List project profiles found in {', '.join(str(p) for p in settings.project_paths)}.",
    )(_list_projects)

    return ToolHandles(
        get_git_ignored_dirs=tool_ignored,
        get_main_branch=tool_main,
        get_current_branch=tool_current,
        get_changed_files=tool_changed,
        get_file_diff=tool_diff,
        get_worktree_status=tool_status,
        check_merge_status=tool_merge_status,
        merge_task=tool_merge,
        get_branch_log=tool_log,
        push_task=tool_push,
        rebase_task=tool_rebase,
        create_worktree=tool_create_worktree,
        remove_worktree=tool_remove_worktree,
        create_task=tool_create_task,
        delete_task=tool_delete_task,
        list_projects=tool_list_projects,
        worktree_state=worktree_map,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["register_tools", "ToolHandles"]
