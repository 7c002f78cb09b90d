"""Merge, rebase and push transactions with rollback on failure."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..git import GitCommandError, GitRunner, GitRunnerError
from .cache import TTLCache
from .errors import DirtyWorkingTreeError, GitOperationError, TransactionError
from .locks import RepoLockManager
from .models import LineDelta, MergeResult
from .topology import TopologyDetector
from .worktrees import WorktreeLifecycle

logger = logging.getLogger(__name__)

DEFAULT_SQUASH_MESSAGE = "Squash merge"


def sum_numstat(output: str) -> LineDelta:
    """Total added/removed lines in ``git diff --numstat`` output; binary rows count 0."""

    delta = LineDelta()
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        try:
            delta.lines_added += int(parts[0])
        except ValueError:
            pass
        try:
            delta.lines_removed += int(parts[1])
        except ValueError:
            pass
    return delta


async def _shielded(coro: Awaitable[None]) -> None:
    """Await ``coro`` to completion even if the caller is cancelled again meanwhile.

    The repository lock stays held until the rollback has finished.
    """

    task = asyncio.ensure_future(coro)
    while not task.done():
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            continue
    task.result()


class TransactionRunner:
    """Runs repository-mutating sequences one at a time per physical repository.

    Every failure path restores a clean state (abort or hard reset, then the
    original branch) before raising ``TransactionError``.
    """

    def __init__(
        self,
        runner: GitRunner,
        *,
        topology: TopologyDetector,
        locks: RepoLockManager,
        merge_base_cache: TTLCache[str],
        worktrees: WorktreeLifecycle,
    ) -> None:
        self._runner = runner
        self._topology = topology
        self._locks = locks
        self._merge_base_cache = merge_base_cache
        self._worktrees = worktrees

    async def compute_branch_diff_stats(
        self, project_root: str, main_branch: str, branch_name: str
    ) -> LineDelta:
        try:
            stdout = await self._runner.check(
                "diff", "--numstat", f"{main_branch}..{branch_name}", cwd=project_root
            )
        except GitCommandError as exc:
            raise GitOperationError("Diff stats", exc) from exc
        return sum_numstat(stdout)

    async def merge_task(
        self,
        project_root: str,
        branch_name: str,
        *,
        squash: bool = False,
        message: str | None = None,
        cleanup: bool = False,
    ) -> MergeResult:
        return await self._locks.with_repo_lock(
            project_root,
            lambda: self._merge_locked(project_root, branch_name, squash, message, cleanup),
        )

    async def _merge_locked(
        self,
        project_root: str,
        branch_name: str,
        squash: bool,
        message: str | None,
        cleanup: bool,
    ) -> MergeResult:
        main_branch = await self._topology.detect_main_branch(project_root)
        delta = await self.compute_branch_diff_stats(project_root, main_branch, branch_name)

        status = await self._runner.check("status", "--porcelain", cwd=project_root)
        if status.strip():
            raise DirtyWorkingTreeError(project_root)

        try:
            original_branch: str | None = await self._topology.get_current_branch_name(project_root)
        except GitRunnerError:
            original_branch = None

        async def restore() -> None:
            await self._restore_branch(project_root, original_branch)

        await self._step("Checkout", ("checkout", main_branch), project_root, rollback=restore)

        if squash:
            await self._step(
                "Squash merge",
                ("merge", "--squash", "--", branch_name),
                project_root,
                rollback=lambda: self._hard_reset(project_root, restore),
            )
            await self._step(
                "Commit",
                ("commit", "-m", message or DEFAULT_SQUASH_MESSAGE),
                project_root,
                rollback=lambda: self._hard_reset(project_root, restore),
            )
        else:
            await self._step(
                "Merge",
                ("merge", "--", branch_name),
                project_root,
                rollback=lambda: self._abort("merge", project_root, restore),
            )

        self._merge_base_cache.invalidate_all()
        logger.info(
            "Merged task branch",
            extra={
                "branch": branch_name,
                "main_branch": main_branch,
                "squash": squash,
                "lines_added": delta.lines_added,
                "lines_removed": delta.lines_removed,
            },
        )

        if cleanup:
            await self._worktrees.remove_worktree(project_root, branch_name, True)

        return MergeResult(
            main_branch=main_branch,
            lines_added=delta.lines_added,
            lines_removed=delta.lines_removed,
        )

    async def rebase_task(self, worktree_path: str) -> None:
        await self._locks.with_repo_lock(worktree_path, lambda: self._rebase_locked(worktree_path))

    async def _rebase_locked(self, worktree_path: str) -> None:
        main_branch = await self._topology.detect_main_branch(worktree_path)
        # A failed rebase stays on the same branch; abort is the whole rollback.
        await self._step(
            "Rebase",
            ("rebase", main_branch),
            worktree_path,
            rollback=lambda: self._abort("rebase", worktree_path, None),
        )
        self._merge_base_cache.invalidate_all()
        logger.info("Rebased task branch", extra={"worktree_path": worktree_path, "main_branch": main_branch})

    async def push_task(self, project_root: str, branch_name: str) -> None:
        try:
            await self._runner.check("push", "-u", "origin", "--", branch_name, cwd=project_root)
        except GitCommandError as exc:
            raise GitOperationError("Push", exc) from exc
        logger.info("Pushed task branch", extra={"branch": branch_name})

    async def _step(
        self,
        step: str,
        args: tuple[str, ...],
        cwd: str,
        *,
        rollback: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            await self._runner.check(*args, cwd=cwd)
        except GitCommandError as exc:
            logger.warning("Transaction step failed, rolling back", extra={"step": step, "cwd": cwd})
            await rollback()
            raise TransactionError(step, exc) from exc
        except asyncio.CancelledError:
            logger.warning("Transaction step cancelled, rolling back", extra={"step": step, "cwd": cwd})
            await _shielded(rollback())
            raise

    async def _hard_reset(self, cwd: str, then: Callable[[], Awaitable[None]]) -> None:
        await self._best_effort("reset", "--hard", "HEAD", cwd=cwd)
        await then()

    async def _abort(
        self, operation: str, cwd: str, then: Callable[[], Awaitable[None]] | None
    ) -> None:
        await self._best_effort(operation, "--abort", cwd=cwd)
        if then is not None:
            await then()

    async def _restore_branch(self, cwd: str, branch: str | None) -> None:
        if branch:
            await self._best_effort("checkout", branch, cwd=cwd)

    async def _best_effort(self, *args: str, cwd: str) -> None:
        try:
            result = await self._runner.run(*args, cwd=cwd)
        except (GitRunnerError, OSError) as exc:
            logger.warning("Rollback command failed", extra={"git_args": list(args), "error": str(exc)})
            return
        if not result.ok:
            logger.warning(
                "Rollback command failed",
                extra={"git_args": list(args), "stderr": result.stderr.strip()},
            )


__all__ = ["DEFAULT_SQUASH_MESSAGE", "TransactionRunner", "sum_numstat"]
