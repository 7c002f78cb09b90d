"""Worktree & merge orchestration engine."""

from __future__ import annotations

from typing import Callable, Iterable, Sequence

from ..git import GitRunner
from .cache import TTLCache, normalize_key
from .changes import ChangeSetComputer
from .conflicts import ConflictAnalyzer, parse_conflict_path, parse_conflicts
from .errors import (
    DirtyWorkingTreeError,
    GitOperationError,
    MainBranchNotFoundError,
    TransactionError,
    WorktreeEngineError,
)
from .locks import RepoLockManager
from .models import ChangedFile, MergeResult, MergeStatus, WorktreeInfo, WorktreeStatus
from .topology import TopologyDetector
from .transactions import DEFAULT_SQUASH_MESSAGE, TransactionRunner
from .worktrees import DEFAULT_WORKTREE_DIR, SYMLINK_CANDIDATES, WorktreeLifecycle

MAIN_BRANCH_TTL = 60.0
MERGE_BASE_TTL = 30.0


class WorktreeEngine:
    """Process-scoped facade wiring one runner, two caches and one lock table.

    Every operation is addressed by path and name; the only state kept between
    calls is the caches and the lock table, all rebuilt from nothing on restart.
    """

    def __init__(
        self,
        runner: GitRunner,
        *,
        main_branch_ttl: float = MAIN_BRANCH_TTL,
        merge_base_ttl: float = MERGE_BASE_TTL,
        worktree_dir: str = DEFAULT_WORKTREE_DIR,
        symlink_candidates: Sequence[str] = SYMLINK_CANDIDATES,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.runner = runner
        self.main_branch_cache: TTLCache[str] = TTLCache("main_branch", main_branch_ttl, clock=clock)
        self.merge_base_cache: TTLCache[str] = TTLCache("merge_base", merge_base_ttl, clock=clock)
        self.locks = RepoLockManager(runner)
        self.topology = TopologyDetector(
            runner,
            main_branch_cache=self.main_branch_cache,
            merge_base_cache=self.merge_base_cache,
        )
        self.changes = ChangeSetComputer(runner, self.topology)
        self.conflicts = ConflictAnalyzer(runner, self.topology)
        self.worktrees = WorktreeLifecycle(
            runner,
            worktree_dir=worktree_dir,
            symlink_candidates=symlink_candidates,
        )
        self.transactions = TransactionRunner(
            runner,
            topology=self.topology,
            locks=self.locks,
            merge_base_cache=self.merge_base_cache,
            worktrees=self.worktrees,
        )

    async def get_git_ignored_dirs(self, project_root: str) -> list[str]:
        return await self.worktrees.get_git_ignored_dirs(project_root)

    async def get_main_branch(self, project_root: str) -> str:
        return await self.topology.detect_main_branch(project_root)

    async def get_current_branch(self, project_root: str) -> str:
        return await self.topology.get_current_branch_name(project_root)

    async def get_changed_files(self, worktree_path: str) -> list[ChangedFile]:
        return await self.changes.get_changed_files(worktree_path)

    async def get_file_diff(self, worktree_path: str, file_path: str) -> str:
        return await self.changes.get_file_diff(worktree_path, file_path)

    async def get_worktree_status(self, worktree_path: str) -> WorktreeStatus:
        return await self.changes.get_worktree_status(worktree_path)

    async def check_merge_status(self, worktree_path: str) -> MergeStatus:
        return await self.conflicts.check_merge_status(worktree_path)

    async def merge_task(
        self,
        project_root: str,
        branch_name: str,
        squash: bool = False,
        message: str | None = None,
        cleanup: bool = False,
    ) -> MergeResult:
        return await self.transactions.merge_task(
            project_root, branch_name, squash=squash, message=message, cleanup=cleanup
        )

    async def get_branch_log(self, worktree_path: str) -> str:
        return await self.changes.get_branch_log(worktree_path)

    async def push_task(self, project_root: str, branch_name: str) -> None:
        await self.transactions.push_task(project_root, branch_name)

    async def rebase_task(self, worktree_path: str) -> None:
        await self.transactions.rebase_task(worktree_path)

    async def create_worktree(
        self,
        repo_root: str,
        branch_name: str,
        symlink_dirs: Iterable[str] = (),
    ) -> WorktreeInfo:
        return await self.worktrees.create_worktree(repo_root, branch_name, symlink_dirs)

    async def remove_worktree(self, repo_root: str, branch_name: str, delete_branch: bool) -> None:
        await self.worktrees.remove_worktree(repo_root, branch_name, delete_branch)


__all__ = [
    "ChangedFile",
    "DEFAULT_SQUASH_MESSAGE",
    "DirtyWorkingTreeError",
    "GitOperationError",
    "MAIN_BRANCH_TTL",
    "MERGE_BASE_TTL",
    "MainBranchNotFoundError",
    "MergeResult",
    "MergeStatus",
    "SYMLINK_CANDIDATES",
    "TTLCache",
    "TransactionError",
    "WorktreeEngine",
    "WorktreeEngineError",
    "WorktreeInfo",
    "WorktreeStatus",
    "normalize_key",
    "parse_conflict_path",
    "parse_conflicts",
]
