"""Creation and teardown of per-task git worktrees."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, Sequence

from ..git import GitCommandError, GitRunner, GitRunnerError
from .errors import GitOperationError
from .models import WorktreeInfo

logger = logging.getLogger(__name__)

DEFAULT_WORKTREE_DIR = ".worktrees"

# Directories agents and editors keep per checkout; usually git-ignored.
SYMLINK_CANDIDATES: tuple[str, ...] = (
    ".claude",
    ".cursor",
    ".aider",
    ".copilot",
    ".codeium",
    ".continue",
    ".windsurf",
    "node_modules",
)


class WorktreeLifecycle:
    """Creates ``<repo>/.worktrees/<branch>`` checkouts and removes them again."""

    def __init__(
        self,
        runner: GitRunner,
        *,
        worktree_dir: str = DEFAULT_WORKTREE_DIR,
        symlink_candidates: Sequence[str] = SYMLINK_CANDIDATES,
    ) -> None:
        self._runner = runner
        self._worktree_dir = worktree_dir
        self._symlink_candidates = tuple(symlink_candidates)

    def worktree_path(self, repo_root: str, branch_name: str) -> str:
        return os.path.join(repo_root, self._worktree_dir, branch_name)

    async def get_git_ignored_dirs(self, project_root: str) -> list[str]:
        """Candidate directories that exist in ``project_root`` and are git-ignored."""

        results: list[str] = []
        for name in self._symlink_candidates:
            if not os.path.isdir(os.path.join(project_root, name)):
                continue
            try:
                result = await self._runner.run("check-ignore", "-q", name, cwd=project_root)
            except (GitRunnerError, OSError) as exc:
                logger.warning(
                    "Ignored-directory check failed",
                    extra={"project_root": project_root, "candidate": name, "error": str(exc)},
                )
                continue
            if result.ok:
                results.append(name)
        return results

    async def create_worktree(
        self,
        repo_root: str,
        branch_name: str,
        symlink_dirs: Iterable[str] = (),
    ) -> WorktreeInfo:
        path = self.worktree_path(repo_root, branch_name)

        try:
            await self._runner.check("worktree", "add", "-b", branch_name, path, cwd=repo_root)
        except GitCommandError as exc:
            logger.debug(
                "New-branch worktree failed, attaching existing branch",
                extra={"branch": branch_name, "error": exc.detail},
            )
            try:
                await self._runner.check("worktree", "add", path, branch_name, cwd=repo_root)
            except GitCommandError as exc:
                raise GitOperationError("Worktree creation", exc) from exc

        for dir_name in symlink_dirs:
            self._link_shared_dir(repo_root, path, dir_name)

        logger.info("Worktree created", extra={"branch": branch_name, "worktree_path": path})
        return WorktreeInfo(path=path, branch=branch_name)

    @staticmethod
    def _link_shared_dir(repo_root: str, worktree_path: str, dir_name: str) -> None:
        source = Path(repo_root) / dir_name
        target = Path(worktree_path) / dir_name
        try:
            if source.is_dir() and not os.path.lexists(target):
                target.symlink_to(source, target_is_directory=True)
        except OSError as exc:
            logger.warning(
                "Skipping shared directory symlink",
                extra={"source": str(source), "target": str(target), "error": str(exc)},
            )

    async def remove_worktree(self, repo_root: str, branch_name: str, delete_branch: bool) -> None:
        if not os.path.exists(repo_root):
            return

        path = self.worktree_path(repo_root, branch_name)
        if os.path.exists(path):
            try:
                await self._runner.check("worktree", "remove", "--force", path, cwd=repo_root)
            except GitCommandError as exc:
                logger.warning(
                    "git worktree remove failed, deleting directory",
                    extra={"worktree_path": path, "error": exc.detail},
                )
                shutil.rmtree(path, ignore_errors=True)

        try:
            await self._runner.run("worktree", "prune", cwd=repo_root)
        except (GitRunnerError, OSError) as exc:
            logger.warning("git worktree prune failed", extra={"repo_root": repo_root, "error": str(exc)})

        if delete_branch:
            try:
                await self._runner.check("branch", "-D", "--", branch_name, cwd=repo_root)
            except GitCommandError as exc:
                if "not found" not in exc.detail.lower():
                    raise GitOperationError("Branch deletion", exc) from exc
                logger.debug("Branch already deleted", extra={"branch": branch_name})

        logger.info("Worktree removed", extra={"branch": branch_name, "worktree_path": path})


__all__ = ["DEFAULT_WORKTREE_DIR", "SYMLINK_CANDIDATES", "WorktreeLifecycle"]
