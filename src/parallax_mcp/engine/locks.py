"""Per-repository serialization of mutating git transactions."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Awaitable, Callable, TypeVar

from ..git import GitRunner, GitRunnerError
from .cache import normalize_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RepoLockManager:
    """Serializes merge/rebase work per physical repository.

    Every worktree of a repository shares one metadata directory; its resolved
    real path is the lock key, so two worktree paths of the same repository
    queue behind the same lock. ``asyncio.Lock`` wakes waiters in arrival
    order. Entries are never removed.
    """

    def __init__(self, runner: GitRunner) -> None:
        self._runner = runner
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def keys(self) -> list[str]:
        return list(self._locks)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    async def resolve_key(self, repo_path: str) -> str:
        """Resolve ``repo_path`` to the real path of its shared git directory.

        Falls back to the normalized path when git cannot answer.
        """

        try:
            stdout = await self._runner.check("rev-parse", "--git-common-dir", cwd=repo_path)
        except (GitRunnerError, OSError) as exc:
            logger.debug(
                "Lock key fallback to repository path",
                extra={"repo_path": repo_path, "error": str(exc)},
            )
            return normalize_key(repo_path)

        common_dir = stdout.strip()
        if not common_dir:
            return normalize_key(repo_path)
        if not os.path.isabs(common_dir):
            common_dir = os.path.join(repo_path, common_dir)
        try:
            return os.path.realpath(common_dir, strict=True)
        except OSError:
            return os.path.normpath(common_dir)

    async def with_repo_lock(self, repo_path: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` with exclusive access to the repository behind ``repo_path``.

        A failure of ``fn`` propagates to this caller only; the next queued
        operation still runs.
        """

        key = await self.resolve_key(repo_path)
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            logger.debug("Waiting for repository lock", extra={"lock_key": key})
        async with lock:
            return await fn()


__all__ = ["RepoLockManager"]
