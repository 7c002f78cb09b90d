"""Main-branch and merge-base detection."""

from __future__ import annotations

import logging

from ..git import GitRunner, GitRunnerError
from .cache import TTLCache
from .errors import MainBranchNotFoundError

logger = logging.getLogger(__name__)

REMOTE_HEAD_REF = "refs/remotes/origin/HEAD"
REMOTE_PREFIX = "refs/remotes/origin/"
FALLBACK_BRANCHES = ("main", "master")


class TopologyDetector:
    """Answers "what is main" and "where did this branch fork from main"."""

    def __init__(
        self,
        runner: GitRunner,
        *,
        main_branch_cache: TTLCache[str],
        merge_base_cache: TTLCache[str],
    ) -> None:
        self._runner = runner
        self._main_branch_cache = main_branch_cache
        self._merge_base_cache = merge_base_cache

    async def detect_main_branch(self, repo_root: str) -> str:
        return await self._main_branch_cache.get_cached(
            repo_root, lambda: self._detect_main_branch_uncached(repo_root)
        )

    async def _detect_main_branch_uncached(self, repo_root: str) -> str:
        result = await self._try_run("symbolic-ref", REMOTE_HEAD_REF, cwd=repo_root)
        if result is not None:
            refname = result.strip()
            if refname.startswith(REMOTE_PREFIX) and len(refname) > len(REMOTE_PREFIX):
                return refname[len(REMOTE_PREFIX):]

        for candidate in FALLBACK_BRANCHES:
            if await self._try_run("rev-parse", "--verify", "--quiet", candidate, cwd=repo_root) is not None:
                return candidate

        raise MainBranchNotFoundError(repo_root)

    async def detect_merge_base(self, repo_root: str) -> str:
        return await self._merge_base_cache.get_cached(
            repo_root, lambda: self._detect_merge_base_uncached(repo_root)
        )

    async def _detect_merge_base_uncached(self, repo_root: str) -> str:
        main_branch = await self.detect_main_branch(repo_root)
        stdout = await self._try_run("merge-base", main_branch, "HEAD", cwd=repo_root)
        commit = (stdout or "").strip()
        if not commit:
            logger.debug(
                "Merge-base unavailable, comparing against main branch",
                extra={"repo_root": repo_root, "main_branch": main_branch},
            )
            return main_branch
        return commit

    async def get_current_branch_name(self, repo_root: str) -> str:
        """Uncached: the checked-out branch must never be stale mid-transaction."""

        stdout = await self._runner.check("symbolic-ref", "--short", "HEAD", cwd=repo_root)
        return stdout.strip()

    async def _try_run(self, *args: str, cwd: str) -> str | None:
        try:
            result = await self._runner.run(*args, cwd=cwd)
        except (GitRunnerError, OSError):
            return None
        return result.stdout if result.ok else None


__all__ = ["TopologyDetector", "FALLBACK_BRANCHES"]
