"""Dry-run conflict analysis between a task branch and main."""

from __future__ import annotations

import logging

from ..git import GitRunner, GitRunnerError, GitTimeoutError
from .models import MergeStatus
from .topology import TopologyDetector

logger = logging.getLogger(__name__)

CONFLICT_MARKER = "CONFLICT"
MERGE_CONFLICT_IN = "Merge conflict in"
REASON_MARKERS = (" deleted in ", " modified in ", " added in ", " renamed in ", " changed in ")


def parse_conflict_path(line: str) -> str | None:
    """Extract the conflicting path from one line of merge diagnostics.

    Understands ``CONFLICT (content): Merge conflict in <path>`` and
    ``CONFLICT (<reason>): <path> deleted in ...`` style lines.
    """

    trimmed = line.strip()
    if CONFLICT_MARKER not in trimmed:
        return None

    index = trimmed.find(MERGE_CONFLICT_IN)
    if index != -1:
        path = trimmed[index + len(MERGE_CONFLICT_IN):].strip()
        return path or None

    if not trimmed.startswith(CONFLICT_MARKER):
        return None

    paren_close = trimmed.find("): ")
    if paren_close == -1:
        return None
    after_paren = trimmed[paren_close + 3:]

    positions = [after_paren.find(marker) for marker in REASON_MARKERS]
    hits = [position for position in positions if position != -1]
    candidate = (after_paren[: min(hits)] if hits else after_paren).strip()
    return candidate or None


def parse_conflicts(output: str) -> list[str]:
    """All conflicting paths named in ``output``, in order, without duplicates."""

    paths: list[str] = []
    for line in output.splitlines():
        path = parse_conflict_path(line)
        if path and path not in paths:
            paths.append(path)
    return paths


class ConflictAnalyzer:
    """Reports how far main has moved and what a merge would conflict on."""

    def __init__(self, runner: GitRunner, topology: TopologyDetector) -> None:
        self._runner = runner
        self._topology = topology

    async def main_ahead_count(self, worktree_path: str, main_branch: str) -> int:
        try:
            result = await self._runner.run("rev-list", "--count", f"HEAD..{main_branch}", cwd=worktree_path)
        except (GitRunnerError, OSError):
            return 0
        if not result.ok:
            return 0
        try:
            return max(int(result.stdout.strip()), 0)
        except ValueError:
            return 0

    async def check_merge_status(self, worktree_path: str) -> MergeStatus:
        main_branch = await self._topology.detect_main_branch(worktree_path)

        ahead = await self.main_ahead_count(worktree_path, main_branch)
        if ahead == 0:
            return MergeStatus(main_ahead_count=0, conflicting_files=[])

        # --write-tree leaves the index, working tree and refs untouched.
        try:
            result = await self._runner.run(
                "merge-tree", "--write-tree", "HEAD", main_branch, cwd=worktree_path
            )
        except GitTimeoutError as exc:
            logger.warning(
                "Trial merge timed out", extra={"worktree_path": worktree_path, "error": exc.detail}
            )
            return MergeStatus(main_ahead_count=ahead, conflicting_files=[])
        if result.ok:
            return MergeStatus(main_ahead_count=ahead, conflicting_files=[])

        conflicts = parse_conflicts(f"{result.stdout}\n{result.stderr}")
        logger.debug(
            "Trial merge reported conflicts",
            extra={"worktree_path": worktree_path, "conflicts": len(conflicts)},
        )
        return MergeStatus(main_ahead_count=ahead, conflicting_files=conflicts)


__all__ = ["ConflictAnalyzer", "parse_conflict_path", "parse_conflicts"]
