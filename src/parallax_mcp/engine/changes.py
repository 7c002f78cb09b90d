"""Change-set computation: what a task branch changed relative to main."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ..git import GitRunner, GitRunnerError
from .errors import WorktreeEngineError
from .models import ChangedFile, WorktreeStatus
from .topology import TopologyDetector

logger = logging.getLogger(__name__)

UNTRACKED_STATUS = "?"
DEFAULT_STATUS = "M"


def normalize_status_path(raw: str) -> str:
    """Reduce a path from git output to the destination path, unquoted.

    ``old -> new`` (status listing) and ``old => new`` / ``dir/{old => new}/f``
    (numstat) keep only the destination.
    """

    trimmed = raw.strip()
    if not trimmed:
        return ""
    if " -> " in trimmed:
        trimmed = trimmed.split(" -> ")[-1].strip()
    if " => " in trimmed:
        trimmed = _expand_numstat_rename(trimmed)
    if len(trimmed) >= 2 and trimmed.startswith('"') and trimmed.endswith('"'):
        trimmed = trimmed[1:-1]
    return trimmed


def _expand_numstat_rename(path: str) -> str:
    open_brace = path.find("{")
    close_brace = path.find("}", open_brace + 1)
    if open_brace != -1 and close_brace != -1:
        inner = path[open_brace + 1 : close_brace]
        destination = inner.split(" => ")[-1]
        joined = path[:open_brace] + destination + path[close_brace + 1 :]
        return joined.replace("//", "/")
    return path.split(" => ")[-1].strip()


@dataclass(slots=True)
class DiffSummary:
    """Parsed ``git diff --raw --numstat`` output keyed by normalized path."""

    statuses: dict[str, str] = field(default_factory=dict)
    numstats: dict[str, tuple[int, int]] = field(default_factory=dict)


def parse_raw_numstat(output: str) -> DiffSummary:
    """Split combined raw + numstat diff output into status and line-count maps."""

    summary = DiffSummary()
    for line in output.splitlines():
        if line.startswith(":"):
            parts = line.split("\t")
            if len(parts) < 2:
                continue
            meta = parts[0].split()
            letter = meta[-1][:1] if meta and meta[-1] else DEFAULT_STATUS
            path = normalize_status_path(parts[-1])
            if path:
                summary.statuses[path] = letter
            continue

        parts = line.split("\t")
        if len(parts) < 3:
            continue
        try:
            added = int(parts[0])
            removed = int(parts[1])
        except ValueError:
            # Binary files report "-" for both counts.
            if parts[0] != "-" or parts[1] != "-":
                continue
            added = removed = 0
        path = normalize_status_path(parts[-1])
        if path:
            summary.numstats[path] = (added, removed)
    return summary


def parse_porcelain_status(output: str, statuses: dict[str, str]) -> set[str]:
    """Collect every path in a ``git status --porcelain`` listing.

    Untracked entries not already labelled get the synthetic ``?`` status in
    ``statuses`` (mutated in place).
    """

    uncommitted: set[str] = set()
    for line in output.splitlines():
        if len(line) < 3:
            continue
        path = normalize_status_path(line[3:])
        if not path:
            continue
        if line.startswith("??"):
            statuses.setdefault(path, UNTRACKED_STATUS)
        uncommitted.add(path)
    return uncommitted


def split_lines(content: str) -> list[str]:
    """Lines of ``content`` without the empty element after a final newline."""

    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def count_file_lines(path: Path) -> int:
    try:
        if not path.is_file():
            return 0
        return len(split_lines(path.read_text(encoding="utf-8", errors="replace")))
    except OSError:
        return 0


def join_changed_files(
    summary: DiffSummary,
    uncommitted: set[str],
    worktree_path: Path,
) -> list[ChangedFile]:
    """Merge diff stats and working-tree status into one sorted list, one entry per path."""

    files: list[ChangedFile] = []
    for path, (added, removed) in summary.numstats.items():
        files.append(
            ChangedFile(
                path=path,
                lines_added=added,
                lines_removed=removed,
                status=summary.statuses.get(path, DEFAULT_STATUS),
                committed=path not in uncommitted,
            )
        )

    for path, status in summary.statuses.items():
        if path in summary.numstats:
            continue
        files.append(
            ChangedFile(
                path=path,
                lines_added=count_file_lines(worktree_path / path),
                lines_removed=0,
                status=status,
                committed=path not in uncommitted,
            )
        )

    files.sort(key=lambda item: (not item.committed, item.path))
    return files


def synthesize_untracked_diff(file_path: str, content: str) -> str:
    """Render a file absent from history as an all-additions unified diff."""

    lines = split_lines(content)
    header = f"--- /dev/null\n+++ b/{file_path}\n@@ -0,0 +1,{len(lines)} @@\n"
    return header + "".join(f"+{line}\n" for line in lines)


class ChangeSetComputer:
    """Read-only queries over a task worktree; degrade rather than raise."""

    def __init__(self, runner: GitRunner, topology: TopologyDetector) -> None:
        self._runner = runner
        self._topology = topology

    async def resolve_diff_base(self, worktree_path: str) -> str:
        try:
            return await self._topology.detect_merge_base(worktree_path)
        except (WorktreeEngineError, GitRunnerError, OSError) as exc:
            logger.debug("Diff base fallback to HEAD", extra={"worktree_path": worktree_path, "error": str(exc)})
            return "HEAD"

    async def get_changed_files(self, worktree_path: str) -> list[ChangedFile]:
        base = await self.resolve_diff_base(worktree_path)

        diff_output = await self._stdout_or_empty("diff", "--raw", "--numstat", base, cwd=worktree_path)
        summary = parse_raw_numstat(diff_output)

        status_output = await self._stdout_or_empty("status", "--porcelain", cwd=worktree_path)
        uncommitted = parse_porcelain_status(status_output, summary.statuses)

        return join_changed_files(summary, uncommitted, Path(worktree_path))

    async def get_file_diff(self, worktree_path: str, file_path: str) -> str:
        base = await self.resolve_diff_base(worktree_path)
        diff = await self._stdout_or_empty("diff", base, "--", file_path, cwd=worktree_path)
        if diff.strip():
            return diff

        full_path = Path(worktree_path) / file_path
        try:
            if not full_path.is_file():
                return ""
            content = full_path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.debug("Untracked file unreadable", extra={"path": str(full_path), "error": str(exc)})
            return ""
        return synthesize_untracked_diff(file_path, content)

    async def get_worktree_status(self, worktree_path: str) -> WorktreeStatus:
        status_output = await self._runner.check("status", "--porcelain", cwd=worktree_path)
        main_branch = await self._main_or_head(worktree_path)
        log_output = await self._stdout_or_empty(
            "log", f"{main_branch}..HEAD", "--oneline", cwd=worktree_path
        )
        return WorktreeStatus(
            has_committed_changes=bool(log_output.strip()),
            has_uncommitted_changes=bool(status_output.strip()),
        )

    async def get_branch_log(self, worktree_path: str) -> str:
        """One ``- <subject>`` line per commit the branch has on top of main."""

        main_branch = await self._main_or_head(worktree_path)
        return await self._stdout_or_empty(
            "log", f"{main_branch}..HEAD", "--pretty=format:- %s", cwd=worktree_path
        )

    async def _main_or_head(self, worktree_path: str) -> str:
        try:
            return await self._topology.detect_main_branch(worktree_path)
        except (WorktreeEngineError, GitRunnerError, OSError):
            return "HEAD"

    async def _stdout_or_empty(self, *args: str, cwd: str) -> str:
        try:
            result = await self._runner.run(*args, cwd=cwd)
        except (GitRunnerError, OSError) as exc:
            logger.debug("git query failed", extra={"git_args": list(args), "error": str(exc)})
            return ""
        if not result.ok:
            logger.debug(
                "git query failed",
                extra={"git_args": list(args), "returncode": result.returncode},
            )
            return ""
        return result.stdout


__all__ = [
    "ChangeSetComputer",
    "DiffSummary",
    "count_file_lines",
    "join_changed_files",
    "normalize_status_path",
    "parse_porcelain_status",
    "parse_raw_numstat",
    "split_lines",
    "synthesize_untracked_diff",
]
