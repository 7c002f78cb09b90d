"""Exception taxonomy for the worktree engine."""

from __future__ import annotations

from ..git import GitCommandError


class WorktreeEngineError(RuntimeError):
    """Base class for engine errors surfaced to callers."""


class MainBranchNotFoundError(WorktreeEngineError):
    """Raised when neither the remote default, ``main`` nor ``master`` resolves."""

    def __init__(self, repo_root: str) -> None:
        self.repo_root = repo_root
        super().__init__("Could not find main or master branch")


class DirtyWorkingTreeError(WorktreeEngineError):
    """Raised before a merge when the target checkout has uncommitted changes."""

    def __init__(self, project_root: str) -> None:
        self.project_root = project_root
        super().__init__(
            "Project root has uncommitted changes. Please commit or stash them before merging."
        )


class GitOperationError(WorktreeEngineError):
    """A git step failed; carries the step name and git's diagnostic text."""

    def __init__(self, step: str, cause: GitCommandError | str) -> None:
        self.step = step
        self.detail = cause.detail if isinstance(cause, GitCommandError) else str(cause)
        super().__init__(f"{step} failed: {self.detail}")


class TransactionError(GitOperationError):
    """A merge/commit/rebase step failed and the repository was rolled back."""


__all__ = [
    "DirtyWorkingTreeError",
    "GitOperationError",
    "MainBranchNotFoundError",
    "TransactionError",
    "WorktreeEngineError",
]
