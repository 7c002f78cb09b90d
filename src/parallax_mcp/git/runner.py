"""Async runner for the git CLI."""

from __future__ import annotations

import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from .utils import sanitize_environment


class GitRunnerError(RuntimeError):
    """Base class for git runner errors."""


class GitNotFoundError(GitRunnerError):
    """Raised when the git executable cannot be located."""


class GitCommandError(GitRunnerError):
    """Raised when a checked git invocation exits non-zero."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int | None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.command = tuple(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(self.detail)

    @property
    def detail(self) -> str:
        """Diagnostic text as git printed it, stderr first."""

        parts = [text.strip() for text in (self.stderr, self.stdout) if text and text.strip()]
        if parts:
            return "\n".join(parts)
        return f"git {' '.join(self.command)} exited with code {self.returncode}"


class GitTimeoutError(GitCommandError):
    """Raised when a git invocation exceeds its timeout."""

    def __init__(self, args: Sequence[str], timeout: float) -> None:
        self.timeout = timeout
        super().__init__(args, None, "", f"git {' '.join(args)} timed out after {timeout:g}s")


@dataclass(slots=True)
class GitExecutionResult:
    """Holds the outcome of a git CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    cwd: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def raise_for_status(self) -> GitExecutionResult:
        if not self.ok:
            raise GitCommandError(self.args, self.returncode, self.stdout, self.stderr)
        return self


class GitRunner:
    """Execute git commands asynchronously, one subprocess per call."""

    def __init__(self, executable: Path | None = None, *, timeout: float | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._timeout = timeout

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def timeout(self) -> float | None:
        return self._timeout

    async def version(self) -> GitExecutionResult:
        return await self._invoke(("--version",), cwd=None, timeout=self._timeout)

    async def run(
        self,
        *args: str,
        cwd: str | Path,
        timeout: float | None = None,
    ) -> GitExecutionResult:
        """Run ``git <args>`` in ``cwd``; a non-zero exit is reported, not raised."""

        return await self._invoke(
            tuple(args),
            cwd=str(cwd),
            timeout=timeout if timeout is not None else self._timeout,
        )

    async def check(
        self,
        *args: str,
        cwd: str | Path,
        timeout: float | None = None,
    ) -> str:
        """Run ``git <args>`` in ``cwd`` and return stdout, raising on failure."""

        result = await self.run(*args, cwd=cwd, timeout=timeout)
        result.raise_for_status()
        return result.stdout

    async def _invoke(
        self,
        args: tuple[str, ...],
        *,
        cwd: str | None,
        timeout: float | None,
    ) -> GitExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            await _kill(process)
            raise GitTimeoutError(args, timeout or 0) from None
        except BaseException:
            # Cancelled: the child must not outlive the caller.
            await _kill(process)
            raise
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GitExecutionResult(
            args=args,
            returncode=process.returncode,
            stdout=stdout,
            stderr=stderr,
            cwd=cwd,
        )


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


_Outcome = GitExecutionResult | BaseException


class FakeGitRunner(GitRunner):
    """Test double that answers git invocations from scripted rules.

    Each rule pairs an argument prefix with a result (or a list of results,
    consumed in order, the last one repeating). The first rule whose prefix
    matches the invocation wins; unmatched invocations succeed with empty output.
    """

    def __init__(  # type: ignore[override]
        self,
        rules: Iterable[tuple[Sequence[str], _Outcome | list[_Outcome]]] | None = None,
    ) -> None:
        self._rules: list[tuple[tuple[str, ...], list[_Outcome]]] = []
        for prefix, outcome in rules or []:
            self.add_rule(prefix, outcome)
        self._invocations: list[tuple[str, ...]] = []
        self._cwds: list[str | None] = []
        self._executable_path = Path("/tmp/fake-git")
        self._timeout = None

    def add_rule(
        self,
        prefix: Sequence[str],
        outcome: _Outcome | list[_Outcome],
    ) -> None:
        outcomes = list(outcome) if isinstance(outcome, list) else [outcome]
        self._rules.append((tuple(prefix), outcomes))

    async def _invoke(  # type: ignore[override]
        self,
        args: tuple[str, ...],
        *,
        cwd: str | None,
        timeout: float | None,
    ) -> GitExecutionResult:
        self._invocations.append(tuple(args))
        self._cwds.append(cwd)
        for prefix, outcomes in self._rules:
            if args[: len(prefix)] == prefix:
                outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
                if isinstance(outcome, BaseException):
                    raise outcome
                return GitExecutionResult(
                    args=args,
                    returncode=outcome.returncode,
                    stdout=outcome.stdout,
                    stderr=outcome.stderr,
                    cwd=cwd,
                )
        return GitExecutionResult(args=args, returncode=0, stdout="", stderr="", cwd=cwd)

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def cwds(self) -> list[str | None]:
        return self._cwds

    def called(self, *prefix: str) -> bool:
        return any(args[: len(prefix)] == prefix for args in self._invocations)


def ok(stdout: str = "", stderr: str = "") -> GitExecutionResult:
    """Shorthand for a successful scripted result."""

    return GitExecutionResult(args=(), returncode=0, stdout=stdout, stderr=stderr)


def fail(stderr: str = "", stdout: str = "", returncode: int = 1) -> GitExecutionResult:
    """Shorthand for a failed scripted result."""

    return GitExecutionResult(args=(), returncode=returncode, stdout=stdout, stderr=stderr)


def serialize_result(result: GitExecutionResult) -> str:
    """Serialize a command result for storage in the journal."""

    return json.dumps(
        {
            "args": list(result.args),
            "cwd": result.cwd,
            "returncode": result.returncode,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }
    )
