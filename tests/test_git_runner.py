from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

import pytest

from parallax_mcp.git import (
    FakeGitRunner,
    GitCommandError,
    GitExecutionResult,
    GitNotFoundError,
    GitRunner,
    GitTimeoutError,
    serialize_result,
)
from parallax_mcp.git.runner import fail, ok
from parallax_mcp.git.utils import sanitize_environment


def _script(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "git"
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return script


def test_git_runner_executes_script(tmp_path: Path) -> None:
    runner = GitRunner(_script(tmp_path, "echo 'git version 2.45.0'"))
    result = asyncio.run(runner.version())

    assert result.ok
    assert "git version 2.45.0" in result.stdout


def test_run_passes_args_and_cwd(tmp_path: Path) -> None:
    runner = GitRunner(_script(tmp_path, 'echo "$@"; pwd'))
    workdir = tmp_path / "repo"
    workdir.mkdir()

    result = asyncio.run(runner.run("status", "--porcelain", cwd=workdir))

    lines = result.stdout.splitlines()
    assert lines[0] == "status --porcelain"
    assert Path(lines[1]).resolve() == workdir.resolve()
    assert result.cwd == str(workdir)


def test_run_reports_failure_without_raising(tmp_path: Path) -> None:
    runner = GitRunner(_script(tmp_path, "echo 'fatal: bad revision' >&2; exit 128"))

    result = asyncio.run(runner.run("log", cwd=tmp_path))

    assert not result.ok
    assert result.returncode == 128
    assert "bad revision" in result.stderr


def test_check_raises_with_verbatim_diagnostic(tmp_path: Path) -> None:
    runner = GitRunner(_script(tmp_path, "echo 'error: pathspec did not match' >&2; exit 1"))

    with pytest.raises(GitCommandError) as excinfo:
        asyncio.run(runner.check("checkout", "nope", cwd=tmp_path))

    assert excinfo.value.returncode == 1
    assert excinfo.value.command == ("checkout", "nope")
    assert str(excinfo.value) == "error: pathspec did not match"


def test_check_returns_stdout(tmp_path: Path) -> None:
    runner = GitRunner(_script(tmp_path, "echo main"))

    assert asyncio.run(runner.check("symbolic-ref", "--short", "HEAD", cwd=tmp_path)) == "main\n"


def test_timeout_kills_process(tmp_path: Path) -> None:
    runner = GitRunner(_script(tmp_path, "exec sleep 5"), timeout=0.2)

    with pytest.raises(GitTimeoutError) as excinfo:
        asyncio.run(runner.run("fetch", cwd=tmp_path))

    assert excinfo.value.timeout == 0.2
    assert "timed out" in excinfo.value.detail
    assert isinstance(excinfo.value, GitCommandError)


def test_cancellation_kills_process(tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    runner = GitRunner(_script(tmp_path, f"echo $$ > '{pid_file}'; exec sleep 30"))

    async def scenario() -> None:
        task = asyncio.create_task(runner.run("merge", cwd=tmp_path))
        while not (pid_file.exists() and pid_file.read_text().strip()):
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    with pytest.raises(ProcessLookupError):
        os.kill(int(pid_file.read_text()), 0)


def test_git_not_found(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitRunner(tmp_path / "missing")


def test_subprocess_environment_is_sanitized(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    runner = GitRunner(_script(tmp_path, 'echo "prompt=$GIT_TERMINAL_PROMPT dir=$GIT_DIR"'))

    result = asyncio.run(runner.run("status", cwd=tmp_path))

    assert result.stdout.strip() == "prompt=0 dir="


def test_command_error_detail_falls_back_to_exit_code() -> None:
    error = GitCommandError(("push", "origin"), 1, "", "  ")

    assert error.detail == "git push origin exited with code 1"


def test_fake_runner_matches_prefixes_in_order() -> None:
    fake = FakeGitRunner(
        [
            (("rev-parse", "--verify", "--quiet", "main"), fail()),
            (("rev-parse",), ok("abc123\n")),
        ]
    )

    first = asyncio.run(fake.run("rev-parse", "--verify", "--quiet", "main", cwd="/repo"))
    second = asyncio.run(fake.run("rev-parse", "HEAD", cwd="/repo"))
    unmatched = asyncio.run(fake.run("status", cwd="/repo"))

    assert not first.ok
    assert second.stdout == "abc123\n"
    assert unmatched.ok and unmatched.stdout == ""
    assert fake.invocations[0] == ("rev-parse", "--verify", "--quiet", "main")
    assert fake.cwds == ["/repo", "/repo", "/repo"]
    assert fake.called("status")


def test_fake_runner_consumes_sequences_and_raises() -> None:
    fake = FakeGitRunner([(("status",), [ok("one"), ok("two")])])
    fake.add_rule(("fetch",), GitTimeoutError(("fetch",), 1.0))

    outputs = [asyncio.run(fake.check("status", cwd="/r")) for _ in range(3)]

    assert outputs == ["one", "two", "two"]
    with pytest.raises(GitTimeoutError):
        asyncio.run(fake.run("fetch", cwd="/r"))


def test_serialize_result_includes_cwd() -> None:
    result = GitExecutionResult(args=("status",), returncode=0, stdout="ok", stderr="", cwd="/repo")
    payload = json.loads(serialize_result(result))

    assert payload["args"] == ["status"]
    assert payload["cwd"] == "/repo"


def test_sanitize_environment_strips_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    monkeypatch.setenv("GIT_WORK_TREE", "/tmp/other")
    env = sanitize_environment({"EXTRA": "1"})

    assert "PYTHONPATH" not in env
    assert "GIT_WORK_TREE" not in env
    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert env["EXTRA"] == "1"
