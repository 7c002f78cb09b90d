from __future__ import annotations

import asyncio
from pathlib import Path

from parallax_mcp.engine import ChangedFile, TTLCache
from parallax_mcp.engine.changes import (
    ChangeSetComputer,
    normalize_status_path,
    parse_porcelain_status,
    parse_raw_numstat,
    split_lines,
    synthesize_untracked_diff,
)
from parallax_mcp.engine.topology import TopologyDetector
from parallax_mcp.git import FakeGitRunner
from parallax_mcp.git.runner import fail, ok


def _computer(fake: FakeGitRunner) -> ChangeSetComputer:
    topology = TopologyDetector(
        fake,
        main_branch_cache=TTLCache("main_branch", 60.0),
        merge_base_cache=TTLCache("merge_base", 30.0),
    )
    return ChangeSetComputer(fake, topology)


def _repo_rules(**overrides) -> list:
    rules = [
        (("symbolic-ref",), fail()),
        (("rev-parse",), ok("abc\n")),
        (("merge-base",), ok("base123\n")),
    ]
    rules.extend(overrides.get("extra", []))
    return rules


def test_normalize_status_path_variants() -> None:
    assert normalize_status_path("old.txt -> new.txt") == "new.txt"
    assert normalize_status_path("old.txt => new.txt") == "new.txt"
    assert normalize_status_path("src/{old => new}/mod.py") == "src/new/mod.py"
    assert normalize_status_path("src/{ => sub}/mod.py") == "src/sub/mod.py"
    assert normalize_status_path('"with space.txt"') == "with space.txt"
    assert normalize_status_path("   ") == ""


def test_parse_raw_numstat_combines_sections() -> None:
    output = (
        ":100644 100644 aaaaaaa bbbbbbb M\ta.txt\n"
        ":000000 100644 0000000 ccccccc A\tnew.txt\n"
        ":100644 100644 ddddddd eeeeeee R086\told.txt\trenamed.txt\n"
        "3\t1\ta.txt\n"
        "10\t0\tnew.txt\n"
        "-\t-\timage.png\n"
        "2\t2\told.txt => renamed.txt\n"
    )

    summary = parse_raw_numstat(output)

    assert summary.statuses == {"a.txt": "M", "new.txt": "A", "renamed.txt": "R"}
    assert summary.numstats == {
        "a.txt": (3, 1),
        "new.txt": (10, 0),
        "image.png": (0, 0),
        "renamed.txt": (2, 2),
    }


def test_parse_porcelain_marks_untracked() -> None:
    statuses = {"a.txt": "M"}

    uncommitted = parse_porcelain_status(" M a.txt\n?? b.txt\nR  x.txt -> y.txt\n", statuses)

    assert uncommitted == {"a.txt", "b.txt", "y.txt"}
    assert statuses == {"a.txt": "M", "b.txt": "?"}


def test_split_lines_drops_trailing_newline_only() -> None:
    assert split_lines("a\nb\n") == ["a", "b"]
    assert split_lines("a\nb") == ["a", "b"]
    assert split_lines("a\n\n") == ["a", ""]
    assert split_lines("") == []


def test_synthesize_untracked_diff() -> None:
    diff = synthesize_untracked_diff("notes/todo.md", "first\nsecond\n")

    assert diff == (
        "--- /dev/null\n"
        "+++ b/notes/todo.md\n"
        "@@ -0,0 +1,2 @@\n"
        "+first\n"
        "+second\n"
    )


def test_changed_files_committed_first(tmp_path: Path) -> None:
    (tmp_path / "b.txt").write_text("one\ntwo\n", encoding="utf-8")
    fake = FakeGitRunner(
        _repo_rules(
            extra=[
                (
                    ("diff", "--raw", "--numstat", "base123"),
                    ok(":100644 100644 aaaaaaa bbbbbbb M\ta.txt\n3\t1\ta.txt\n"),
                ),
                (("status", "--porcelain"), ok("?? b.txt\n")),
            ]
        )
    )

    files = asyncio.run(_computer(fake).get_changed_files(str(tmp_path)))

    assert files == [
        ChangedFile(path="a.txt", lines_added=3, lines_removed=1, status="M", committed=True),
        ChangedFile(path="b.txt", lines_added=2, lines_removed=0, status="?", committed=False),
    ]


def test_changed_files_one_entry_per_path(tmp_path: Path) -> None:
    fake = FakeGitRunner(
        _repo_rules(
            extra=[
                (
                    ("diff", "--raw"),
                    ok(
                        ":100644 100644 a b M\tz.txt\n"
                        ":100644 100644 a b M\tm.txt\n"
                        "1\t0\tz.txt\n"
                        "4\t4\tm.txt\n"
                    ),
                ),
                (("status",), ok(" M m.txt\n")),
            ]
        )
    )

    files = asyncio.run(_computer(fake).get_changed_files(str(tmp_path)))

    assert [(item.path, item.committed) for item in files] == [("z.txt", True), ("m.txt", False)]


def test_diff_base_falls_back_to_head(tmp_path: Path) -> None:
    fake = FakeGitRunner([(("symbolic-ref",), fail()), (("rev-parse",), fail())])

    files = asyncio.run(_computer(fake).get_changed_files(str(tmp_path)))

    assert files == []
    assert fake.called("diff", "--raw", "--numstat", "HEAD")


def test_changed_files_degrade_to_empty_on_git_failure(tmp_path: Path) -> None:
    fake = FakeGitRunner(_repo_rules(extra=[(("diff",), fail()), (("status",), fail())]))

    assert asyncio.run(_computer(fake).get_changed_files(str(tmp_path))) == []


def test_file_diff_prefers_git_output(tmp_path: Path) -> None:
    fake = FakeGitRunner(_repo_rules(extra=[(("diff", "base123", "--", "a.txt"), ok("diff --git a/a.txt b/a.txt\n"))]))

    diff = asyncio.run(_computer(fake).get_file_diff(str(tmp_path), "a.txt"))

    assert diff.startswith("diff --git")


def test_file_diff_synthesizes_for_untracked(tmp_path: Path) -> None:
    (tmp_path / "new.py").write_text("print('hi')\n", encoding="utf-8")
    fake = FakeGitRunner(_repo_rules())

    diff = asyncio.run(_computer(fake).get_file_diff(str(tmp_path), "new.py"))

    assert diff.splitlines()[2] == "@@ -0,0 +1,1 @@"
    assert diff.endswith("+print('hi')\n")


def test_file_diff_missing_file_is_empty(tmp_path: Path) -> None:
    fake = FakeGitRunner(_repo_rules())

    assert asyncio.run(_computer(fake).get_file_diff(str(tmp_path), "gone.txt")) == ""


def test_file_diff_unreadable_file_is_empty(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / "secret.txt").write_text("x\n", encoding="utf-8")
    fake = FakeGitRunner(_repo_rules())

    def deny(self, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(self))

    monkeypatch.setattr(Path, "read_text", deny)

    assert asyncio.run(_computer(fake).get_file_diff(str(tmp_path), "secret.txt")) == ""


def test_worktree_status_flags() -> None:
    fake = FakeGitRunner(
        _repo_rules(
            extra=[
                (("status", "--porcelain"), ok(" M a.txt\n")),
                (("log", "main..HEAD", "--oneline"), ok("abc123 add feature\n")),
            ]
        )
    )

    status = asyncio.run(_computer(fake).get_worktree_status("/wt"))

    assert status.has_committed_changes is True
    assert status.has_uncommitted_changes is True


def test_worktree_status_clean() -> None:
    fake = FakeGitRunner(_repo_rules())

    status = asyncio.run(_computer(fake).get_worktree_status("/wt"))

    assert status.to_dict() == {"has_committed_changes": False, "has_uncommitted_changes": False}


def test_branch_log_uses_subject_format() -> None:
    fake = FakeGitRunner(
        _repo_rules(extra=[(("log", "main..HEAD", "--pretty=format:- %s"), ok("- second\n- first"))])
    )

    assert asyncio.run(_computer(fake).get_branch_log("/wt")) == "- second\n- first"
