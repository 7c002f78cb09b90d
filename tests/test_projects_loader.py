from pathlib import Path
import textwrap

import pytest

from parallax_mcp.projects import ProjectLoadError, ProjectLoader


def write_project(path: Path, *, name: str, repo: Path, extra: str = "") -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: webapp
            name: {name}
            path: {repo}
            """
        ).strip().format(name=name, repo=repo)
        + "\n"
        + extra,
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_project(base / "webapp.yaml", name="Base", repo=tmp_path)
    write_project(override / "webapp.yml", name="Override", repo=tmp_path)

    loader = ProjectLoader([base, override])
    projects = loader.load_all()

    assert projects["webapp"].name == "Override"


def test_project_defaults(tmp_path: Path) -> None:
    write_project(tmp_path / "webapp.yaml", name="Web", repo=tmp_path)

    project = ProjectLoader([tmp_path]).get("webapp")

    assert project.branch_prefix == "task"
    assert project.delete_branch_on_close is True
    assert project.symlink_dirs is None


def test_project_prefix_is_sanitized(tmp_path: Path) -> None:
    write_project(
        tmp_path / "webapp.yaml",
        name="Web",
        repo=tmp_path,
        extra="branch_prefix: Team Alpha/Feature\ndelete_branch_on_close: false\nsymlink_dirs: [node_modules]\n",
    )

    project = ProjectLoader([tmp_path]).get("webapp")

    assert project.branch_prefix == "team-alpha/feature"
    assert project.delete_branch_on_close is False
    assert project.symlink_dirs == ["node_modules"]


def test_loader_handles_missing_projects(tmp_path: Path) -> None:
    loader = ProjectLoader([tmp_path / "nowhere"])
    assert loader.load_all() == {}
    assert loader.search_paths == []


def test_loader_reports_relative_path(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("id: broken\nname: Broken\npath: relative/repo\n", encoding="utf-8")

    with pytest.raises(ProjectLoadError):
        ProjectLoader([tmp_path]).load_all()


def test_get_unknown_project(tmp_path: Path) -> None:
    write_project(tmp_path / "webapp.yaml", name="Web", repo=tmp_path)

    with pytest.raises(ProjectLoadError):
        ProjectLoader([tmp_path]).get("missing")
