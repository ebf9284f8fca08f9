from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from pack_bundles import discovery
from pack_bundles.config import ExtensionFilter
from pack_bundles.exceptions import NotAGitRepositoryError, SourceDirectoryError

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

EXTS = ExtensionFilter.parse("py,md")


def touch(root: Path, *names: str) -> list[Path]:
    out = []
    for name in names:
        p = root / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(name, encoding="utf-8")
        out.append(p)
    return out


@pytest.mark.unit
def test_relpath_inside_and_outside_root(tmp_path: Path) -> None:
    assert discovery.relpath(tmp_path / "a" / "b.py", tmp_path) == "a/b.py"
    assert discovery.relpath(Path("/elsewhere/c.py"), tmp_path) == "/elsewhere/c.py"


@pytest.mark.unit
def test_walk_files_prunes_vcs_and_excluded_dirs(tmp_path: Path) -> None:
    touch(
        tmp_path,
        "main.py",
        "README.MD",
        "image.png",
        ".git/hooks/pre-commit.py",
        "node_modules/pkg/index.py",
        "pkg/node_modules_helper.py",
    )

    found = discovery.walk_files(tmp_path, EXTS, excludes=["node_modules"])

    rels = sorted(discovery.relpath(p, tmp_path) for p in found)
    assert rels == ["README.MD", "main.py", "pkg/node_modules_helper.py"]


@pytest.mark.unit
def test_walk_files_skips_covered_directories(tmp_path: Path) -> None:
    touch(tmp_path, "a.py", "repo/b.py")

    found = discovery.walk_files(tmp_path, EXTS, skip_dirs=[tmp_path / "repo"])

    assert found == [tmp_path / "a.py"]


@pytest.mark.unit
def test_find_nested_repos_outermost_first(tmp_path: Path) -> None:
    for repo in ("vendor/lib", "vendor/lib/deps/inner", "apps/web", "skip/other"):
        (tmp_path / repo / ".git").mkdir(parents=True)

    repos = discovery.find_nested_repos(tmp_path, excludes=["skip"])

    assert repos == [tmp_path / "apps/web", tmp_path / "vendor/lib", tmp_path / "vendor/lib/deps/inner"]


@pytest.mark.unit
def test_discover_files_without_git_is_sorted(tmp_path: Path) -> None:
    touch(tmp_path, "b.py", "a/z.md", "a.py", "dist/out.py", "data.bin")

    found = discovery.discover_files(tmp_path, EXTS, ["dist"], use_git=False)

    assert [discovery.relpath(p, tmp_path) for p in found] == ["a.py", "a/z.md", "b.py"]


@pytest.mark.unit
def test_discover_files_prefers_git_listing(tmp_path: Path, mocker: MockerFixture) -> None:
    tracked, untracked_ignored = touch(tmp_path, "tracked.py", "ignored.py")
    git_mock = mocker.patch.object(discovery, "git_ls_files", return_value=[tracked])
    mocker.patch.object(discovery, "find_nested_repos", return_value=[])
    walk_mock = mocker.patch.object(discovery, "walk_files")

    found = discovery.discover_files(tmp_path, EXTS)

    assert found == [tracked]
    assert untracked_ignored not in found
    git_mock.assert_called_once_with(tmp_path)
    walk_mock.assert_not_called()


@pytest.mark.unit
def test_discover_files_falls_back_to_walk(tmp_path: Path, mocker: MockerFixture) -> None:
    (main,) = touch(tmp_path, "main.py")
    mocker.patch.object(discovery, "git_ls_files", side_effect=NotAGitRepositoryError(folder=tmp_path))
    logger_mock = mocker.patch.object(discovery, "logger")

    found = discovery.discover_files(tmp_path, EXTS)

    assert found == [main]
    first = logger_mock.info.call_args_list[0]
    assert first.args == ("discovery_fallback_walk",)
    assert first.kwargs["repo"] == str(tmp_path)


@pytest.mark.unit
def test_discover_files_keeps_git_listed_files_in_excluded_dirs(tmp_path: Path, mocker: MockerFixture) -> None:
    src, tracked = touch(tmp_path, "src/a.py", "dist/keep.py")
    mocker.patch.object(discovery, "git_ls_files", return_value=[src, tracked])
    nested_mock = mocker.patch.object(discovery, "find_nested_repos", return_value=[])

    assert discovery.discover_files(tmp_path, EXTS, ["dist"]) == [tracked, src]
    nested_mock.assert_called_once_with(tmp_path, ["dist"])


@pytest.mark.unit
def test_discover_files_excludes_prune_fallback_walk(tmp_path: Path, mocker: MockerFixture) -> None:
    keep, _ = touch(tmp_path, "src/a.py", "dist/b.py")
    mocker.patch.object(discovery, "git_ls_files", side_effect=NotAGitRepositoryError(folder=tmp_path))

    assert discovery.discover_files(tmp_path, EXTS, ["dist"]) == [keep]


@pytest.mark.unit
def test_discover_files_missing_root(tmp_path: Path) -> None:
    with pytest.raises(SourceDirectoryError):
        discovery.discover_files(tmp_path / "absent", EXTS)


@pytest.mark.unit
def test_ensure_source_dir(tmp_path: Path) -> None:
    assert discovery.ensure_source_dir(tmp_path) == tmp_path.resolve()
    with pytest.raises(SourceDirectoryError):
        discovery.ensure_source_dir(tmp_path / "absent")
