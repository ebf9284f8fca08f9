from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from pack_bundles.config import ExtensionFilter
from pack_bundles.discovery import discover_files, git_ls_files, is_git_work_tree, relpath

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed"),
]

EXTS = ExtensionFilter.parse("py,md,txt")


@pytest.fixture(autouse=True)
def _isolate_git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("HOME", str(tmp_path))


def git_init(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init", "-q", str(path)], check=True)  # noqa: S607
    return path


def write(root: Path, *names: str) -> None:
    for name in names:
        p = root / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(f"{name}\n", encoding="utf-8")


def rels(paths: list[Path], root: Path) -> list[str]:
    return [relpath(p, root) for p in paths]


def test_git_ls_files_honors_gitignore(tmp_path: Path) -> None:
    repo = git_init(tmp_path / "repo")
    write(repo, "a.py", "notes.md", "ignored.txt", "build/out.py", "data.bin")
    (repo / ".gitignore").write_text("ignored.txt\nbuild/\n", encoding="utf-8")

    found = rels(discover_files(repo, EXTS), repo)

    assert is_git_work_tree(repo)
    assert "a.py" in found
    assert "notes.md" in found
    assert "data.bin" in found
    assert "ignored.txt" not in found
    assert "build/out.py" not in found


def test_plain_tree_with_nested_repo(tmp_path: Path) -> None:
    root = tmp_path / "tree"
    write(root, "plain.py", "skip/y.py", "image.png")
    lib = git_init(root / "vendor" / "lib")
    write(lib, "x.py", "secret.py")
    (lib / ".gitignore").write_text("secret.py\n", encoding="utf-8")

    found = rels(discover_files(root, EXTS, ["skip"]), root)

    assert not is_git_work_tree(root)
    assert "plain.py" in found
    assert "vendor/lib/x.py" in found
    assert "vendor/lib/secret.py" not in found
    assert "skip/y.py" not in found
    assert "image.png" not in found
    assert len(found) == len(set(found))


def test_repo_inside_repo_lists_both(tmp_path: Path) -> None:
    outer = git_init(tmp_path / "outer")
    write(outer, "a.py")
    inner = git_init(outer / "inner")
    write(inner, "b.py")

    found = rels(discover_files(outer, EXTS), outer)

    assert git_ls_files(outer) == [outer / "a.py"]
    assert found == ["a.py", "inner/b.py"]


def test_no_git_scans_ignored_files_too(tmp_path: Path) -> None:
    repo = git_init(tmp_path / "repo")
    write(repo, "a.py", "ignored.txt")
    (repo / ".gitignore").write_text("ignored.txt\n", encoding="utf-8")

    found = rels(discover_files(repo, EXTS, use_git=False), repo)

    assert found == ["a.py", "ignored.txt"]
