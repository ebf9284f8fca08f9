from __future__ import annotations

import os
import subprocess  # noqa: S404
from pathlib import Path
from typing import TYPE_CHECKING

from pack_bundles.config import VCS_DIRS
from pack_bundles.exceptions import GitCommandError, NotAGitRepositoryError, SourceDirectoryError
from pack_bundles.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from pack_bundles.config import ExtensionFilter


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def ensure_source_dir(source: Path) -> Path:
    """Resolve the source directory, failing before any work starts.

    Args:
        source (Path): the directory given on the command line

    Raises:
        SourceDirectoryError: if it does not exist or is not a directory

    Returns:
        Path: the absolute, resolved directory
    """
    if not source.is_dir():
        raise SourceDirectoryError(folder=source, message=f"Source directory '{source}' does not exist.")
    return source.resolve()


def _run_git(args: Sequence[str], cwd: Path) -> subprocess.CompletedProcess[bytes]:
    cmd = ["git", *args]
    try:
        out = subprocess.run(  # noqa: S603
            cmd,
            cwd=str(cwd),
            capture_output=True,
            check=False,
        )
    except OSError as e:
        raise GitCommandError(
            command=" ".join(cmd),
            returncode=-1,
            stdout="",
            stderr=str(e),
            message=f"cannot run git: {e}",
        ) from e
    if out.returncode != 0:
        stderr = out.stderr.decode("utf-8", "replace").strip()
        raise GitCommandError(
            command=" ".join(cmd),
            returncode=out.returncode,
            stdout=out.stdout.decode("utf-8", "replace"),
            stderr=stderr,
            message=f"`{' '.join(cmd)}` failed ({out.returncode}): {stderr}",
        )
    return out


def is_git_work_tree(folder: Path) -> bool:
    """Check if `folder` lies inside a git working tree.

    Returns:
        bool: True if `git rev-parse --is-inside-work-tree` succeeds and says so
    """
    try:
        out = _run_git(["rev-parse", "--is-inside-work-tree"], folder)
    except GitCommandError:
        return False
    return out.stdout.strip() == b"true"


def git_ls_files(repo: Path) -> list[Path]:
    """List tracked and untracked-but-not-ignored files under `repo`.

    Runs ``git ls-files --cached --others --exclude-standard -z`` from `repo`, so the
    listing honors ``.gitignore`` and is limited to the subtree rooted at `repo`.
    Entries that are not regular files (nested repositories show up as directory
    placeholders, deleted tracked files do not exist) are dropped.

    Args:
        repo (Path): a directory inside a git working tree

    Raises:
        NotAGitRepositoryError: if `repo` is not inside a working tree.
        GitCommandError: if `git ls-files` fails.

    Returns:
        list[Path]: the absolute paths of the listed files
    """
    if not is_git_work_tree(repo):
        raise NotAGitRepositoryError(folder=repo)
    out = _run_git(["ls-files", "--cached", "--others", "--exclude-standard", "-z"], repo)
    files: list[Path] = []
    for raw in out.stdout.split(b"\0"):
        if not raw:
            continue
        p = repo / os.fsdecode(raw)
        if p.is_file():
            files.append(p)
    return files


def find_nested_repos(root: Path, excludes: Iterable[str] = ()) -> list[Path]:
    """Find directories under `root` that contain a `.git` directory, outermost first.

    `root` itself is not reported. Excluded directories are not descended into.

    Returns:
        list[Path]: the nested repository roots, sorted by depth then path
    """
    exc = set(excludes)
    repos: list[Path] = []
    for current, dirs, _files in os.walk(root):
        here = Path(current)
        if here != root and any((here / vcs).is_dir() for vcs in VCS_DIRS):
            repos.append(here)
        dirs[:] = sorted(d for d in dirs if d not in VCS_DIRS and d not in exc)
    return sorted(repos, key=lambda p: (len(p.parts), p.as_posix()))


def walk_files(
    root: Path,
    extensions: ExtensionFilter,
    excludes: Iterable[str] = (),
    skip_dirs: Iterable[Path] = (),
) -> list[Path]:
    """Walk the directory tree rooted at `root` and return files with an accepted extension.

    Version-control metadata directories, directories named in `excludes` and the
    directories in `skip_dirs` (already covered by a git listing) are pruned.

    Args:
        root (Path): the root directory to walk
        extensions (ExtensionFilter): the accepted suffixes
        excludes (Iterable[str]): directory names to prune
        skip_dirs (Iterable[Path]): absolute directories to prune

    Returns:
        list[Path]: the files found
    """
    exc = set(excludes)
    skip = set(skip_dirs)
    results: list[Path] = []
    for current, dirs, files in os.walk(root):
        here = Path(current)
        dirs[:] = [d for d in dirs if d not in VCS_DIRS and d not in exc and here / d not in skip]
        for f in files:
            p = here / f
            if extensions.accepts(p) and p.is_file():
                results.append(p)
    return results


def discover_files(
    root: Path,
    extensions: ExtensionFilter,
    excludes: Sequence[str] = (),
    *,
    use_git: bool = True,
) -> list[Path]:
    """Enumerate candidate files under `root`, honoring git ignore rules where possible.

    - If `root` is inside a git working tree, its listing covers the whole tree.
    - Every nested working tree is listed with git as well (outermost first, never
      twice), since a parent tree only reports a placeholder for it.
    - When `root` is not covered by git, the rest of the tree is scanned and
      filtered by extension.
    - Excluded directory names prune the scan and the nested-tree search only;
      files a git listing reports are kept.

    Git listings are not filtered by extension; the normalizer skips those files.

    Args:
        root (Path): the resolved source directory
        extensions (ExtensionFilter): the accepted suffixes for the fallback scan
        excludes (Sequence[str]): directory names to exclude
        use_git (bool): when False, always scan the whole tree

    Raises:
        SourceDirectoryError: if `root` is not a directory

    Returns:
        list[Path]: absolute, de-duplicated file paths sorted by relative path
    """
    if not root.is_dir():
        raise SourceDirectoryError(folder=root, message=f"Source directory '{root}' does not exist.")

    found: set[Path] = set()
    covered: list[Path] = []

    if use_git:
        try:
            found.update(git_ls_files(root))
            covered.append(root)
            logger.info("discovery_git", repo=str(root), note="top-level repo, respects .gitignore")
        except (GitCommandError, NotAGitRepositoryError) as e:
            logger.info("discovery_fallback_walk", repo=str(root), error=str(e))

        for repo in find_nested_repos(root, excludes):
            try:
                found.update(git_ls_files(repo))
            except (GitCommandError, NotAGitRepositoryError) as e:
                logger.warning("nested_repo_skipped", repo=str(repo), error=str(e))
                continue
            covered.append(repo)
            logger.info("discovery_git", repo=str(repo), note="nested repo")

    if root not in covered:
        found.update(walk_files(root, extensions, excludes, skip_dirs=covered))

    return sorted(found, key=lambda p: os.fsencode(relpath(p, root)))
