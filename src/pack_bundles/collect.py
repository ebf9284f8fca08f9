from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from pack_bundles.exceptions import SourceDirectoryError
from pack_bundles.logging import logger

if TYPE_CHECKING:
    from pack_bundles.config import ExtensionFilter


def free_destination(dest_dir: Path, filename: str, *, as_txt: bool = False) -> Path:
    """Pick a destination path in `dest_dir` that does not exist yet.

    ``report.pdf`` becomes ``report_1.pdf``, ``report_2.pdf``... on collision.
    With `as_txt` the suffix is replaced: ``main.py`` becomes ``main.txt``, then
    ``main_1.txt``...

    Args:
        dest_dir (Path): the flat destination directory
        filename (str): the source file name
        as_txt (bool): replace the suffix with ``.txt``

    Returns:
        Path: a path under `dest_dir` that is free
    """
    name = Path(filename)
    stem = name.stem
    suffix = ".txt" if as_txt else name.suffix
    candidate = dest_dir / f"{stem}{suffix}"
    counter = 1
    while candidate.exists():
        candidate = dest_dir / f"{stem}_{counter}{suffix}"
        counter += 1
    return candidate


def collect_files(
    source: Path,
    dest_dir: Path,
    extensions: ExtensionFilter,
    *,
    as_txt: bool = False,
) -> list[tuple[Path, Path]]:
    """Copy every accepted file under `source` into the flat directory `dest_dir`.

    Files are visited in sorted path order so repeated runs name collisions the
    same way. Files already inside `dest_dir` are not collected again.

    Args:
        source (Path): the directory to search recursively
        dest_dir (Path): the destination, created if needed
        extensions (ExtensionFilter): accepted suffixes (case-insensitive)
        as_txt (bool): give every copy a ``.txt`` suffix

    Raises:
        SourceDirectoryError: if `source` does not exist

    Returns:
        list[tuple[Path, Path]]: (source file, copy) pairs, in copy order
    """
    if not source.is_dir():
        raise SourceDirectoryError(folder=source, message=f"Source directory '{source}' does not exist.")
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest_resolved = dest_dir.resolve()

    candidates: list[Path] = []
    for current, dirs, files in os.walk(source):
        here = Path(current)
        dirs[:] = [d for d in dirs if (here / d).resolve() != dest_resolved]
        candidates.extend(here / f for f in files if extensions.accepts(f) and (here / f).is_file())

    copied: list[tuple[Path, Path]] = []
    for src in sorted(candidates, key=lambda p: os.fsencode(p)):
        target = free_destination(dest_dir, src.name, as_txt=as_txt)
        shutil.copy(src, target)
        logger.info("copied", source=str(src), destination=str(target))
        copied.append((src, target))

    logger.info("collection_complete", files=len(copied), dest_dir=str(dest_dir))
    return copied
