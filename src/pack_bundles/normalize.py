from __future__ import annotations

import os
import tempfile
import threading
from concurrent.futures import ProcessPoolExecutor, as_completed
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

from pack_bundles.config import BEGIN_MARKER, ExtensionFilter, FileRecord
from pack_bundles.discovery import relpath
from pack_bundles.exceptions import NormalizationError
from pack_bundles.logging import logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import Sequence

_TRAILING_WHITESPACE = b" \t\v\f"


class ProgressCounter:
    """Count completed normalizations; every increment goes through one lock."""

    def __init__(self, total: int) -> None:
        self.total = total
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def increment(self) -> int:
        """Record one completion.

        Returns:
            int: the number of completions so far, this one included
        """
        with self._lock:
            self._count += 1
            return self._count


def normalize_text(data: bytes, *, trim: bool = False) -> bytes:
    """Remove carriage returns and, optionally, trailing whitespace on each line.

    A missing final newline is kept missing.

    Args:
        data (bytes): the raw file content
        trim (bool): strip spaces, tabs, vertical tabs and form feeds at line ends

    Returns:
        bytes: the normalized content
    """
    data = data.replace(b"\r", b"")
    if trim:
        data = b"\n".join(line.rstrip(_TRAILING_WHITESPACE) for line in data.split(b"\n"))
    return data


def header_line(rel: str) -> bytes:
    """Build the path marker line that starts every block of a bundle.

    Returns:
        bytes: ``//// BEGIN <rel>`` followed by a newline
    """
    return f"{BEGIN_MARKER}{rel}\n".encode("utf-8", "surrogateescape")


def normalize_file(
    path: Path,
    *,
    root: Path,
    scratch_dir: Path,
    extensions: ExtensionFilter,
    trim: bool = False,
) -> FileRecord | None:
    """Transform one discovered file into a scratch chunk and its record.

    Args:
        path (Path): the absolute source file
        root (Path): the source root, used for the relative path
        scratch_dir (Path): where the private chunk file is created
        extensions (ExtensionFilter): files with another suffix are skipped
        trim (bool): strip trailing whitespace on each line

    Returns:
        FileRecord | None: the record, or None when the extension is not accepted
    """
    if not extensions.accepts(path):
        return None
    rel = relpath(path, root)
    logger.info("normalize_start", file=rel, pid=os.getpid())

    content = header_line(rel) + normalize_text(path.read_bytes(), trim=trim)
    fd, chunk = tempfile.mkstemp(prefix="chunk.", dir=scratch_dir)
    with os.fdopen(fd, "wb") as f:
        f.write(content)

    return FileRecord(
        rel=rel,
        path=path,
        size=len(content),
        line_count=content.count(b"\n"),
        chunk=Path(chunk),
    )


def _report(rec: FileRecord, progress: ProgressCounter) -> None:
    done = progress.increment()
    logger.info(
        "normalize_done",
        file=rec.rel,
        bytes=rec.size,
        lines=rec.line_count,
        processed=f"{done}/{progress.total}",
    )


def normalize_all(
    files: Sequence[Path],
    *,
    root: Path,
    scratch_dir: Path,
    extensions: ExtensionFilter,
    trim: bool = False,
    workers: int = 1,
    log_file: str = "",
) -> list[FileRecord]:
    """Normalize every file, in parallel, and wait for all of them.

    All tasks are submitted to a process pool bounded by `workers` and awaited as one
    batch. The first failure cancels pending tasks and aborts the run; nothing is
    retried. With a single worker the files are processed inline.

    Args:
        files (Sequence[Path]): the discovered files
        root (Path): the source root
        scratch_dir (Path): the run's scratch directory
        extensions (ExtensionFilter): accepted suffixes
        trim (bool): strip trailing whitespace on each line
        workers (int): maximum number of worker processes
        log_file (str): log file the workers should write to, if any

    Raises:
        NormalizationError: if any file cannot be normalized

    Returns:
        list[FileRecord]: the records of the accepted files, in completion order
    """
    job = partial(normalize_file, root=root, scratch_dir=scratch_dir, extensions=extensions, trim=trim)
    progress = ProgressCounter(total=len(files))
    records: list[FileRecord] = []

    if workers <= 1 or len(files) <= 1:
        for path in files:
            try:
                rec = job(path)
            except OSError as e:
                raise NormalizationError(file=path, reason=str(e), message=f"Cannot normalize {path}: {e}") from e
            if rec is not None:
                _report(rec, progress)
                records.append(rec)
        return records

    with ProcessPoolExecutor(
        max_workers=min(workers, len(files)),
        initializer=setup_logging,
        initargs=(log_file or None,),
    ) as pool:
        future_to_file = {pool.submit(job, path): path for path in files}
        for future in as_completed(future_to_file):
            path = future_to_file[future]
            try:
                rec = future.result()
            except Exception as e:
                pool.shutdown(wait=True, cancel_futures=True)
                raise NormalizationError(file=path, reason=str(e), message=f"Cannot normalize {path}: {e}") from e
            if rec is not None:
                _report(rec, progress)
                records.append(rec)
    return records
