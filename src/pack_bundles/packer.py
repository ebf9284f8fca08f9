from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pack_bundles.config import (
    BUNDLE_NAME_GLOB,
    BUNDLE_NAME_TEMPLATE,
    MAP_FILE_NAME,
    BundleMapping,
    FileRecord,
    MapEntry,
    SourceMap,
)
from pack_bundles.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path
    from typing import BinaryIO


@dataclass
class Bundle:
    """An output bundle; only the packer mutates it, and only while it is open."""

    index: int
    path: Path
    byte_count: int = 0
    line_count: int = 0
    entries: list[MapEntry] = field(default_factory=list)
    _handle: BinaryIO | None = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def closed(self) -> bool:
        return self._handle is None

    def open(self) -> Bundle:
        self._handle = self.path.open("wb")
        logger.info("bundle_open", bundle=self.name)
        return self

    def append(self, rec: FileRecord) -> MapEntry:
        """Copy the normalized content of `rec` at the end of the bundle.

        Returns:
            MapEntry: where the record landed
        """
        if self._handle is None:
            msg = f"{self.name} is closed"
            raise ValueError(msg)
        entry = MapEntry(
            source=rec.rel,
            offset_start=self.byte_count,
            offset_end=self.byte_count + rec.size,
            line_start=self.line_count + 1,
            line_count=rec.line_count,
        )
        with rec.chunk.open("rb") as src:
            shutil.copyfileobj(src, self._handle)
        self.byte_count = entry.offset_end
        self.line_count += rec.line_count
        self.entries.append(entry)
        logger.info(
            "bundle_add",
            file=rec.rel,
            bytes=rec.size,
            lines=rec.line_count,
            bundle=self.name,
            offset=f"{entry.offset_start}->{entry.offset_end}",
        )
        return entry

    def close(self) -> BundleMapping:
        """Flush the bundle to disk; it cannot be appended to afterwards.

        Returns:
            BundleMapping: the bundle name with its entries
        """
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            logger.info("bundle_closed", bundle=self.name, bytes=self.byte_count, lines=self.line_count)
        return BundleMapping(bundle=self.name, files=list(self.entries))


def sort_records(recs: Iterable[FileRecord]) -> list[FileRecord]:
    """Sort records by relative path, byte-wise.

    Returns:
        list[FileRecord]: the records in packing order
    """
    return sorted(recs, key=lambda r: r.sort_key)


def remove_stale_bundles(out_dir: Path) -> list[Path]:
    """Delete bundle files left in `out_dir` by a previous run.

    Returns:
        list[Path]: the removed files
    """
    stale = sorted(p for p in out_dir.glob(BUNDLE_NAME_GLOB) if p.is_file())
    for p in stale:
        p.unlink()
    if stale:
        logger.info("stale_bundles_removed", count=len(stale), out_dir=str(out_dir))
    return stale


def pack_records(recs: Sequence[FileRecord], out_dir: Path, capacity: int) -> SourceMap:
    """Greedily concatenate normalized records into bundles of about `capacity` bytes.

    Records are packed in byte-wise order of their relative path. A record goes to
    the open bundle unless it would push it past `capacity` and the bundle already
    holds something; then the bundle is closed and the record starts the next one.
    A record larger than `capacity` therefore sits alone in its bundle: bundles are
    a target size, records are never split or dropped.

    Args:
        recs (Sequence[FileRecord]): the normalized files, in any order
        out_dir (Path): directory receiving ``bundle_NNNN.txt`` files
        capacity (int): the target bundle size in bytes

    Returns:
        SourceMap: the bundles with the location of every record, in packing order
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    remove_stale_bundles(out_dir)

    source_map = SourceMap()
    current: Bundle | None = None
    try:
        for rec in sort_records(recs):
            if current is not None and current.byte_count > 0 and current.byte_count + rec.size > capacity:
                source_map.bundles.append(current.close())
                current = None
            if current is None:
                index = len(source_map.bundles) + 1
                current = Bundle(index=index, path=out_dir / BUNDLE_NAME_TEMPLATE.format(index=index)).open()
            current.append(rec)
    finally:
        if current is not None and not current.closed:
            mapping = current.close()
            if current.byte_count > 0:
                source_map.bundles.append(mapping)

    total = sum(e.offset_end - e.offset_start for b in source_map.bundles for e in b.files)
    logger.info(
        "pack_finished",
        bundles=len(source_map.bundles),
        files=source_map.file_count,
        bytes=total,
    )
    return source_map


def write_source_map(source_map: SourceMap, out_dir: Path) -> Path:
    """Write the source map as indented JSON next to the bundles.

    Returns:
        Path: the map file
    """
    map_path = out_dir / MAP_FILE_NAME
    map_path.write_text(source_map.model_dump_json(indent=2) + "\n", encoding="utf-8")
    logger.info("source_map_written", path=str(map_path))
    return map_path


def load_source_map(path: Path) -> SourceMap:
    """Read and validate a source map written by `write_source_map`.

    Returns:
        SourceMap: the parsed map
    """
    return SourceMap.model_validate_json(path.read_text(encoding="utf-8"))
