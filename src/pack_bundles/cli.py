"""
pack_bundles: concatenate a source tree into size-bounded text bundles.

Overview
--------
``pack`` walks a source directory, normalizes every text file whose extension is
in the allow-list (carriage returns removed, optional trailing-whitespace trim, a
``//// BEGIN <path>`` header line), and packs the results, sorted by path, into
``bundle_0001.txt``, ``bundle_0002.txt``... of about ``chunk_size`` bytes each.
``bundles.map.json`` records, per bundle, the byte offsets and line numbers of
every source file.

Discovery prefers ``git ls-files`` (tracked plus untracked-but-not-ignored files,
in the source directory and in any nested repository) and falls back to a
filesystem walk for the parts of the tree git does not cover.

``collect`` copies files of chosen types out of a tree into one flat directory,
renaming on collision.

Usage
-----
    pack [source_dir] [out_dir] [chunk_size_bytes]
    pack src/ out/ 1048576 --trim --exclude node_modules,dist --workers 8
    pack collect --preset pdfs ~/Documents
    PACK_EXTS=py,md pack .
"""

from __future__ import annotations

import argparse
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from pack_bundles import __version__
from pack_bundles.collect import collect_files
from pack_bundles.config import (
    BUNDLE_NAME_GLOB,
    COLLECT_PRESETS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_OUT_DIR,
    MAP_FILE_NAME,
    SCRATCH_PREFIX,
    SourceMap,
)
from pack_bundles.discovery import discover_files, ensure_source_dir
from pack_bundles.exceptions import PackBundlesError, SettingsError
from pack_bundles.logging import logger, setup_logging
from pack_bundles.normalize import normalize_all
from pack_bundles.packer import pack_records, write_source_map
from pack_bundles.settings import CollectSettings, Settings, build_settings

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


def parse_args(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> Settings:
    """Parse the pack command line and merge it with the config file and environment.

    Raises:
        SettingsError: if the merged settings are invalid

    Returns:
        Settings: the validated settings
    """
    p = argparse.ArgumentParser(
        prog="pack",
        description="Bundle text files into chunked bundles with a JSON source map.",
    )
    p.add_argument("source_dir", nargs="?", default=None, help="Source directory (default: .).")
    p.add_argument("out_dir", nargs="?", default=None, help=f"Output directory (default: {DEFAULT_OUT_DIR}).")
    p.add_argument(
        "chunk_size",
        nargs="?",
        type=int,
        default=None,
        help=f"Bundle capacity in bytes (default: {DEFAULT_CHUNK_SIZE}).",
    )
    p.add_argument("--exts", dest="extensions", default=None, help="Comma list of extensions (env: PACK_EXTS).")
    p.add_argument(
        "--trim",
        action="store_true",
        default=None,
        help="Trim trailing whitespace on each line (env: PACK_TRIM=1).",
    )
    p.add_argument(
        "--exclude",
        action="append",
        default=None,
        help="Directory name to exclude, repeatable or comma list (env: PACK_EXCLUDE).",
    )
    p.add_argument("--workers", type=int, default=None, help="Parallel workers (env: PACK_WORKERS).")
    p.add_argument("--no-git", action="store_true", default=None, help="Do not use git ls-files.")
    p.add_argument("--config", default=None, help="YAML file with settings.")
    p.add_argument("--log-file", default=None, help="Log file path (default: stderr).")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = vars(p.parse_args(argv))
    config_file = args.pop("config")
    return build_settings(args, config_file=config_file, environ=environ)


def parse_collect_args(argv: Sequence[str] | None = None) -> CollectSettings:
    """Parse the collect command line.

    Returns:
        CollectSettings: the validated settings
    """
    p = argparse.ArgumentParser(
        prog="collect-files",
        description="Copy files of chosen types from a tree into one flat directory.",
    )
    p.add_argument("source_dir", nargs="?", default=".", help="Directory to search (default: .).")
    p.add_argument("dest_dir", nargs="?", default=None, help="Destination directory (default: per preset).")
    p.add_argument(
        "--preset",
        choices=sorted(COLLECT_PRESETS),
        default="files",
        help="Extension set and destination: files, pdfs or code (copied as .txt).",
    )
    p.add_argument("--exts", default=None, help="Comma list of extensions, overrides the preset.")
    p.add_argument("--as-txt", action="store_true", default=None, help="Copy files with a .txt suffix.")
    p.add_argument("--log-file", default="", help="Log file path (default: stderr).")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = p.parse_args(argv)

    exts, dest, as_txt = COLLECT_PRESETS[args.preset]
    return CollectSettings(
        source_dir=Path(args.source_dir),
        dest_dir=Path(args.dest_dir or dest),
        extensions=args.exts or exts,
        as_txt=as_txt if args.as_txt is None else args.as_txt,
        log_file=args.log_file,
    )


def drop_previous_output(files: Sequence[Path], root: Path, out_dir: Path) -> list[Path]:
    """Keep earlier bundles and maps out of the discovered files.

    When `out_dir` is a subdirectory of `root`, everything under it is dropped.
    Otherwise (`out_dir` is `root`, one of its parents, or elsewhere) only the
    bundle and map files sitting directly in `out_dir` are dropped.

    Returns:
        list[Path]: the files to normalize
    """
    if out_dir != root and out_dir.is_relative_to(root):
        return [f for f in files if not f.is_relative_to(out_dir)]
    return [
        f
        for f in files
        if not (f.parent == out_dir and (f.name == MAP_FILE_NAME or f.match(BUNDLE_NAME_GLOB)))
    ]


def run_pack(settings: Settings) -> SourceMap:
    """Discover, normalize and pack; write the bundles and the source map.

    Raises:
        SourceDirectoryError: if the source directory does not exist
        NormalizationError: if any file fails to normalize

    Returns:
        SourceMap: the map that was written
    """
    root = ensure_source_dir(settings.source_dir)
    out_dir = settings.out_dir.resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    files = discover_files(root, settings.extensions, settings.exclude, use_git=not settings.no_git)
    files = drop_previous_output(files, root, out_dir)
    logger.info(
        "discovered",
        files=len(files),
        workers=settings.workers,
        chunk_size=settings.chunk_size,
        extensions=sorted(settings.extensions.suffixes),
    )

    with tempfile.TemporaryDirectory(prefix=SCRATCH_PREFIX, dir=out_dir) as scratch:
        recs = normalize_all(
            files,
            root=root,
            scratch_dir=Path(scratch),
            extensions=settings.extensions,
            trim=settings.trim,
            workers=settings.workers,
            log_file=settings.log_file,
        )
        if not recs:
            logger.info("no_matching_files", source_dir=str(root))
        source_map = pack_records(recs, out_dir, settings.chunk_size)

    map_path = write_source_map(source_map, out_dir)
    logger.info("bundling_complete", bundles_dir=str(out_dir), source_map=str(map_path))
    return source_map


def collect_main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the collect command.

    Returns:
        int: the process exit status
    """
    settings = parse_collect_args(argv)
    if settings.log_file:
        setup_logging(settings.log_file)
    try:
        collect_files(settings.source_dir, settings.dest_dir, settings.extensions, as_txt=settings.as_txt)
    except PackBundlesError as e:
        logger.error("collect_failed", error=str(e))
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the pack command; ``main(["collect", ...])`` runs collect.

    Returns:
        int: 0 on success (empty input included), 1 on a configuration error or a
            worker failure
    """
    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] == "collect":
        return collect_main(args[1:])

    try:
        settings = parse_args(args)
        if settings.log_file:
            setup_logging(settings.log_file)
        run_pack(settings)
    except SettingsError as e:
        logger.error("invalid_configuration", error=str(e))
        return 1
    except PackBundlesError as e:
        logger.error("pack_failed", error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
