from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from collections.abc import Iterable

DEFAULT_EXTENSIONS = (
    "txt,md,js,ts,jsx,tsx,java,py,c,cpp,h,cs,sh,html,css,json,xml,yaml,yml,rs,go,php,rb,kt,swift"
)
DEFAULT_OUT_DIR = "bundles_out"
DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024

BEGIN_MARKER = "//// BEGIN "
BUNDLE_NAME_TEMPLATE = "bundle_{index:04d}.txt"
BUNDLE_NAME_GLOB = "bundle_[0-9][0-9][0-9][0-9].txt"
MAP_FILE_NAME = "bundles.map.json"
SCRATCH_PREFIX = ".packtmp."

VCS_DIRS = frozenset({".git"})

COLLECT_PRESETS: dict[str, tuple[str, str, bool]] = {
    # name: (extensions, default destination, copy as .txt)
    "files": ("pdf,txt,md,mp3,wav,m4a,flac", "collected_files", False),
    "pdfs": ("pdf", "collected_pdfs", False),
    "code": ("js,ts,java,py,c,cpp,h,cs,sh,html,css,json,xml,yaml,yml", "code_as_txt", True),
}


def split_csv(value: str | Iterable[str] | None) -> list[str]:
    """Split a comma separated string (or a list of them) into stripped, non-empty items.

    Args:
        value (str | Iterable[str] | None): a string such as ``"a, b,,c"`` or an iterable of such strings

    Returns:
        list[str]: the items, in order, without blanks
    """
    if value is None:
        return []
    raw = [value] if isinstance(value, str) else list(value)
    out: list[str] = []
    for chunk in raw:
        out.extend(item.strip() for item in str(chunk).split(",") if item.strip())
    return out


class ExtensionFilter(BaseModel):
    """Set of accepted file suffixes, evaluated by membership test.

    Suffixes are stored lower-case and without their leading dot, so
    ``ExtensionFilter.parse("PY,.Md")`` accepts ``main.py`` and ``README.MD``.
    """

    model_config = ConfigDict(frozen=True)

    suffixes: frozenset[str] = Field(default_factory=frozenset, description="Accepted suffixes.")

    @field_validator("suffixes", mode="before")
    @classmethod
    def normalize_suffixes(cls, value: object) -> frozenset[str]:
        if isinstance(value, (str, list, tuple, set, frozenset)):
            return frozenset(s.lower().lstrip(".") for s in split_csv(value) if s.lstrip("."))
        return value  # type: ignore[return-value]

    @classmethod
    def parse(cls, value: str | Iterable[str]) -> ExtensionFilter:
        """Build a filter from a comma separated string or an iterable of suffixes.

        Returns:
            ExtensionFilter: the filter accepting the given suffixes
        """
        return cls(suffixes=value)  # type: ignore[arg-type]

    def accepts(self, path: Path | str) -> bool:
        """Check whether the final suffix of ``path`` is accepted (case-insensitive).

        Returns:
            bool: True if the suffix is in the filter
        """
        suffix = Path(path).suffix.lower().lstrip(".")
        return bool(suffix) and suffix in self.suffixes


class FileRecord(BaseModel):
    """A normalized source file waiting to be packed.

    Attributes:
        rel: Path relative to the source root (POSIX separators).
        path: Absolute path of the source file.
        size: Byte length of the normalized content, header line included.
        line_count: Number of newline bytes in the normalized content.
        chunk: Scratch file holding the normalized content.
    """

    model_config = ConfigDict(frozen=True)

    rel: str = Field(..., description="File path relative to the source root")
    path: Path = Field(..., description="Absolute file path")
    size: int = Field(..., ge=0, description="Normalized size in bytes")
    line_count: int = Field(..., ge=0, description="Normalized line count")
    chunk: Path = Field(..., description="Scratch file with the normalized content")

    @property
    def sort_key(self) -> bytes:
        """Byte-wise ordering key, independent of the locale."""
        return self.rel.encode("utf-8", "surrogateescape")


class MapEntry(BaseModel):
    """Location of one source file inside its bundle."""

    model_config = ConfigDict(frozen=True)

    source: str
    offset_start: int = Field(..., ge=0)
    offset_end: int = Field(..., ge=0)
    line_start: int = Field(..., ge=1)
    line_count: int = Field(..., ge=0)


class BundleMapping(BaseModel):
    """A bundle file name with its entries, in packing order."""

    bundle: str
    files: list[MapEntry] = Field(default_factory=list)


class SourceMap(BaseModel):
    """Index of every packed source file, per bundle, in packing order."""

    bundles: list[BundleMapping] = Field(default_factory=list)

    @property
    def file_count(self) -> int:
        """Number of map entries across all bundles."""
        return sum(len(b.files) for b in self.bundles)

    def sources(self) -> list[str]:
        """Return the source paths in bundle order, then file order.

        Returns:
            list[str]: every packed source, in the order it was packed
        """
        return [entry.source for b in self.bundles for entry in b.files]
