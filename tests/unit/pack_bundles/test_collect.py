from __future__ import annotations

from pathlib import Path

import pytest

from pack_bundles.collect import collect_files, free_destination
from pack_bundles.config import ExtensionFilter
from pack_bundles.exceptions import SourceDirectoryError


def write(root: Path, name: str, text: str) -> Path:
    p = root / name
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


@pytest.mark.unit
def test_free_destination_appends_counter(tmp_path: Path) -> None:
    assert free_destination(tmp_path, "report.pdf") == tmp_path / "report.pdf"
    (tmp_path / "report.pdf").touch()
    (tmp_path / "report_1.pdf").touch()

    assert free_destination(tmp_path, "report.pdf") == tmp_path / "report_2.pdf"


@pytest.mark.unit
def test_free_destination_as_txt(tmp_path: Path) -> None:
    assert free_destination(tmp_path, "main.py", as_txt=True) == tmp_path / "main.txt"
    (tmp_path / "main.txt").touch()

    assert free_destination(tmp_path, "main.py", as_txt=True) == tmp_path / "main_1.txt"


@pytest.mark.unit
def test_collect_files_renames_on_collision(tmp_path: Path) -> None:
    src = tmp_path / "src"
    write(src, "a/report.pdf", "first")
    write(src, "b/report.pdf", "second")
    write(src, "c/Notes.TXT", "notes")
    write(src, "d/song.mp3", "la")
    dest = tmp_path / "dest"

    copied = collect_files(src, dest, ExtensionFilter.parse("pdf,txt"))

    assert [(s.relative_to(src).as_posix(), d.name) for s, d in copied] == [
        ("a/report.pdf", "report.pdf"),
        ("b/report.pdf", "report_1.pdf"),
        ("c/Notes.TXT", "Notes.TXT"),
    ]
    assert (dest / "report_1.pdf").read_text(encoding="utf-8") == "second"
    assert not (dest / "song.mp3").exists()


@pytest.mark.unit
def test_collect_files_as_txt(tmp_path: Path) -> None:
    src = tmp_path / "src"
    write(src, "x/main.py", "print('x')\n")
    write(src, "y/main.py", "print('y')\n")
    dest = tmp_path / "code_as_txt"

    collect_files(src, dest, ExtensionFilter.parse("py"), as_txt=True)

    assert sorted(p.name for p in dest.iterdir()) == ["main.txt", "main_1.txt"]
    assert (dest / "main_1.txt").read_text(encoding="utf-8") == "print('y')\n"


@pytest.mark.unit
def test_collect_files_ignores_its_own_destination(tmp_path: Path) -> None:
    src = tmp_path / "src"
    write(src, "a.pdf", "a")
    dest = src / "collected"

    collect_files(src, dest, ExtensionFilter.parse("pdf"))
    collect_files(src, dest, ExtensionFilter.parse("pdf"))

    assert sorted(p.name for p in dest.iterdir()) == ["a.pdf", "a_1.pdf"]


@pytest.mark.unit
def test_collect_files_missing_source(tmp_path: Path) -> None:
    with pytest.raises(SourceDirectoryError):
        collect_files(tmp_path / "absent", tmp_path / "dest", ExtensionFilter.parse("pdf"))
