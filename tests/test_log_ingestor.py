# tests/test_log_ingestor.py
import pytest

from authwatch.errors import InputDirectoryError
from authwatch.log_ingestor import discover_sources


def test_discover_sources_sorted_and_filtered(tmp_path):
    for name in ("b.log", "a.json", "c.JSON", "notes.txt"):
        (tmp_path / name).write_text("")
    (tmp_path / "dir.log").mkdir()

    found = discover_sources(tmp_path)

    assert [(p.name, s) for p, s in found] == [
        ("a.json", "cloud-audit"),
        ("b.log", "ssh-daemon"),
        ("c.JSON", "cloud-audit"),
    ]


def test_missing_directory_is_fatal(tmp_path):
    with pytest.raises(InputDirectoryError):
        discover_sources(tmp_path / "missing")
