"""Tests for the atomic JSON persistence helpers."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import BaseModel

from autowriter.errors import PersistenceError
from autowriter.shared.storage import atomic_write_text, load_model, save_model


class _Record(BaseModel):
    name: str
    count: int = 0


class TestAtomicWrite:
    def test_creates_parent_dirs(self, tmp_path: Path):
        path = tmp_path / "a" / "b" / "file.json"
        atomic_write_text(path, "{}")
        assert path.read_text() == "{}"

    def test_leaves_no_temp_files(self, tmp_path: Path):
        path = tmp_path / "file.json"
        atomic_write_text(path, "one")
        atomic_write_text(path, "two")
        assert path.read_text() == "two"
        assert [p.name for p in tmp_path.iterdir()] == ["file.json"]

    def test_failure_raises_persistence_error(self, tmp_path: Path):
        path = tmp_path / "file.json"
        with patch.object(Path, "replace", side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError, match="disk full"):
                atomic_write_text(path, "data")
        assert list(tmp_path.iterdir()) == []


class TestModelRoundTrip:
    def test_save_and_load(self, tmp_path: Path):
        path = tmp_path / "record.json"
        save_model(path, _Record(name="x", count=3))
        assert load_model(path, _Record) == _Record(name="x", count=3)

    def test_missing_file_is_none(self, tmp_path: Path):
        assert load_model(tmp_path / "missing.json", _Record) is None

    def test_corrupt_file_is_none(self, tmp_path: Path, caplog):
        path = tmp_path / "record.json"
        path.write_text("{not json")
        assert load_model(path, _Record) is None
        assert "Corrupt state file" in caplog.text

    def test_schema_mismatch_is_none(self, tmp_path: Path):
        path = tmp_path / "record.json"
        path.write_text('{"count": "many"}')
        assert load_model(path, _Record) is None
