"""Tests for yammy.lockfile: the lock record is rebuilt from production."""
import pytest
import yaml

from yammy import __version__
from yammy.errors import NotFoundError, ValidationError
from yammy.hashing import compute_directory_fingerprint
from yammy.lockfile import (
    LockRecord,
    build_lock_record,
    read_lock_file,
    write_lock_file,
)

from conftest import write_package


class TestBuildLockRecord:

    def test_hash_recomputed_from_production(self, tmp_path):
        prod = write_package(tmp_path / "yammies" / "acme" / "http", "acme/http", "1.2.0")
        record = build_lock_record([("acme/http", "1.2.0", prod)], generated="2026-10-19 08:51:02")

        locked = record.packages["acme/http"]
        assert locked.version == "1.2.0"
        assert locked.hash == compute_directory_fingerprint(prod)
        assert record.tool_version == __version__

    def test_unhashable_production_recorded_empty(self, tmp_path):
        """A directory that cannot be fingerprinted is kept with an empty hash."""
        record = build_lock_record([("acme/gone", "1.0.0", tmp_path / "missing")])
        assert record.packages["acme/gone"].hash == ""

    def test_empty(self):
        assert build_lock_record([]).packages == {}


class TestLockFileIO:

    def test_document_shape(self, tmp_path):
        prod = write_package(tmp_path / "prod", "acme/http", "1.2.0")
        record = build_lock_record([("acme/http", "1.2.0", prod)], generated="2026-10-19 08:51:02")
        path = write_lock_file(tmp_path / "yammy.lock", record)

        data = yaml.safe_load(path.read_text())
        assert list(data) == ["generated", "tool-version", "packages"]
        assert data["generated"] == "2026-10-19 08:51:02"
        assert data["packages"]["acme/http"] == {
            "version": "1.2.0",
            "hash": compute_directory_fingerprint(prod),
        }

    def test_overwrites_previous_lock(self, tmp_path):
        """Entries from a previous run never survive."""
        path = tmp_path / "yammy.lock"
        path.write_text("packages:\n  old/pkg:\n    version: 0.1.0\n    hash: AA\n")

        write_lock_file(path, LockRecord(generated="2026-10-19 08:51:02"))

        assert read_lock_file(path).packages == {}
        assert not (tmp_path / "yammy.lock.tmp").exists()

    def test_round_trip(self, tmp_path):
        prod = write_package(tmp_path / "prod", "acme/http", "1.2.0")
        record = build_lock_record([("acme/http", "1.2.0", prod)], generated="2026-10-19 08:51:02")
        path = write_lock_file(tmp_path / "yammy.lock", record)
        assert read_lock_file(path) == record

    def test_read_missing(self, tmp_path):
        with pytest.raises(NotFoundError):
            read_lock_file(tmp_path / "yammy.lock")

    def test_read_invalid(self, tmp_path):
        path = tmp_path / "yammy.lock"
        path.write_text("- not\n- a mapping\n")
        with pytest.raises(ValidationError):
            read_lock_file(path)
