"""
Tests for yammy.hashing: directory fingerprints and diagnostics.

Tests:
1. Determinism and sensitivity to content, path and added files
2. Exclusions (VCS metadata, dotfiles, caches, unlisted extensions)
3. Symlinks are never followed
4. Empty trees are an error, not an empty hash
5. Diagnostics (list_package_files, compare_directories)
6. Listing order, non-UTF-8 names and unreadable subtrees
"""
import hashlib
import os
import shutil

import pytest
import xxhash

from yammy import hashing
from yammy.errors import NotFoundError, NothingToFingerprintError, ValidationError
from yammy.hashing import (
    collect_package_files,
    compare_directories,
    compute_directory_fingerprint,
    compute_identity_fingerprint,
    fingerprints_match,
    format_bytes,
    hash_file,
    list_package_files,
)

from conftest import write_raw_name


@pytest.fixture
def pkg(tmp_path):
    root = tmp_path / "pkg"
    (root / "src").mkdir(parents=True)
    (root / "yammy.yaml").write_text("name: acme/http\nversion: 1.0.0\n")
    (root / "src" / "Client.php").write_text("<?php\nclass Client {}\n")
    return root


class TestDirectoryFingerprint:
    """compute_directory_fingerprint over eligible files."""

    def test_deterministic(self, pkg):
        """Same tree, same fingerprint."""
        assert compute_directory_fingerprint(pkg) == compute_directory_fingerprint(pkg)

    def test_uppercase_hex_xxh64(self, pkg):
        """Default digest is a 16 character uppercase hex xxh64."""
        h = compute_directory_fingerprint(pkg)
        assert len(h) == 16
        assert h == h.upper()
        int(h, 16)

    def test_matches_manual_stream(self, pkg):
        """Relative path then contents, per file, in sorted path order."""
        ctx = xxhash.xxh64()
        for rel in ["src/Client.php", "yammy.yaml"]:
            ctx.update(rel.encode("utf-8"))
            ctx.update((pkg / rel).read_bytes())
        assert compute_directory_fingerprint(pkg) == ctx.hexdigest().upper()

    def test_sha256_algorithm(self, pkg):
        """sha256 yields a 64 character digest of the same stream."""
        ctx = hashlib.sha256()
        for rel in ["src/Client.php", "yammy.yaml"]:
            ctx.update(rel.encode("utf-8"))
            ctx.update((pkg / rel).read_bytes())
        assert compute_directory_fingerprint(pkg, "sha256") == ctx.hexdigest().upper()

    def test_unknown_algorithm(self, pkg):
        with pytest.raises(ValidationError):
            compute_directory_fingerprint(pkg, "md5")

    def test_content_change_changes_hash(self, pkg):
        before = compute_directory_fingerprint(pkg)
        (pkg / "src" / "Client.php").write_text("<?php\nclass Client { }\n")
        assert compute_directory_fingerprint(pkg) != before

    def test_rename_changes_hash(self, pkg):
        """Paths are part of the stream, so moving a file is detected."""
        before = compute_directory_fingerprint(pkg)
        (pkg / "src" / "Client.php").rename(pkg / "src" / "Server.php")
        assert compute_directory_fingerprint(pkg) != before

    def test_added_file_changes_hash(self, pkg):
        before = compute_directory_fingerprint(pkg)
        (pkg / "src" / "extra.js").write_text("alert(1)")
        assert compute_directory_fingerprint(pkg) != before

    def test_location_independent(self, pkg, tmp_path):
        """Only relative paths are hashed."""
        copy = tmp_path / "elsewhere" / "copy"
        shutil.copytree(pkg, copy)
        assert compute_directory_fingerprint(copy) == compute_directory_fingerprint(pkg)

    def test_empty_tree_is_error(self, tmp_path):
        """A tree with nothing eligible never yields a fingerprint."""
        empty = tmp_path / "empty"
        empty.mkdir()
        (empty / "README.md").write_text("not hashed")
        with pytest.raises(NothingToFingerprintError):
            compute_directory_fingerprint(empty)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(NotFoundError):
            compute_directory_fingerprint(tmp_path / "nope")


class TestExclusions:
    """Files that never take part in a fingerprint."""

    def test_excluded_names_do_not_affect_hash(self, pkg):
        before = compute_directory_fingerprint(pkg)

        (pkg / ".git").mkdir()
        (pkg / ".git" / "config.ini").write_text("[core]")
        (pkg / "node_modules" / "x").mkdir(parents=True)
        (pkg / "node_modules" / "x" / "index.js").write_text("1")
        (pkg / "vendor").mkdir()
        (pkg / "vendor" / "autoload.php").write_text("<?php")
        (pkg / "yammy.lock").write_text("packages: {}")
        (pkg / "composer.lock").write_text("{}")
        (pkg / ".hidden.json").write_text("{}")
        (pkg / "notes.txt").write_text("unlisted extension")

        assert compute_directory_fingerprint(pkg) == before

    def test_allowed_dotfile_is_hashed(self, pkg):
        """.env is the one dotfile that counts."""
        before = compute_directory_fingerprint(pkg)
        (pkg / ".env").write_text("SECRET=1")
        rel_paths = [rel for rel, _ in collect_package_files(pkg)]
        assert ".env" in rel_paths
        assert compute_directory_fingerprint(pkg) != before

    def test_extension_case_insensitive(self, pkg):
        (pkg / "LOUD.PHP").write_text("<?php")
        assert "LOUD.PHP" in [rel for rel, _ in collect_package_files(pkg)]

    def test_oversize_file_skipped(self, pkg, monkeypatch):
        """Files over the size cap are skipped with a warning."""
        monkeypatch.setattr("yammy.hashing.MAX_FILE_SIZE", 10)
        (pkg / "big.json").write_text("x" * 11)
        assert "big.json" not in [rel for rel, _ in collect_package_files(pkg)]

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlinks_never_followed(self, pkg, tmp_path):
        """A symlink to a file or directory contributes nothing."""
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "secret.php").write_text("<?php // secret")

        before = compute_directory_fingerprint(pkg)
        os.symlink(outside, pkg / "linked_dir")
        os.symlink(outside / "secret.php", pkg / "linked.php")

        assert compute_directory_fingerprint(pkg) == before
        rel_paths = [rel for rel, _ in collect_package_files(pkg)]
        assert not any(rel.startswith("linked") for rel in rel_paths)

    def test_sorted_posix_paths(self, pkg):
        (pkg / "a").mkdir()
        (pkg / "a" / "z.py").write_text("")
        rel_paths = [rel for rel, _ in collect_package_files(pkg)]
        assert rel_paths == sorted(rel_paths)
        assert "a/z.py" in rel_paths


class TestHelpers:
    """Identity fingerprint, comparison, formatting."""

    def test_identity_fingerprint(self):
        ctx = xxhash.xxh64()
        ctx.update(b"acme/http")
        ctx.update(b"1.0.0")
        assert compute_identity_fingerprint("acme/http", "1.0.0") == ctx.hexdigest().upper()

    def test_identity_fingerprint_requires_both(self):
        with pytest.raises(ValidationError):
            compute_identity_fingerprint("", "1.0.0")

    def test_fingerprints_match_case_insensitive(self):
        assert fingerprints_match("abcdef0123456789", "ABCDEF0123456789")
        assert fingerprints_match(" ABCDEF0123456789\n", "ABCDEF0123456789")
        assert not fingerprints_match("ABCDEF0123456789", "ABCDEF0123456788")

    def test_empty_never_matches(self):
        assert not fingerprints_match("", "")
        assert not fingerprints_match(None, "ABC")

    def test_format_bytes(self):
        assert format_bytes(512) == "512 B"
        assert format_bytes(1536) == "1.5 KB"
        assert format_bytes(5 * 1024 * 1024) == "5.0 MB"


class TestDiagnostics:
    """list_package_files and compare_directories."""

    def test_list_package_files(self, pkg):
        info = list_package_files(pkg)
        assert [i.path for i in info] == ["src/Client.php", "yammy.yaml"]
        client = info[0]
        assert client.size == len("<?php\nclass Client {}\n")
        assert client.hash == hash_file(pkg / "src" / "Client.php")

    def test_compare_identical(self, pkg, tmp_path):
        copy = tmp_path / "copy"
        shutil.copytree(pkg, copy)
        assert compare_directories(pkg, copy).identical

    def test_compare_reports_differences(self, pkg, tmp_path):
        copy = tmp_path / "copy"
        shutil.copytree(pkg, copy)
        (copy / "src" / "Client.php").write_text("<?php // tampered")
        (copy / "src" / "backdoor.php").write_text("<?php")
        (pkg / "only_here.js").write_text("1")

        diff = compare_directories(pkg, copy)
        assert not diff.identical
        assert diff.modified == ["src/Client.php"]
        assert diff.only_in_second == ["src/backdoor.php"]
        assert diff.only_in_first == ["only_here.js"]


class TestScanRobustness:
    """Listing order, odd file names and unreadable subtrees."""

    def test_listing_order_does_not_matter(self, pkg, monkeypatch):
        """The fingerprint is the same however the filesystem orders entries."""
        (pkg / "lib").mkdir()
        for name in ("b.php", "a.php", "c.js"):
            (pkg / "lib" / name).write_text(name)
        (pkg / "zz.json").write_text("{}")
        before = compute_directory_fingerprint(pkg)

        real_scandir = os.scandir

        class ReversedScandir:
            def __init__(self, path):
                with real_scandir(path) as it:
                    self.entries = sorted(it, key=lambda e: e.name, reverse=True)

            def __enter__(self):
                return iter(self.entries)

            def __exit__(self, *exc):
                return False

        monkeypatch.setattr("yammy.hashing.os.scandir", ReversedScandir)
        assert compute_directory_fingerprint(pkg) == before

    def test_non_utf8_file_name(self, pkg):
        """Names that are not valid UTF-8 are hashed as raw bytes."""
        write_raw_name(pkg, b"\xff.php", b"<?php // raw")

        ctx = xxhash.xxh64()
        for raw in [b"src/Client.php", b"yammy.yaml", b"\xff.php"]:
            ctx.update(raw)
            with open(os.path.join(os.fsencode(pkg), raw), "rb") as f:
                ctx.update(f.read())

        assert compute_directory_fingerprint(pkg) == ctx.hexdigest().upper()

    def test_unreadable_subtree_dropped(self, pkg, monkeypatch, caplog):
        """A subdirectory that cannot be scanned is skipped with a warning."""
        expected = compute_directory_fingerprint(pkg)
        (pkg / "locked").mkdir()
        (pkg / "locked" / "hidden.php").write_text("<?php")
        deny_directory(monkeypatch, "locked")

        assert compute_directory_fingerprint(pkg) == expected
        assert "Cannot scan directory" in caplog.text

    def test_only_subtree_unreadable(self, tmp_path, monkeypatch):
        """If the unreadable subtree held every eligible file, nothing is fingerprinted."""
        root = tmp_path / "pkg"
        (root / "locked").mkdir(parents=True)
        (root / "locked" / "main.php").write_text("<?php")
        deny_directory(monkeypatch, "locked")

        with pytest.raises(NothingToFingerprintError):
            compute_directory_fingerprint(root)


def deny_directory(monkeypatch, dirname):
    """Make scanning any directory called dirname fail with PermissionError."""
    real_scan = hashing._scan

    def scan(directory, root, found):
        if directory.name == dirname:
            raise PermissionError(13, "Permission denied", str(directory))
        return real_scan(directory, root, found)

    monkeypatch.setattr(hashing, "_scan", scan)
