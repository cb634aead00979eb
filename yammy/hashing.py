"""
hashing.py - Directory fingerprints for package integrity.

Single source of truth for every fingerprint used in a trust decision.

A fingerprint covers the security-relevant files of a directory tree:
- excluded names (VCS metadata, lock file, caches, editor artifacts) are skipped
- dotfiles are skipped, except the allow-listed ones (.env)
- symlinks are never followed or hashed
- only allow-listed extensions are included, up to MAX_FILE_SIZE each

Surviving files are sorted by their path relative to the root, then fed to a
single streaming context as (relative path, contents) pairs. Paths are used
as raw filesystem bytes, so names that are not valid UTF-8 still hash. The
digest is rendered as uppercase hex.

xxh64 guards against corruption and naive tampering, not against an
adversary able to search for collisions offline. "sha256" is available for
projects that opt in through their security policy.

Usage:
    from yammy.hashing import compute_directory_fingerprint, fingerprints_match

    h = compute_directory_fingerprint(Path("yammies/acme/http"))
    fingerprints_match(expected, h)
"""
from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Tuple, Union

import xxhash

from yammy.errors import (
    InternalError,
    NotFoundError,
    NothingToFingerprintError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Source, config and markup formats that affect package behaviour
HASHED_FILE_EXTENSIONS = frozenset({
    "php",
    "phtml",
    "py",
    "html",
    "css",
    "js",
    "ts",
    "json",
    "yaml",
    "yml",
    "toml",
    "xml",
    "ini",
    "cfg",
    "env",
    "lock",
})

# Names that never take part in a fingerprint
EXCLUDED_NAMES = frozenset({
    ".git",
    ".gitignore",
    ".github",
    ".gitlab-ci.yml",
    "yammy.lock",
    "yammy-security.log",
    "vendor",
    "node_modules",
    ".DS_Store",
    "Thumbs.db",
    ".idea",
    ".vscode",
    "__pycache__",
    ".pytest_cache",
    "composer.lock",
    "package-lock.json",
})

ALLOWED_DOTFILES = frozenset({".env"})

MAX_FILE_SIZE = 100 * 1024 * 1024
CHUNK_SIZE = 65536

DEFAULT_ALGORITHM = "xxh64"
ALGORITHMS: Dict[str, Callable] = {
    "xxh64": xxhash.xxh64,
    "sha256": hashlib.sha256,
}


def _new_context(algorithm: str):
    try:
        return ALGORITHMS[algorithm]()
    except KeyError:
        raise ValidationError(f"Unsupported hash algorithm: {algorithm}") from None


def _extension(name: str) -> str:
    # ".env" has extension "env"; Path.suffix would report none
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def _is_excluded(name: str) -> bool:
    if name in EXCLUDED_NAMES:
        return True
    return name.startswith(".") and name not in ALLOWED_DOTFILES


def _scan(directory: Path, root: Path, found: List[Tuple[str, Path]]) -> None:
    with os.scandir(directory) as it:
        entries = list(it)

    for entry in entries:
        if _is_excluded(entry.name):
            continue

        path = Path(entry.path)

        if entry.is_symlink():
            logger.warning("Symlink detected and skipped: %s", path)
            continue

        if entry.is_dir(follow_symlinks=False):
            try:
                _scan(path, root, found)
            except OSError as exc:
                logger.warning("Cannot scan directory %s: %s", path, exc)
            continue

        if not entry.is_file(follow_symlinks=False):
            continue

        if _extension(entry.name) not in HASHED_FILE_EXTENSIONS:
            continue

        try:
            size = entry.stat(follow_symlinks=False).st_size
        except OSError as exc:
            logger.warning("Cannot get size of %s: %s", path, exc)
            continue

        if size > MAX_FILE_SIZE:
            logger.warning("File too large, skipping: %s (%s)", path, format_bytes(size))
            continue

        if not os.access(path, os.R_OK):
            logger.warning("File not readable, skipping: %s", path)
            continue

        found.append((path.relative_to(root).as_posix(), path))


def collect_package_files(root: Union[str, Path]) -> List[Tuple[str, Path]]:
    """List the files that take part in a directory fingerprint.

    Args:
        root: Package root directory

    Returns:
        (relative posix path, absolute path) pairs sorted by relative path

    Raises:
        NotFoundError: If root is not a directory
        InternalError: If root itself cannot be read
    """
    root = Path(root)
    if not root.is_dir():
        raise NotFoundError(f"Package directory does not exist: {root}")

    found: List[Tuple[str, Path]] = []
    try:
        _scan(root, root, found)
    except OSError as exc:
        raise InternalError(f"Cannot read directory: {root} ({exc})") from exc

    found.sort(key=lambda item: os.fsencode(item[0]))
    return found


def _update_from_file(context, path: Path) -> int:
    total = 0
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                context.update(chunk)
                total += len(chunk)
    except OSError as exc:
        raise InternalError(f"Failed to hash file: {path} ({exc})") from exc
    return total


def compute_directory_fingerprint(
    root: Union[str, Path],
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """Compute the integrity fingerprint of a package directory.

    Args:
        root: Package root directory
        algorithm: Key of ALGORITHMS (default xxh64)

    Returns:
        Uppercase hex digest

    Raises:
        NotFoundError: If root is not a directory
        NothingToFingerprintError: If no eligible file remains after filtering
        InternalError: If an eligible file cannot be read while hashing
    """
    files = collect_package_files(root)
    if not files:
        raise NothingToFingerprintError(
            f"No hashable files found in package directory: {root}"
        )

    context = _new_context(algorithm)
    total_size = 0
    for rel_path, path in files:
        context.update(os.fsencode(rel_path))
        total_size += _update_from_file(context, path)

    digest = context.hexdigest().upper()
    logger.debug(
        "Hash computed: %s (files: %d, size: %s)",
        digest,
        len(files),
        format_bytes(total_size),
    )
    return digest


def compute_identity_fingerprint(name: str, version: str) -> str:
    """Hash a (name, version) pair for bookkeeping.

    Not a content fingerprint: never use it in a trust decision.
    """
    if not name or not version:
        raise ValidationError("Package name and version cannot be empty")

    context = xxhash.xxh64()
    context.update(name.encode("utf-8"))
    context.update(version.encode("utf-8"))
    return context.hexdigest().upper()


def fingerprints_match(expected: str, actual: str) -> bool:
    """Case-insensitive fingerprint comparison. Empty values never match."""
    if not expected or not actual:
        return False
    return expected.strip().upper() == actual.strip().upper()


def format_bytes(size: float) -> str:
    """Format a byte count for humans (e.g. "1.5 MB")."""
    units = ["B", "KB", "MB", "GB"]
    index = 0
    while size >= 1024 and index < len(units) - 1:
        size /= 1024
        index += 1
    return f"{round(size, 2)} {units[index]}"


# =============================================================================
# Diagnostics
# =============================================================================

@dataclass
class FileInfo:
    """One eligible file of a package directory."""
    path: str
    size: int
    modified: str
    hash: str


@dataclass
class DirectoryDiff:
    """Eligible-file differences between two directories."""
    only_in_first: List[str] = field(default_factory=list)
    only_in_second: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)

    @property
    def identical(self) -> bool:
        return not (self.only_in_first or self.only_in_second or self.modified)


def hash_file(path: Union[str, Path], algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Digest of a single file's contents (uppercase hex)."""
    context = _new_context(algorithm)
    _update_from_file(context, Path(path))
    return context.hexdigest().upper()


def list_package_files(
    root: Union[str, Path],
    algorithm: str = DEFAULT_ALGORITHM,
) -> List[FileInfo]:
    """Describe every file that takes part in the fingerprint of root."""
    info = []
    for rel_path, path in collect_package_files(root):
        stat = path.stat()
        info.append(FileInfo(
            path=rel_path,
            size=stat.st_size,
            modified=datetime.fromtimestamp(stat.st_mtime, timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            hash=hash_file(path, algorithm),
        ))
    return info


def compare_directories(
    first: Union[str, Path],
    second: Union[str, Path],
    algorithm: str = DEFAULT_ALGORITHM,
) -> DirectoryDiff:
    """Compare the eligible files of two package directories.

    Useful for diagnosing a mismatch against a retained holding directory.
    """
    files1 = dict(collect_package_files(first))
    files2 = dict(collect_package_files(second))

    diff = DirectoryDiff(
        only_in_first=sorted(set(files1) - set(files2)),
        only_in_second=sorted(set(files2) - set(files1)),
    )
    for rel_path in sorted(set(files1) & set(files2)):
        if hash_file(files1[rel_path], algorithm) != hash_file(files2[rel_path], algorithm):
            diff.modified.append(rel_path)
    return diff


__all__ = [
    "HASHED_FILE_EXTENSIONS",
    "EXCLUDED_NAMES",
    "ALLOWED_DOTFILES",
    "MAX_FILE_SIZE",
    "ALGORITHMS",
    "DEFAULT_ALGORITHM",
    "collect_package_files",
    "compute_directory_fingerprint",
    "compute_identity_fingerprint",
    "fingerprints_match",
    "format_bytes",
    "FileInfo",
    "DirectoryDiff",
    "hash_file",
    "list_package_files",
    "compare_directories",
]
