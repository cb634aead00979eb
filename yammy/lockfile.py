"""
lockfile.py - Lock record of what an install run left in production.

The lock record is derived, never hand-edited: it is rebuilt from scratch
after every install run. Each fingerprint is recomputed from the production
directory rather than copied from the quarantine-time value, so writing the
lock is also a second check that promotion left the verified tree in place.

The file is replaced as a whole (staged file + rename), never merged with a
previous lock.

Document:
    generated: '2026-10-19 08:51:02'
    tool-version: 1.0.0
    packages:
      acme/http:
        version: 1.2.0
        hash: 9F3C0D2A81B4E6F7
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple, Union

import yaml

from yammy import __version__
from yammy.audit import TIMESTAMP_FORMAT
from yammy.errors import NotFoundError, ValidationError, YammyError
from yammy.hashing import DEFAULT_ALGORITHM, compute_directory_fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockedPackage:
    version: str
    hash: str


@dataclass
class LockRecord:
    """In-memory form of yammy.lock."""
    generated: str
    tool_version: str = __version__
    packages: Dict[str, LockedPackage] = field(default_factory=dict)

    def to_document(self) -> dict:
        return {
            "generated": self.generated,
            "tool-version": self.tool_version,
            "packages": {
                name: {"version": locked.version, "hash": locked.hash}
                for name, locked in sorted(self.packages.items())
            },
        }

    @classmethod
    def from_document(cls, data: dict) -> "LockRecord":
        if not isinstance(data, dict):
            raise ValidationError("Invalid lock file: not a mapping")

        packages = {}
        for name, entry in (data.get("packages") or {}).items():
            entry = entry or {}
            packages[str(name)] = LockedPackage(
                version=str(entry.get("version", "")),
                hash=str(entry.get("hash") or ""),
            )
        return cls(
            generated=str(data.get("generated", "")),
            tool_version=str(data.get("tool-version", "")),
            packages=packages,
        )


def build_lock_record(
    installed: Iterable[Tuple[str, str, Path]],
    algorithm: str = DEFAULT_ALGORITHM,
    generated: Optional[str] = None,
) -> LockRecord:
    """Build a lock record from (name, version, production path) triples.

    A production directory that cannot be fingerprinted is recorded with an
    empty hash and a warning.
    """
    record = LockRecord(
        generated=generated or datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT),
    )
    for name, version, production in installed:
        fingerprint = ""
        try:
            fingerprint = compute_directory_fingerprint(production, algorithm)
        except YammyError as exc:
            logger.warning("Cannot fingerprint %s for lock file: %s", production, exc)
        record.packages[name] = LockedPackage(version=str(version), hash=fingerprint)
    return record


def write_lock_file(path: Union[str, Path], record: LockRecord) -> Path:
    """Replace the lock file with record."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    text = yaml.safe_dump(record.to_document(), default_flow_style=False, sort_keys=False)
    staged = path.with_name(path.name + ".tmp")
    with open(staged, "w", encoding="utf-8") as f:
        f.write(text)
    os.replace(staged, path)
    return path


def read_lock_file(path: Union[str, Path]) -> LockRecord:
    """Load an existing lock file."""
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(f"Lock file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ValidationError(f"Invalid lock file: {path} ({exc})") from exc
    return LockRecord.from_document(data)
