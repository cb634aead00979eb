"""Security audit log.

Events are buffered in memory during a run and flushed to an append-only
sink at the end. Entries are never mutated or removed; flushing only
advances the point up to which entries have been written.

Line format:
    [2026-10-19 08:51:02] HASH_MISMATCH - acme/http@1.2.0: Expected: AB.., Got: CD..
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Protocol, Tuple, Union

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class AuditEvent(str, Enum):
    """Kinds of security-relevant events."""
    INSTALL_SUCCESS = "INSTALL_SUCCESS"
    HASH_MISMATCH = "HASH_MISMATCH"
    IDENTITY_MISMATCH = "IDENTITY_MISMATCH"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    UNVERIFIED_APPROVED = "UNVERIFIED_APPROVED"
    INSTALL_REJECTED = "INSTALL_REJECTED"
    FETCH_FAILED = "FETCH_FAILED"
    INTEGRITY_CHECK_FAILED = "INTEGRITY_CHECK_FAILED"


def _now() -> str:
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class AuditEntry:
    """One audit record."""
    kind: str
    package: str
    version: str
    details: str
    timestamp: str = field(default_factory=_now)

    def format(self) -> str:
        details = " ".join(self.details.splitlines())
        return f"[{self.timestamp}] {self.kind} - {self.package}@{self.version}: {details}"


class AuditSink(Protocol):
    """Append-only text destination."""

    def write(self, lines: List[str]) -> None:
        ...


class FileAuditSink:
    """Appends audit lines to a file (yammy-security.log)."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def write(self, lines: List[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")


class AuditLog:
    """In-memory buffer of audit events, in emission order."""

    def __init__(self):
        self._entries: List[AuditEntry] = []
        self._flushed = 0

    def record(
        self,
        kind: Union[AuditEvent, str],
        package: str,
        version: str,
        details: str,
    ) -> AuditEntry:
        kind = kind.value if isinstance(kind, AuditEvent) else str(kind)
        entry = AuditEntry(kind=kind, package=package, version=str(version), details=details)
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> Tuple[AuditEntry, ...]:
        return tuple(self._entries)

    @property
    def pending(self) -> List[AuditEntry]:
        return self._entries[self._flushed:]

    def of_kind(self, kind: Union[AuditEvent, str]) -> List[AuditEntry]:
        kind = kind.value if isinstance(kind, AuditEvent) else str(kind)
        return [e for e in self._entries if e.kind == kind]

    def flush(self, sink: AuditSink) -> int:
        """Write entries not yet flushed. Returns the number written."""
        pending = self.pending
        if not pending:
            return 0
        sink.write([e.format() for e in pending])
        self._flushed = len(self._entries)
        return len(pending)
