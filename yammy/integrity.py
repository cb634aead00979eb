"""Integrity check of installed packages against declared hashes.

For every package in the project's `packages` mapping:
1. not installed          -> skipped
2. no declared hash       -> unverified (current fingerprint reported)
3. fingerprint matches    -> ok
4. fingerprint differs    -> failed, INTEGRITY_CHECK_FAILED audit event

Each check is independent; any failure makes the whole result fail.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from yammy.audit import AuditEvent, AuditLog, FileAuditSink
from yammy.config import YammyConfig
from yammy.errors import YammyError
from yammy.hashing import compute_directory_fingerprint, fingerprints_match
from yammy.manifest import PackageSource, ProjectManifest, validate_package_name

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_UNVERIFIED = "unverified"
STATUS_SKIPPED = "skipped"


@dataclass
class PackageCheck:
    """Result for a single package."""
    package: str
    status: str
    path: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None
    message: str = ""


@dataclass
class IntegrityResult:
    """Aggregate result of an integrity check."""
    passed: bool
    timestamp: str
    checks: List[PackageCheck] = field(default_factory=list)

    def by_status(self, status: str) -> List[PackageCheck]:
        return [c for c in self.checks if c.status == status]

    def summary(self) -> dict:
        return {
            "passed": self.passed,
            "timestamp": self.timestamp,
            "checked": len(self.checks),
            "ok": len(self.by_status(STATUS_OK)),
            "failed": len(self.by_status(STATUS_FAILED)),
            "unverified": len(self.by_status(STATUS_UNVERIFIED)),
            "skipped": len(self.by_status(STATUS_SKIPPED)),
        }


class IntegrityChecker:
    """
    Re-verify installed packages against the hashes in yammy.yaml.

    Usage:
        checker = IntegrityChecker(config, project)
        result = checker.check()

        if not result.passed:
            for c in result.by_status("failed"):
                print(f"{c.package}: expected {c.expected}, got {c.actual}")
    """

    def __init__(self, config: YammyConfig, project: ProjectManifest, audit: Optional[AuditLog] = None):
        self.config = config
        self.project = project
        self.audit = audit or AuditLog()
        self.algorithm = project.security.hash_algorithm

    def _installed_path(self, name: str, source: PackageSource) -> Path:
        version = self.project.require.get(name)
        if not source.src and version:
            store_path = self.config.repo_path / name / version
            if store_path.is_dir():
                return store_path
        return self.config.repo_path / name

    def check_package(self, name: str, source: PackageSource) -> PackageCheck:
        try:
            validate_package_name(name)
        except YammyError as exc:
            return PackageCheck(package=name, status=STATUS_FAILED, message=exc.message)

        path = self._installed_path(name, source)
        if not path.is_dir():
            return PackageCheck(package=name, status=STATUS_SKIPPED, path=str(path), message="not installed")

        try:
            actual = compute_directory_fingerprint(path, self.algorithm)
        except YammyError as exc:
            return PackageCheck(
                package=name, status=STATUS_FAILED, path=str(path),
                expected=source.hash, message=exc.message,
            )

        if not source.hash:
            return PackageCheck(
                package=name, status=STATUS_UNVERIFIED, path=str(path),
                actual=actual, message="no hash specified",
            )

        if fingerprints_match(source.hash, actual):
            return PackageCheck(
                package=name, status=STATUS_OK, path=str(path),
                expected=source.hash, actual=actual, message="integrity OK",
            )

        return PackageCheck(
            package=name, status=STATUS_FAILED, path=str(path),
            expected=source.hash, actual=actual, message="INTEGRITY VIOLATION",
        )

    def check(self) -> IntegrityResult:
        """Check every declared package and report an aggregate outcome."""
        print("Checking package integrity...\n")
        checks = []

        for name, source in self.project.packages.items():
            result = self.check_package(name, source)
            checks.append(result)
            self._report(result)

            if result.status == STATUS_FAILED:
                self.audit.record(
                    AuditEvent.INTEGRITY_CHECK_FAILED,
                    name,
                    self.project.require.get(name, "unknown"),
                    f"Expected: {result.expected}, Got: {result.actual or result.message}",
                )

        result = IntegrityResult(
            passed=not any(c.status == STATUS_FAILED for c in checks),
            timestamp=datetime.now(timezone.utc).isoformat(),
            checks=checks,
        )

        print()
        if result.passed:
            print("All packages passed integrity check")
        else:
            print("SECURITY WARNING: Some packages failed integrity check!")
            print("Run 'yammy install --force' to reinstall packages from trusted sources.")

        self.audit.flush(FileAuditSink(self.config.security_log))
        return result

    @staticmethod
    def _report(check: PackageCheck) -> None:
        if check.status == STATUS_SKIPPED:
            print(f"{check.package}: not installed (skipping)")
        elif check.status == STATUS_UNVERIFIED:
            print(f"{check.package}: no hash specified")
            print(f"   Current hash: {check.actual}")
        elif check.status == STATUS_OK:
            print(f"{check.package}: integrity OK ({check.actual})")
        elif check.actual is None:
            print(f"{check.package}: CHECK FAILED - {check.message}")
        else:
            print(f"{check.package}: INTEGRITY VIOLATION!")
            print(f"   Expected: {check.expected}")
            print(f"   Got:      {check.actual}")
            print("   DO NOT USE THIS PACKAGE!")
