"""
installer.py - Install the packages declared in yammy.yaml.

Per-package state machine:
    PENDING -> FETCHING -> MANIFEST_LOADED -> HASH_COMPUTED
            -> VERIFIED | UNVERIFIED_APPROVED | REJECTED
            -> PROMOTED -> DEPENDENCIES_RESOLVED

BINDING CONSTRAINTS:
- Fetched content stays in quarantine until its fingerprint is accepted
- Manifest name must equal the requested name (identity check before hashing)
- Declared hash present: equal -> VERIFIED, unequal -> REJECTED (HASH_MISMATCH)
- No declared hash: approved only by YAMMY_AUTO_APPROVE or an explicit "y"
- Holding directories of failed packages are never deleted
- A failure abandons one package branch; siblings are still attempted
- The installed-set bounds the recursion (cycles, diamonds)
- Production trees never nest (a bare "acme" and "acme/http" cannot coexist)

Usage:
    config = load_config(project_root)
    project = load_project_manifest(config.manifest_file)
    report = Installer(config, project).install_packages()
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional

from yammy.audit import AuditEvent, AuditLog, FileAuditSink
from yammy.config import AUTO_APPROVE_ENV, MANIFEST_FILENAME, YammyConfig
from yammy.errors import (
    FetchError,
    HashMismatchError,
    IdentityMismatchError,
    IntegrityError,
    InternalError,
    MissingRequirementError,
    PackageNotFoundError,
    PolicyError,
    PromotionError,
    ValidationError,
    YammyError,
)
from yammy.fetcher import GitFetcher, SourceFetcher, validate_source_locator
from yammy.hashing import compute_directory_fingerprint, fingerprints_match
from yammy.lockfile import LockRecord, build_lock_record, write_lock_file
from yammy.manifest import (
    PackageManifest,
    PackageSource,
    ProjectManifest,
    load_package_manifest,
    validate_package_name,
    validate_version,
)
from yammy.prompt import Prompter, TerminalPrompter, is_affirmative
from yammy.quarantine import QuarantineManager

logger = logging.getLogger(__name__)

ORIGIN_REMOTE = "remote"
ORIGIN_LOCAL = "local"
ORIGIN_EXISTING = "existing"


class InstallState(str, Enum):
    """States of the per-package install state machine."""
    PENDING = "pending"
    FETCHING = "fetching"
    MANIFEST_LOADED = "manifest_loaded"
    HASH_COMPUTED = "hash_computed"
    VERIFIED = "verified"
    UNVERIFIED_APPROVED = "unverified_approved"
    REJECTED = "rejected"
    ABANDONED = "abandoned"
    PROMOTED = "promoted"
    DEPENDENCIES_RESOLVED = "dependencies_resolved"


class PackageKey(NamedTuple):
    """Package identity within a run."""
    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass
class InstalledPackage:
    """Entry of the installed-set."""
    key: PackageKey
    production_path: Path
    origin: str
    fingerprint: Optional[str] = None
    verified: bool = False
    manifest: Optional[PackageManifest] = None
    state: InstallState = InstallState.PROMOTED


@dataclass
class PackageAttempt:
    """Progress of one package through the state machine."""
    key: PackageKey
    state: InstallState = InstallState.PENDING
    holding_path: Optional[Path] = None


@dataclass
class PackageFailure:
    """A package branch that was abandoned or rejected."""
    key: PackageKey
    state: InstallState
    reached: InstallState
    error: YammyError
    holding_path: Optional[Path] = None


@dataclass
class InstallContext:
    """Accumulators for one install run, passed through the recursion."""
    installed: Dict[PackageKey, InstalledPackage] = field(default_factory=dict)
    failed: Dict[PackageKey, PackageFailure] = field(default_factory=dict)
    fetched: List[PackageKey] = field(default_factory=list)


@dataclass
class InstallReport:
    """Outcome of install_packages()."""
    installed: List[InstalledPackage] = field(default_factory=list)
    failed: List[PackageFailure] = field(default_factory=list)
    fetched: List[PackageKey] = field(default_factory=list)
    lock: Optional[LockRecord] = None

    @property
    def success(self) -> bool:
        return not self.failed


class Installer:
    """Drives the per-package state machine over the dependency graph.

    The installer owns one InstallContext; calling install_packages() again
    on the same instance re-walks the declared set without fetching.
    """

    def __init__(
        self,
        config: YammyConfig,
        project: ProjectManifest,
        fetcher: Optional[SourceFetcher] = None,
        quarantine: Optional[QuarantineManager] = None,
        audit: Optional[AuditLog] = None,
        prompter: Optional[Prompter] = None,
    ):
        self.config = config
        self.project = project
        self.fetcher = fetcher or GitFetcher()
        self.quarantine = quarantine or QuarantineManager(config.quarantine_path)
        self.audit = audit or AuditLog()
        self.prompter = prompter or TerminalPrompter()
        self.algorithm = project.security.hash_algorithm
        self.context = InstallContext()

    # =========================================================================
    # Run
    # =========================================================================

    def install_packages(self) -> InstallReport:
        """Install everything in the project's require mapping, then write the lock file.

        Raises:
            MissingRequirementError: A package marked `required` is absent
        """
        context = self.context
        if not self.project.require:
            print("No packages to install (no 'require' section in yammy.yaml)")
            return InstallReport()

        print("Starting package installation...\n")
        fetched_before = len(context.fetched)
        try:
            for name, version in self.project.require.items():
                self.install_package(name, version)
            lock = self.save_lock_file()
        finally:
            self.flush_audit()

        report = InstallReport(
            installed=list(context.installed.values()),
            failed=list(context.failed.values()),
            fetched=context.fetched[fetched_before:],
            lock=lock,
        )

        if report.success:
            print("\nInstallation complete!")
        else:
            print(f"\nInstallation finished with {len(report.failed)} failed package(s):")
            for failure in report.failed:
                print(f"  {failure.key}: {failure.state.value} ({failure.error.message.splitlines()[0]})")
        return report

    def install_package(self, name: str, version: str) -> Optional[InstalledPackage]:
        """Run the state machine for one package and recurse into its dependencies.

        Returns:
            The installed-set entry, or None if the package was abandoned
        """
        context = self.context
        key = PackageKey(str(name), str(version))

        if key in context.installed:
            print(f"{name} ({version}) already processed in this session.")
            return context.installed[key]
        if key in context.failed:
            print(f"{name} ({version}) already failed in this session, skipping.")
            return None

        attempt = PackageAttempt(key)
        try:
            installed = self._process(attempt)
        except MissingRequirementError as exc:
            self._abandon(attempt, exc)
            raise
        except YammyError as exc:
            self._abandon(attempt, exc)
            return None
        except OSError as exc:
            self._abandon(attempt, InternalError(str(exc), package=key.name, version=key.version))
            return None

        context.installed[key] = installed
        self._resolve_dependencies(installed)
        return installed

    # =========================================================================
    # State machine
    # =========================================================================

    def _process(self, attempt: PackageAttempt) -> InstalledPackage:
        name, version = attempt.key
        validate_package_name(name)
        validate_version(version)

        source = self.project.source_for(name)
        if not source.src:
            return self._load_from_store(attempt, source)

        existing = self._find_existing(attempt, source)
        if existing is not None:
            return existing

        return self._fetch_and_verify(attempt, source)

    def _production_path(self, name: str) -> Path:
        return self.config.repo_path / name

    def _load_from_store(self, attempt: PackageAttempt, source: PackageSource) -> InstalledPackage:
        """Packages without a remote source must already be in the local store."""
        name, version = attempt.key
        manifest_path = self.config.repo_path / name / version / MANIFEST_FILENAME

        if not manifest_path.is_file():
            if source.required:
                raise MissingRequirementError(name, version, manifest_path)
            raise PackageNotFoundError(name, version, manifest_path)

        manifest = load_package_manifest(manifest_path)
        attempt.state = InstallState.MANIFEST_LOADED
        self._check_identity(attempt, manifest)

        print(f"Loaded {manifest.name} ({manifest.version or version}) from local repo")
        return InstalledPackage(
            key=attempt.key,
            production_path=manifest_path.parent,
            origin=ORIGIN_LOCAL,
            manifest=manifest,
        )

    def _find_existing(self, attempt: PackageAttempt, source: PackageSource) -> Optional[InstalledPackage]:
        """Reuse a production copy of the same name and version, if it still verifies."""
        if self.config.force:
            return None

        name, version = attempt.key
        production = self._production_path(name)
        manifest_path = production / MANIFEST_FILENAME
        if not manifest_path.is_file():
            return None

        try:
            manifest = load_package_manifest(manifest_path)
        except YammyError as exc:
            logger.warning("Installed manifest for %s is unusable, reinstalling: %s", name, exc)
            return None
        if manifest.name != name or manifest.version != version:
            return None

        if not source.hash and self.project.security.require_hash:
            return None

        fingerprint = None
        if source.hash:
            try:
                fingerprint = compute_directory_fingerprint(production, self.algorithm)
            except YammyError as exc:
                logger.warning("Cannot fingerprint installed %s, reinstalling: %s", name, exc)
                return None
            if not fingerprints_match(source.hash, fingerprint):
                print(f"WARNING: installed {name} ({version}) does not match its declared hash, reinstalling")
                return None

        print(f"{name} ({version}) is already installed.")
        return InstalledPackage(
            key=attempt.key,
            production_path=production,
            origin=ORIGIN_EXISTING,
            fingerprint=fingerprint,
            verified=fingerprint is not None,
            manifest=manifest,
        )

    def _fetch_and_verify(self, attempt: PackageAttempt, source: PackageSource) -> InstalledPackage:
        name, version = attempt.key
        validate_source_locator(source.src)

        # Fetching
        attempt.state = InstallState.FETCHING
        attempt.holding_path = self.quarantine.allocate(name)
        print(f"Downloading {name} to quarantine...")
        self.context.fetched.append(attempt.key)
        try:
            self.fetcher.fetch(source.src, attempt.holding_path)
        except OSError as exc:
            raise FetchError(f"Fetch failed for {source.src}: {exc}", package=name, version=version) from exc
        self.quarantine.strip_vcs_metadata(attempt.holding_path)

        # ManifestLoaded
        manifest = load_package_manifest(attempt.holding_path / MANIFEST_FILENAME)
        attempt.state = InstallState.MANIFEST_LOADED
        self._check_identity(attempt, manifest)
        if manifest.version is not None and manifest.version != version:
            logger.warning("%s: manifest declares version %s, %s was requested", name, manifest.version, version)

        # HashComputed
        fingerprint = compute_directory_fingerprint(attempt.holding_path, self.algorithm)
        attempt.state = InstallState.HASH_COMPUTED

        if source.hash:
            self._verify(attempt, source.hash, fingerprint)
            attempt.state = InstallState.VERIFIED
        else:
            self._approve_unverified(attempt, fingerprint)
            attempt.state = InstallState.UNVERIFIED_APPROVED
        verified = attempt.state == InstallState.VERIFIED

        # Promoted
        self._check_nesting(attempt, self._production_path(name))
        production = self.quarantine.promote(attempt.holding_path, self._production_path(name))
        attempt.holding_path = None
        attempt.state = InstallState.PROMOTED

        print(f"Installed {manifest.name} ({version}) from {source.src}")
        self.audit.record(AuditEvent.INSTALL_SUCCESS, name, version, f"Hash: {fingerprint}")

        return InstalledPackage(
            key=attempt.key,
            production_path=production,
            origin=ORIGIN_REMOTE,
            fingerprint=fingerprint,
            verified=verified,
            manifest=manifest,
        )

    def _check_nesting(self, attempt: PackageAttempt, production: Path) -> None:
        """Refuse a production path that contains, or sits inside, another package.

        A bare name ("acme") and a vendor name ("acme/http") share a directory;
        promoting one would replace or swallow the other's tree.
        """
        name, version = attempt.key
        nested = [
            str(other.key)
            for other in self.context.installed.values()
            if other.key.name != name and (
                other.production_path.is_relative_to(production)
                or production.is_relative_to(other.production_path)
            )
        ]

        repo = self.config.repo_path
        if "/" in name:
            vendor_manifest = repo / name.split("/", 1)[0] / MANIFEST_FILENAME
            if vendor_manifest.is_file():
                nested.append(str(vendor_manifest.parent))
        elif production.is_dir():
            nested.extend(
                str(child) for child in production.iterdir()
                if child.is_dir() and (child / MANIFEST_FILENAME).is_file()
            )

        if nested:
            raise PromotionError(
                f"Refusing to install {name} ({version}) into {production}: "
                f"it overlaps another package ({', '.join(nested)})",
                holding_path=attempt.holding_path,
                package=name,
                version=version,
            )

    def _check_identity(self, attempt: PackageAttempt, manifest: PackageManifest) -> None:
        name, version = attempt.key
        if manifest.name != name:
            exc = IdentityMismatchError(requested=name, declared=manifest.name, version=version)
            self.audit.record(AuditEvent.IDENTITY_MISMATCH, name, version, exc.message)
            raise exc

    def _verify(self, attempt: PackageAttempt, expected: str, actual: str) -> None:
        name, version = attempt.key
        print("Verifying package integrity...")

        if fingerprints_match(expected, actual):
            print(f"Hash verification passed ({actual})")
            return

        self.audit.record(AuditEvent.HASH_MISMATCH, name, version, f"Expected: {expected}, Got: {actual}")
        raise HashMismatchError(
            f"SECURITY: Hash mismatch for {name} ({version})\n"
            f"   Expected: {expected}\n"
            f"   Got:      {actual}\n"
            f"   Package kept in quarantine: {attempt.holding_path}\n"
            f"   DO NOT USE THIS PACKAGE - it may be compromised!",
            expected=expected,
            actual=actual,
            holding_path=attempt.holding_path,
            package=name,
            version=version,
        )

    def _approve_unverified(self, attempt: PackageAttempt, fingerprint: str) -> None:
        name, version = attempt.key
        print(f"WARNING: No hash specified for {name} - cannot verify integrity!")
        print(f"   Generate hash with: yammy generate-hash {attempt.holding_path}")
        print(f"   Computed hash: {fingerprint}")
        print("   Add this to your yammy.yaml:")
        print("   packages:")
        print(f"     {name}:")
        print(f"       hash: \"{fingerprint}\"\n")

        if self.project.security.require_hash:
            raise PolicyError(
                f"Installation of {name} rejected: security policy requires a declared hash",
                package=name,
                version=version,
            )

        if self.config.auto_approve:
            self.audit.record(
                AuditEvent.UNVERIFIED_APPROVED, name, version,
                f"Approved by {AUTO_APPROVE_ENV}, Hash: {fingerprint}",
            )
            return

        if not self.prompter.is_interactive():
            raise PolicyError(
                f"Installation of {name} rejected: no declared hash and no terminal to confirm "
                f"(set {AUTO_APPROVE_ENV}=1 for unattended runs)",
                package=name,
                version=version,
            )

        answer = self.prompter.ask("   Continue without hash verification? [y/N]: ")
        if not is_affirmative(answer):
            raise PolicyError("Installation cancelled by user", package=name, version=version)

        self.audit.record(
            AuditEvent.UNVERIFIED_APPROVED, name, version,
            f"Approved interactively, Hash: {fingerprint}",
        )

    def _resolve_dependencies(self, installed: InstalledPackage) -> None:
        require = installed.manifest.require if installed.manifest else {}
        if require:
            print(f"Installing dependencies for {installed.key.name}...")
            for dep_name, dep_version in require.items():
                self.install_package(dep_name, dep_version)
        installed.state = InstallState.DEPENDENCIES_RESOLVED

    def _abandon(self, attempt: PackageAttempt, exc: YammyError) -> None:
        name, version = attempt.key
        rejected = isinstance(exc, (IntegrityError, PolicyError))

        if isinstance(exc, FetchError):
            self.audit.record(AuditEvent.FETCH_FAILED, name, version, exc.message)
        elif isinstance(exc, PolicyError):
            self.audit.record(AuditEvent.INSTALL_REJECTED, name, version, exc.message)
        elif isinstance(exc, ValidationError) and not isinstance(exc, IdentityMismatchError):
            self.audit.record(AuditEvent.VALIDATION_FAILED, name, version, exc.message)

        print(exc.message)
        holding = attempt.holding_path
        if holding is not None and holding.is_dir() and not isinstance(exc, IntegrityError):
            print(f"Quarantine directory preserved for inspection: {holding}")

        self.context.failed[attempt.key] = PackageFailure(
            key=attempt.key,
            state=InstallState.REJECTED if rejected else InstallState.ABANDONED,
            reached=attempt.state,
            error=exc,
            holding_path=holding,
        )

    # =========================================================================
    # Lock file / audit
    # =========================================================================

    def save_lock_file(self) -> LockRecord:
        """Rebuild yammy.lock from the installed-set."""
        installed = list(self.context.installed.values())
        record = build_lock_record(
            [(p.key.name, p.key.version, p.production_path) for p in installed],
            algorithm=self.algorithm,
        )

        for package in installed:
            locked = record.packages.get(package.key.name)
            if locked is None or locked.version != package.key.version:
                continue

            if not locked.hash:
                error = InternalError(
                    f"Cannot fingerprint production copy of {package.key}: {package.production_path}",
                    package=package.key.name,
                    version=package.key.version,
                )
            elif package.fingerprint is not None and not fingerprints_match(package.fingerprint, locked.hash):
                error = IntegrityError(
                    f"{package.key} changed after verification",
                    expected=package.fingerprint,
                    actual=locked.hash,
                    package=package.key.name,
                    version=package.key.version,
                )
            else:
                continue

            print(f"WARNING: {error.message}!")
            print(f"   Verified:   {package.fingerprint or '(not verified)'}")
            print(f"   Production: {locked.hash or '(none)'}")
            self.audit.record(
                AuditEvent.INTEGRITY_CHECK_FAILED, package.key.name, package.key.version,
                f"Verified: {package.fingerprint}, Production: {locked.hash}",
            )
            self.context.failed[package.key] = PackageFailure(
                key=package.key,
                state=InstallState.REJECTED,
                reached=package.state,
                error=error,
            )

        write_lock_file(self.config.lock_file, record)
        print(f"Lock file saved: {self.config.lock_file.name}")
        return record

    def flush_audit(self) -> int:
        return self.audit.flush(FileAuditSink(self.config.security_log))
