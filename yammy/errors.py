"""Exceptions raised by the install pipeline.

Every per-package failure is a YammyError so the installer can catch it at the
single-package boundary. The subclass tells the operator which class of
problem occurred:

    NotFoundError    manifest, package or directory absent
    ValidationError  malformed name, identity mismatch, bad source locator
    IntegrityError   fingerprint does not match the declared hash
    FetchError       transport / clone failure
    PolicyError      unverified package declined
    InternalError    promotion rename failure, unreadable tree
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class YammyError(Exception):
    """Base class for all install pipeline errors.

    Attributes:
        message: Human-readable description
        package: Package name, when the error concerns one package
        version: Package version, when known
    """

    def __init__(self, message: str, package: str = None, version: str = None):
        super().__init__(message)
        self.message = message
        self.package = package
        self.version = version

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "package": self.package,
            "version": self.version,
        }


# === Not-Found ===

class NotFoundError(YammyError):
    """Something the pipeline needs does not exist."""


class ManifestNotFoundError(NotFoundError):
    """Manifest absent, unparseable, or not a mapping."""

    def __init__(self, message: str, path: Union[str, Path] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = str(path) if path is not None else None


class PackageNotFoundError(NotFoundError):
    """Package without a remote source is missing from the local store."""

    def __init__(self, package: str, version: str, searched_path: Union[str, Path] = None):
        super().__init__(
            f"Package {package} ({version}) not found in local repository",
            package=package,
            version=version,
        )
        self.searched_path = str(searched_path) if searched_path is not None else None


class MissingRequirementError(PackageNotFoundError):
    """A package marked as a hard requirement is missing. Aborts the run."""


# === Validation ===

class ValidationError(YammyError):
    """Structural validation failed."""


class InvalidNameError(ValidationError):
    """Package name is empty or contains illegal characters."""


class IdentityMismatchError(ValidationError):
    """Fetched manifest declares a different name than the one requested."""

    def __init__(self, requested: str, declared: str, version: str = None):
        super().__init__(
            f"Package name mismatch: manifest says '{declared}', expected '{requested}'",
            package=requested,
            version=version,
        )
        self.requested = requested
        self.declared = declared


class InvalidSourceError(ValidationError):
    """Source locator does not use an allowed scheme."""


# === Integrity ===

class IntegrityError(YammyError):
    """Fingerprint verification failed."""

    def __init__(
        self,
        message: str,
        expected: str = None,
        actual: str = None,
        holding_path: Union[str, Path] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual
        self.holding_path = str(holding_path) if holding_path is not None else None

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "expected": self.expected,
            "actual": self.actual,
            "holding_path": self.holding_path,
        })
        return data


class HashMismatchError(IntegrityError):
    """Computed fingerprint differs from the declared hash."""


# === Fetch / Policy ===

class FetchError(YammyError):
    """Source fetcher could not populate the holding directory."""


class PolicyError(YammyError):
    """Unverified package declined by the operator or by the non-interactive default."""


# === Internal / IO ===

class InternalError(YammyError):
    """Filesystem-level failure while processing a package."""


class PromotionError(InternalError):
    """Holding directory could not be renamed into production."""

    def __init__(self, message: str, holding_path: Optional[Path] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.holding_path = str(holding_path) if holding_path is not None else None


class NothingToFingerprintError(InternalError):
    """No eligible files remain after filtering."""


__all__ = [
    "YammyError",
    "NotFoundError",
    "ManifestNotFoundError",
    "PackageNotFoundError",
    "MissingRequirementError",
    "ValidationError",
    "InvalidNameError",
    "IdentityMismatchError",
    "InvalidSourceError",
    "IntegrityError",
    "HashMismatchError",
    "FetchError",
    "PolicyError",
    "InternalError",
    "PromotionError",
    "NothingToFingerprintError",
]
