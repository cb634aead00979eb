"""Manifest reading and validation.

Both the project manifest (yammy.yaml at the project root) and the manifest
shipped with every package go through the same gate:

1. the file must exist
2. it must parse as YAML into a mapping
3. it must carry a `name`
4. the name must be a valid package identity

A parse failure or a non-mapping document is reported exactly like a missing
manifest.

Project manifest:
    name: my-app
    description: optional text
    require:
      acme/http: "1.2.0"
    packages:
      acme/http:
        src: https://example.com/acme/http.git
        hash: "9F3C0D2A81B4E6F7"
        required: false
    security:
      require-hash: false
      hash-algorithm: xxh64

Package manifest:
    name: acme/http
    version: "1.2.0"
    require:
      acme/log: "0.3.1"
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from yammy.errors import InvalidNameError, ManifestNotFoundError, ValidationError
from yammy.hashing import ALGORITHMS, DEFAULT_ALGORITHM

NAME_PATTERN = re.compile(r"[A-Za-z0-9_\-/]+")
VERSION_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.+\-]*")


def validate_package_name(name: Any) -> str:
    """Check a package name before it is used as a path segment.

    Allowed: letters, digits, '_', '-' and at most one '/' separating two
    non-empty segments (vendor/package).

    Raises:
        InvalidNameError: If the name is not acceptable
    """
    if not isinstance(name, str) or not name:
        raise InvalidNameError("Invalid package name: must be a non-empty string")

    if not NAME_PATTERN.fullmatch(name):
        raise InvalidNameError(
            f"Invalid package name: contains illegal characters: {name!r}",
            package=name,
        )

    segments = name.split("/")
    if len(segments) > 2 or not all(segments):
        raise InvalidNameError(
            f"Invalid package name: expected 'package' or 'vendor/package': {name!r}",
            package=name,
        )
    return name


def validate_version(version: Any) -> str:
    """Versions also end up in paths (local store lookups), so keep them to one plain segment."""
    if not isinstance(version, str) or not VERSION_PATTERN.fullmatch(version):
        raise ValidationError(f"Invalid version: {version!r}")
    return version


def normalize_version(value: Any) -> Optional[str]:
    """Versions are strings; YAML may hand back numbers for unquoted values."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid version: {value!r}")
    return str(value)


def parse_document(path: Union[str, Path]) -> Dict[str, Any]:
    """Parse a YAML document into a mapping.

    Raises:
        ManifestNotFoundError: If the file is absent, unparseable or not a mapping
    """
    path = Path(path)
    if not path.is_file():
        raise ManifestNotFoundError(f"Manifest file not found: {path}", path=path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (yaml.YAMLError, OSError, UnicodeDecodeError) as exc:
        raise ManifestNotFoundError(f"Failed to parse YAML file: {path} ({exc})", path=path) from exc

    if not isinstance(data, dict):
        raise ManifestNotFoundError(f"Manifest is not a mapping: {path}", path=path)
    return data


def validate_manifest(data: Dict[str, Any]) -> None:
    """Shared structural gate for project and package manifests."""
    if "name" not in data or data["name"] is None:
        raise ValidationError("Invalid manifest: missing 'name'")
    validate_package_name(data["name"])


def load_manifest(path: Union[str, Path]) -> Dict[str, Any]:
    """Read and validate a manifest file, returning the raw mapping."""
    data = parse_document(path)
    validate_manifest(data)
    return data


def _require_mapping(data: Dict[str, Any], owner: str) -> Dict[str, str]:
    value = data.get("require")
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"Invalid manifest for {owner}: 'require' must be a mapping")

    require = {}
    for dep_name, dep_version in value.items():
        version = normalize_version(dep_version)
        if version is None:
            raise ValidationError(f"Invalid manifest for {owner}: no version declared for '{dep_name}'")
        require[str(dep_name)] = version
    return require


@dataclass(frozen=True)
class PackageSource:
    """Where a package comes from and what it must hash to."""
    src: Optional[str] = None
    hash: Optional[str] = None
    required: bool = False

    @classmethod
    def from_mapping(cls, name: str, value: Any) -> "PackageSource":
        if value is None:
            return cls()
        if not isinstance(value, dict):
            raise ValidationError(f"Invalid package entry for '{name}': must be a mapping")

        src = value.get("src")
        expected = value.get("hash")
        return cls(
            src=str(src) if src else None,
            hash=str(expected).strip() if expected not in (None, "") else None,
            required=bool(value.get("required", False)),
        )


@dataclass(frozen=True)
class SecurityPolicy:
    """Project-level security flags."""
    require_hash: bool = False
    hash_algorithm: str = DEFAULT_ALGORITHM

    @classmethod
    def from_mapping(cls, value: Any) -> "SecurityPolicy":
        if value is None:
            return cls()
        if not isinstance(value, dict):
            raise ValidationError("Invalid manifest: 'security' must be a mapping")

        algorithm = str(value.get("hash-algorithm", DEFAULT_ALGORITHM))
        if algorithm not in ALGORITHMS:
            raise ValidationError(f"Invalid manifest: unsupported hash-algorithm '{algorithm}'")
        return cls(
            require_hash=bool(value.get("require-hash", False)),
            hash_algorithm=algorithm,
        )


@dataclass
class ProjectManifest:
    """Root declaration of what a project needs. Read-only after load."""
    name: str
    description: Optional[str] = None
    require: Dict[str, str] = field(default_factory=dict)
    packages: Dict[str, PackageSource] = field(default_factory=dict)
    security: SecurityPolicy = field(default_factory=SecurityPolicy)
    path: Optional[Path] = None

    def source_for(self, package_name: str) -> PackageSource:
        return self.packages.get(package_name, PackageSource())

    @classmethod
    def from_mapping(cls, data: Dict[str, Any], path: Optional[Path] = None) -> "ProjectManifest":
        validate_manifest(data)
        name = data["name"]

        packages_raw = data.get("packages") or {}
        if not isinstance(packages_raw, dict):
            raise ValidationError("Invalid manifest: 'packages' must be a mapping")

        description = data.get("description")
        return cls(
            name=name,
            description=str(description) if description is not None else None,
            require=_require_mapping(data, name),
            packages={
                str(pkg): PackageSource.from_mapping(str(pkg), entry)
                for pkg, entry in packages_raw.items()
            },
            security=SecurityPolicy.from_mapping(data.get("security")),
            path=path,
        )


@dataclass
class PackageManifest:
    """Metadata fetched with each package. Never cached across packages."""
    name: str
    version: Optional[str] = None
    require: Dict[str, str] = field(default_factory=dict)
    path: Optional[Path] = None

    @classmethod
    def from_mapping(cls, data: Dict[str, Any], path: Optional[Path] = None) -> "PackageManifest":
        validate_manifest(data)
        return cls(
            name=data["name"],
            version=normalize_version(data.get("version")),
            require=_require_mapping(data, data["name"]),
            path=path,
        )


def load_project_manifest(path: Union[str, Path]) -> ProjectManifest:
    """Load yammy.yaml from a project root. Failure here is fatal to the run."""
    path = Path(path)
    return ProjectManifest.from_mapping(parse_document(path), path=path)


def load_package_manifest(path: Union[str, Path]) -> PackageManifest:
    """Load the manifest shipped with a package."""
    path = Path(path)
    return PackageManifest.from_mapping(parse_document(path), path=path)


__all__ = [
    "NAME_PATTERN",
    "validate_package_name",
    "validate_version",
    "normalize_version",
    "parse_document",
    "validate_manifest",
    "load_manifest",
    "PackageSource",
    "SecurityPolicy",
    "ProjectManifest",
    "PackageManifest",
    "load_project_manifest",
    "load_package_manifest",
]
