"""Runtime configuration.

Resolves project paths and reads environment flags once per run.

Environment Variables:
    YAMMY_AUTO_APPROVE: Approve packages without a declared hash (CI only)
    YAMMY_DEBUG: Enable debug logging, including fingerprint statistics
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

MANIFEST_FILENAME = "yammy.yaml"
LOCK_FILENAME = "yammy.lock"
SECURITY_LOG_FILENAME = "yammy-security.log"
REPOSITORY_DIRNAME = "yammies"
QUARANTINE_DIRNAME = ".quarantine"

AUTO_APPROVE_ENV = "YAMMY_AUTO_APPROVE"
DEBUG_ENV = "YAMMY_DEBUG"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def env_flag(value: Optional[str]) -> bool:
    """Interpret a boolean-like environment value. Absent means False."""
    if value is None:
        return False
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class YammyConfig:
    """Paths and flags for one run."""

    project_root: Path
    manifest_file: Path
    lock_file: Path
    security_log: Path
    repo_path: Path
    auto_approve: bool = False
    debug: bool = False
    force: bool = False

    @property
    def quarantine_path(self) -> Path:
        return self.repo_path / QUARANTINE_DIRNAME


def load_config(
    project_root: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    force: bool = False,
) -> YammyConfig:
    """Build the configuration for a project directory.

    Args:
        project_root: Directory holding yammy.yaml (default: cwd)
        environ: Environment mapping (default: os.environ)
        force: Re-fetch packages already present in production

    Returns:
        YammyConfig with absolute paths
    """
    root = Path(project_root or Path.cwd()).resolve()
    env = os.environ if environ is None else environ

    return YammyConfig(
        project_root=root,
        manifest_file=root / MANIFEST_FILENAME,
        lock_file=root / LOCK_FILENAME,
        security_log=root / SECURITY_LOG_FILENAME,
        repo_path=root / REPOSITORY_DIRNAME,
        auto_approve=env_flag(env.get(AUTO_APPROVE_ENV)),
        debug=env_flag(env.get(DEBUG_ENV)),
        force=force,
    )
