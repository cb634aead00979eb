"""Source fetchers.

A fetcher populates a holding directory with a package's file tree. The
installer only relies on the contract below; the transport is opaque.

Contract:
    fetch(source, target_dir) returns on success, with a package manifest at
    target_dir/yammy.yaml. Any failure raises FetchError; the content of
    target_dir is then undefined and is not trusted.

Scheme checking (validate_source_locator) is done by the installer before a
fetcher is ever called.
"""
from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Protocol, Union

from yammy.config import MANIFEST_FILENAME
from yammy.errors import FetchError, InvalidSourceError

logger = logging.getLogger(__name__)

ALLOWED_SOURCE_PATTERN = re.compile(r"^(https?://|git@)[\w\-.]+")


def validate_source_locator(source: str) -> str:
    """Reject source locators outside the allow-listed schemes.

    Raises:
        InvalidSourceError: Unless source starts with https://, http:// or git@host
    """
    if not isinstance(source, str) or not ALLOWED_SOURCE_PATTERN.match(source):
        raise InvalidSourceError(
            f"Invalid source locator (allowed: https://, http://, git@): {source!r}"
        )
    return source


class SourceFetcher(Protocol):
    """Interface for pluggable fetch backends."""

    def fetch(self, source: str, target_dir: Path) -> None:
        ...


class GitFetcher:
    """Shallow single-branch git clone into the target directory."""

    def __init__(self, git: str = "git", manifest_name: str = MANIFEST_FILENAME):
        self.git = git
        self.manifest_name = manifest_name

    def fetch(self, source: str, target_dir: Union[str, Path]) -> None:
        target_dir = Path(target_dir)
        target_dir.mkdir(parents=True, exist_ok=True, mode=0o700)

        cmd = [
            self.git, "clone", "--depth", "1", "--single-branch",
            "--", source, str(target_dir),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            raise FetchError(f"Failed to run {self.git}: {exc}") from exc

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            raise FetchError(f"git clone failed for {source}: {output}")

        if not (target_dir / self.manifest_name).is_file():
            raise FetchError(
                f"Failed to clone repo or {self.manifest_name} not found: {source}"
            )

        logger.info("Downloaded from %s", source)
