"""
quarantine.py - Holding area for fetched, not-yet-trusted packages.

Fetched content lands in a per-attempt holding directory under the
quarantine root (mode 0700). Only this module moves content from there into
the production package tree, and only by rename.

Holding directories of failed installs are retained for inspection;
clean() is the explicit, operator-triggered way to remove them.

Layout:
    yammies/.quarantine/<package>_<YYYYmmdd-HHMMSS>_<token>/
"""
from __future__ import annotations

import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Union

from yammy.errors import PromotionError

logger = logging.getLogger(__name__)

QUARANTINE_MODE = 0o700
VCS_METADATA_DIR = ".git"


def remove_tree(path: Union[str, Path]) -> None:
    """Recursively delete path. Symlinks are unlinked, never followed."""
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


class QuarantineManager:
    """Owns the quarantine root and every holding directory under it.

    Usage:
        quarantine = QuarantineManager(config.quarantine_path)
        holding = quarantine.allocate("acme/http")
        fetcher.fetch(src, holding)
        ...verify...
        quarantine.promote(holding, config.repo_path / "acme/http")
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def ensure_root(self) -> Path:
        """Create the quarantine root with restrictive permissions on first use."""
        if not self.root.is_dir():
            self.root.mkdir(parents=True, mode=QUARANTINE_MODE, exist_ok=True)
        os.chmod(self.root, QUARANTINE_MODE)
        return self.root

    def allocate(self, package_name: str) -> Path:
        """Reserve a fresh holding directory for one fetch attempt."""
        self.ensure_root()

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        token = uuid.uuid4().hex[:8]
        holding = self.root / f"{package_name.replace('/', '_')}_{timestamp}_{token}"
        holding.mkdir(mode=QUARANTINE_MODE)
        return holding

    def contains(self, path: Union[str, Path]) -> bool:
        """True if path is a holding directory directly under the root."""
        try:
            return Path(path).resolve().parent == self.root.resolve()
        except OSError:
            return False

    def strip_vcs_metadata(self, holding: Union[str, Path]) -> None:
        """Remove VCS metadata left behind by the fetcher."""
        vcs = Path(holding) / VCS_METADATA_DIR
        if vcs.exists() or vcs.is_symlink():
            remove_tree(vcs)

    def promote(self, holding: Union[str, Path], production: Union[str, Path]) -> Path:
        """Move a verified holding directory into production.

        Any previous production directory is removed first so a reinstall
        never keeps stale files. The move itself is a single rename.

        Raises:
            PromotionError: If holding is not ours or the rename fails
        """
        holding = Path(holding)
        production = Path(production)

        if not self.contains(holding) or not holding.is_dir():
            raise PromotionError(
                f"Refusing to promote {holding}: not a holding directory under {self.root}",
                holding_path=holding,
            )

        try:
            if production.exists() or production.is_symlink():
                remove_tree(production)
            production.parent.mkdir(parents=True, exist_ok=True)
            os.rename(holding, production)
        except OSError as exc:
            raise PromotionError(
                f"Failed to move package from quarantine to production: {exc}",
                holding_path=holding,
            ) from exc

        return production

    def list_holding(self) -> List[Path]:
        """Holding directories currently retained under the root."""
        if not self.root.is_dir():
            return []
        return sorted(p for p in self.root.iterdir() if p.is_dir() and not p.is_symlink())

    def clean(self) -> int:
        """Delete every holding directory. Operator-triggered only.

        Returns:
            Number of holding directories removed
        """
        count = 0
        for holding in self.list_holding():
            remove_tree(holding)
            logger.info("Removed quarantined directory: %s", holding.name)
            count += 1
        return count
