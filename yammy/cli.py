"""
cli.py - Command-line front-end.

Usage:
    yammy install [--force]
    yammy check-integrity          # alias: verify
    yammy generate-hash [DIR] [--algorithm sha256]
    yammy compare DIR1 DIR2
    yammy list-quarantine
    yammy clean-quarantine

Global:
    --root PATH    project directory holding yammy.yaml (default: cwd)

Exit codes:
    0 = success
    1 = some package failed / integrity violation
    2 = fatal (project manifest unusable, hard requirement missing)
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from yammy import __version__
from yammy.config import AUTO_APPROVE_ENV, YammyConfig, load_config
from yammy.errors import MissingRequirementError, YammyError
from yammy.hashing import (
    ALGORITHMS,
    DEFAULT_ALGORITHM,
    compare_directories,
    compute_directory_fingerprint,
)
from yammy.installer import Installer
from yammy.integrity import IntegrityChecker
from yammy.manifest import ProjectManifest, load_project_manifest
from yammy.quarantine import QuarantineManager

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2


def _load_project(config: YammyConfig) -> Optional[ProjectManifest]:
    try:
        return load_project_manifest(config.manifest_file)
    except YammyError as e:
        print(f"Cannot load {config.manifest_file.name}: {e.message}", file=sys.stderr)
        return None


def cmd_install(args: argparse.Namespace, config: YammyConfig) -> int:
    project = _load_project(config)
    if project is None:
        return EXIT_FATAL

    if config.auto_approve:
        print(f"[install] {AUTO_APPROVE_ENV} is set - packages without a hash will be approved", file=sys.stderr)

    try:
        report = Installer(config, project).install_packages()
    except MissingRequirementError as e:
        print(f"\nFATAL: required package missing: {e.message}", file=sys.stderr)
        return EXIT_FATAL

    return EXIT_OK if report.success else EXIT_FAILED


def cmd_check_integrity(args: argparse.Namespace, config: YammyConfig) -> int:
    project = _load_project(config)
    if project is None:
        return EXIT_FATAL

    result = IntegrityChecker(config, project).check()
    return EXIT_OK if result.passed else EXIT_FAILED


def cmd_generate_hash(args: argparse.Namespace, config: YammyConfig) -> int:
    directory = Path(args.directory) if args.directory else Path.cwd()
    try:
        print(compute_directory_fingerprint(directory, args.algorithm))
    except YammyError as e:
        print(e.message, file=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


def cmd_compare(args: argparse.Namespace, config: YammyConfig) -> int:
    try:
        diff = compare_directories(args.first, args.second, args.algorithm)
    except YammyError as e:
        print(e.message, file=sys.stderr)
        return EXIT_FAILED

    if diff.identical:
        print("No differences in hashed files")
        return EXIT_OK

    for rel_path in diff.only_in_first:
        print(f"- {rel_path}")
    for rel_path in diff.only_in_second:
        print(f"+ {rel_path}")
    for rel_path in diff.modified:
        print(f"~ {rel_path}")
    return EXIT_FAILED


def cmd_list_quarantine(args: argparse.Namespace, config: YammyConfig) -> int:
    held = QuarantineManager(config.quarantine_path).list_holding()
    if not held:
        print("Quarantine is empty")
    for holding in held:
        print(holding)
    return EXIT_OK


def cmd_clean_quarantine(args: argparse.Namespace, config: YammyConfig) -> int:
    quarantine = QuarantineManager(config.quarantine_path)
    if not quarantine.root.is_dir():
        print("Quarantine directory does not exist")
        return EXIT_OK

    count = quarantine.clean()
    if count == 0:
        print("Quarantine is already clean")
    else:
        print(f"Cleaned {count} quarantined package(s)")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yammy",
        description="Install packages with quarantine and hash verification",
    )
    parser.add_argument("--version", action="version", version=f"yammy {__version__}")
    parser.add_argument("--root", type=Path, help="Project directory holding yammy.yaml (default: cwd)")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("install", help="Install packages from yammy.yaml")
    p.add_argument("--force", action="store_true", help="Re-fetch packages already installed")
    p.set_defaults(func=cmd_install)

    p = sub.add_parser("check-integrity", aliases=["verify"], help="Verify integrity of installed packages")
    p.set_defaults(func=cmd_check_integrity)

    p = sub.add_parser("generate-hash", help="Generate hash for a package directory")
    p.add_argument("directory", nargs="?", help="Package directory (default: cwd)")
    p.add_argument("--algorithm", choices=sorted(ALGORITHMS), default=DEFAULT_ALGORITHM)
    p.set_defaults(func=cmd_generate_hash)

    p = sub.add_parser("compare", help="Show hashed-file differences between two directories")
    p.add_argument("first")
    p.add_argument("second")
    p.add_argument("--algorithm", choices=sorted(ALGORITHMS), default=DEFAULT_ALGORITHM)
    p.set_defaults(func=cmd_compare)

    p = sub.add_parser("list-quarantine", help="List retained quarantine directories")
    p.set_defaults(func=cmd_list_quarantine)

    p = sub.add_parser("clean-quarantine", help="Remove all packages from quarantine")
    p.set_defaults(func=cmd_clean_quarantine)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.root, force=getattr(args, "force", False))
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    return args.func(args, config)


if __name__ == "__main__":
    raise SystemExit(main())
