"""Shared fixtures: package trees, a fake fetcher and a scripted prompter."""
import os
import shutil
import sys
from pathlib import Path

import pytest
import yaml

# tests/ -> repository root
REPO_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(REPO_ROOT))

from yammy.config import load_config
from yammy.errors import FetchError
from yammy.manifest import load_project_manifest


DEFAULT_FILES = {
    "src/Client.php": "<?php\nclass Client {}\n",
    "README.md": "not hashed\n",
}


def write_package(directory, name, version="1.0.0", require=None, files=None):
    """
    Lay out a package tree with a yammy.yaml at its root.

    Args:
        directory: Package root (created if missing)
        name: Name written to the manifest
        version: Version written to the manifest
        require: Optional dependency mapping
        files: Dict of rel_path -> content (default: a single PHP class)

    Returns:
        The package root
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    manifest = {"name": name, "version": version}
    if require:
        manifest["require"] = require
    (directory / "yammy.yaml").write_text(yaml.safe_dump(manifest, sort_keys=False))

    for rel_path, content in (files if files is not None else DEFAULT_FILES).items():
        path = directory / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return directory


def write_raw_name(directory, raw_name, content=b"<?php\n"):
    """Create a file whose name is raw bytes (e.g. not valid UTF-8)."""
    try:
        with open(os.path.join(os.fsencode(directory), raw_name), "wb") as f:
            f.write(content)
    except OSError:
        pytest.skip("filesystem rejects non-UTF-8 file names")


class FakeFetcher:
    """Copies pre-built package trees by source locator. Records every call."""

    def __init__(self):
        self.sources = {}
        self.calls = []

    def add(self, locator, tree):
        self.sources[locator] = Path(tree)
        return locator

    def fetch(self, source, target_dir):
        self.calls.append(source)
        if source not in self.sources:
            raise FetchError(f"git clone failed for {source}: repository not found")
        shutil.copytree(self.sources[source], target_dir, dirs_exist_ok=True)


class ScriptedPrompter:
    """Answers confirmation prompts from a fixed script."""

    def __init__(self, interactive=True, answers=()):
        self.interactive = interactive
        self.answers = list(answers)
        self.questions = []

    def is_interactive(self):
        return self.interactive

    def ask(self, question):
        self.questions.append(question)
        return self.answers.pop(0) if self.answers else ""


@pytest.fixture
def project_root(tmp_path):
    """Empty project directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def upstream(tmp_path):
    """Directory holding the 'remote' package trees served by FakeFetcher."""
    root = tmp_path / "upstream"
    root.mkdir()
    return root


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def write_project(project_root):
    """Write yammy.yaml and return (config, project).

    Usage:
        config, project = write_project(require={...}, packages={...}, env={...})
    """

    def _write(require=None, packages=None, security=None, env=None, force=False, name="my-app"):
        data = {"name": name}
        if require is not None:
            data["require"] = require
        if packages is not None:
            data["packages"] = packages
        if security is not None:
            data["security"] = security
        (project_root / "yammy.yaml").write_text(yaml.safe_dump(data, sort_keys=False))

        config = load_config(project_root, environ=env or {}, force=force)
        return config, load_project_manifest(config.manifest_file)

    return _write
