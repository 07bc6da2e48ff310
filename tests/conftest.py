"""Shared test fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from bleeding_build.config import BuildOptions, BuildSettings
from bleeding_build.models import BuildManifest
from bleeding_build.paths import WorkspacePaths
from bleeding_build.pipeline import BuildContext


@pytest.fixture
def paths(tmp_path: Path) -> WorkspacePaths:
    """Workspace layout rooted in a temporary directory."""
    return WorkspacePaths.create(tmp_path)


@pytest.fixture
def settings() -> BuildSettings:
    """Settings independent of the test runner's environment."""
    return BuildSettings(concurrency=2)


@pytest.fixture
def make_context(paths: WorkspacePaths, settings: BuildSettings):
    """Factory for a BuildContext with the given options."""

    def _make(settings: BuildSettings = settings, **options: Any) -> BuildContext:
        return BuildContext.create(paths, settings, BuildOptions(**options))

    return _make


def _write_package_json(directory: Path, data: dict[str, Any]) -> Path:
    """Write a package.json into `directory`, creating it if needed."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "package.json"
    path.write_text(json.dumps(data, indent=2) + "\n")
    return path


@pytest.fixture
def make_manifest():
    """Factory for a BuildManifest with sensible defaults."""

    def _make(package_name: str = "@test/core", **overrides: Any) -> BuildManifest:
        dir_name = package_name.removeprefix("@").replace("/", "-")
        fields: dict[str, Any] = {
            "package_name": package_name,
            "version": "1.0.0",
            "repository": f"https://github.com/{package_name.lstrip('@')}.git",
            "dir_name": dir_name,
            "commit": "abc123",
            "ref": "main",
            "built_at": "2024-05-01T12:30:45.123Z",
            "relative_repo_dir": f".bleeding-edge/repos/{dir_name}",
            "install_command": ["bun", "install"],
            "build_command": ["bun", "run", "build"],
            "group_id": "group-1",
        }
        fields.update(overrides)
        return BuildManifest(**fields)

    return _make


@pytest.fixture
def write_package_json():
    """Writer for package.json files: write_package_json(directory, data)."""
    return _write_package_json
