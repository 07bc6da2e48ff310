"""Reading and writing build manifests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import PackagingError
from .models import BuildManifest, BuildPlan
from .paths import WorkspacePaths


def write_json(path: Path, data: Any) -> None:
    """Write `data` as 2-space indented JSON with a trailing newline."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n")


def manifest_path(paths: WorkspacePaths, dir_name: str) -> Path:
    return paths.manifests_dir / f"{dir_name}.json"


def write_build_manifest(paths: WorkspacePaths, manifest: BuildManifest) -> Path:
    """Persist a manifest as manifests/<dirName>.json."""
    path = manifest_path(paths, manifest.dir_name)
    write_json(path, manifest.to_json_dict())
    return path


def load_build_manifests(paths: WorkspacePaths, plan: BuildPlan) -> list[BuildManifest]:
    """Load every manifest on disk, ordered by group then package name.

    Manifests of groups unknown to the plan sort first.

    Raises:
        PackagingError: If a manifest file is not a valid BuildManifest.
    """
    if not paths.manifests_dir.exists():
        return []

    manifests: list[BuildManifest] = []
    for path in sorted(paths.manifests_dir.glob("*.json")):
        try:
            manifests.append(BuildManifest.model_validate_json(path.read_text()))
        except ValidationError as exc:
            raise PackagingError(f"Invalid build manifest {path}:\n{exc}") from exc

    group_order = plan.group_order()
    manifests.sort(key=lambda m: (group_order.get(m.group_id, -1), m.package_name))
    return manifests
