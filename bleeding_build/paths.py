"""On-disk workspace layout."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

WORKSPACE_DIR_NAME = ".bleeding-edge"
DIST_DIR_NAME = "dist"


@dataclass(frozen=True)
class WorkspacePaths:
    """Directories used by a build run.

    Attributes:
        root_dir: Directory manifests' relative paths are computed from.
        workspace_dir: Scratch area holding everything below.
        repos_dir: Repository checkouts, one directory per dir name.
        manifests_dir: One BuildManifest JSON per package.
        packs_dir: Package archives produced while bundling.
        bundle_dir: Staging directory of the aggregate bundle.
        dist_dir: Final distributable archives.
    """

    root_dir: Path
    workspace_dir: Path
    repos_dir: Path
    manifests_dir: Path
    packs_dir: Path
    bundle_dir: Path
    dist_dir: Path

    @classmethod
    def create(
        cls,
        root_dir: Path,
        workspace_dir: Path | None = None,
        dist_dir: Path | None = None,
    ) -> WorkspacePaths:
        root = root_dir.resolve()
        workspace = (workspace_dir or root / WORKSPACE_DIR_NAME).resolve()
        return cls(
            root_dir=root,
            workspace_dir=workspace,
            repos_dir=workspace / "repos",
            manifests_dir=workspace / "manifests",
            packs_dir=workspace / "packs",
            bundle_dir=workspace / "bundle",
            dist_dir=(dist_dir or root / DIST_DIR_NAME).resolve(),
        )

    def ensure(self) -> None:
        """Create every directory of the layout."""
        for path in (
            self.workspace_dir,
            self.repos_dir,
            self.manifests_dir,
            self.packs_dir,
            self.bundle_dir,
            self.dist_dir,
        ):
            path.mkdir(parents=True, exist_ok=True)

    def repo_dir(self, dir_name: str) -> Path:
        return self.repos_dir / dir_name

    def relative_to_root(self, path: Path) -> str:
        """POSIX path of `path` relative to root_dir (may contain '..')."""
        return Path(os.path.relpath(path, self.root_dir)).as_posix()
