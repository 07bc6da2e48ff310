"""Local dependency patching.

Rewrites a package.json so dependencies on packages already built in this
run point at their local checkouts (`file:` references) instead of the
published versions, and restores the pristine file afterwards.

The pristine package.json is backed up once to
<package_dir>/.bleeding-edge/package.json.original. Later patches start from
that backup, so substitutions never compound across runs.
"""

from __future__ import annotations

import copy
import json
import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import PatchError
from .models import LocalDependency, LocalPackageRef

PACKAGE_JSON = "package.json"
BACKUP_DIR_NAME = ".bleeding-edge"
BACKUP_FILE_NAME = "package.json.original"

# Order matters only for which original version is recorded when a
# dependency appears in several sections: the first one wins.
DEPENDENCY_SECTIONS = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)


class PatchState(Enum):
    PATCHED = "patched"
    RESTORED = "restored"


def backup_path(package_dir: Path) -> Path:
    return package_dir / BACKUP_DIR_NAME / BACKUP_FILE_NAME


def to_file_reference(from_dir: Path, to_dir: Path) -> tuple[str, str]:
    """Build a `file:` dependency value pointing from one directory to another.

    Returns:
        Tuple of (dependency value, relative path).

    Examples:
        ("/repos/app", "/repos/pkg-a") → ("file:../pkg-a", "../pkg-a")
        ("/repos/app", "/repos/app/libs/x") → ("file:./libs/x", "./libs/x")
    """
    relative_path = Path(os.path.relpath(to_dir, from_dir)).as_posix()
    if not relative_path.startswith("."):
        relative_path = f"./{relative_path}"
    return f"file:{relative_path}", relative_path


def _parse(contents: bytes, source: Path) -> dict[str, Any]:
    try:
        data = json.loads(contents.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PatchError(f"Failed to parse {source}: {exc}") from exc
    if not isinstance(data, dict):
        raise PatchError(f"{source} does not contain a JSON object")
    return data


class ManifestPatch:
    """A package.json that has been patched and must be restored.

    Starts in PatchState.PATCHED. restore() writes the original bytes back
    unchanged (line endings included) and moves to PatchState.RESTORED; it
    may only be called once.

    Attributes:
        path: The package.json that was patched.
        original: Parsed pristine package.json.
        patched: Parsed package.json as written for the build (equal to
                 original when patching is disabled or nothing matched).
        changed: Whether any dependency was rewritten.
        local_dependencies: Substitutions applied, by dependency name.
    """

    def __init__(
        self,
        path: Path,
        original_contents: bytes,
        original: dict[str, Any],
        patched: dict[str, Any],
        local_dependencies: dict[str, LocalDependency],
    ) -> None:
        self.path = path
        self.original = original
        self.patched = patched
        self.local_dependencies = local_dependencies
        self.state = PatchState.PATCHED
        self._original_contents = original_contents

    @property
    def changed(self) -> bool:
        return bool(self.local_dependencies)

    @property
    def package_name(self) -> str | None:
        return self.original.get("name")

    @property
    def version(self) -> str | None:
        return self.original.get("version")

    def restore(self) -> PatchState:
        """Write the unpatched package.json back to disk.

        Raises:
            PatchError: If the patch was already restored.
        """
        if self.state is PatchState.RESTORED:
            raise PatchError(f"{self.path} was already restored")
        self.path.write_bytes(self._original_contents)
        self.state = PatchState.RESTORED
        return self.state


def apply_local_dependency_patches(
    package_dir: Path,
    available: Mapping[str, LocalPackageRef],
    *,
    disable: bool = False,
) -> ManifestPatch:
    """Point dependencies on locally built packages at their checkouts.

    Scans dependencies, devDependencies, peerDependencies and
    optionalDependencies. Every dependency found in `available` (other than
    the package itself) is rewritten to a `file:` path relative to
    `package_dir`, and recorded with its original version string.

    Args:
        package_dir: Directory containing the package.json to patch.
        available: Registry of packages built earlier in this run.
        disable: Compute no substitutions; backup bookkeeping still happens.

    Returns:
        ManifestPatch whose restore() must be called after the build.

    Raises:
        PatchError: If package.json is missing or is not valid JSON.
    """
    manifest_path = package_dir / PACKAGE_JSON
    backup = backup_path(package_dir)

    if backup.exists():
        original_contents = backup.read_bytes()
        manifest_path.write_bytes(original_contents)
    elif manifest_path.exists():
        original_contents = manifest_path.read_bytes()
        backup.parent.mkdir(parents=True, exist_ok=True)
        backup.write_bytes(original_contents)
    else:
        raise PatchError(f"No {PACKAGE_JSON} found in {package_dir}")

    original = _parse(original_contents, manifest_path)
    patched = copy.deepcopy(original)
    local_dependencies: dict[str, LocalDependency] = {}

    if not disable:
        own_name = original.get("name")
        for section_name in DEPENDENCY_SECTIONS:
            section = patched.get(section_name)
            if not isinstance(section, dict):
                continue
            for dep_name, version in section.items():
                local = available.get(dep_name)
                if local is None or dep_name == own_name:
                    continue
                value, relative_path = to_file_reference(package_dir, local.package_dir)
                if version == value:
                    continue
                section[dep_name] = value
                local_dependencies.setdefault(
                    dep_name,
                    LocalDependency(
                        relative_path=relative_path, original_version=str(version)
                    ),
                )

    if local_dependencies:
        newline = "\r\n" if b"\r\n" in original_contents else "\n"
        rendered = json.dumps(patched, indent=2) + "\n"
        manifest_path.write_bytes(rendered.replace("\n", newline).encode("utf-8"))

    return ManifestPatch(
        path=manifest_path,
        original_contents=original_contents,
        original=original,
        patched=patched,
        local_dependencies=local_dependencies,
    )


@contextmanager
def patched_manifest(
    package_dir: Path,
    available: Mapping[str, LocalPackageRef],
    *,
    disable: bool = False,
) -> Iterator[ManifestPatch]:
    """Apply local dependency patches for the duration of a block.

    The original package.json is restored on every exit path, including
    when the block raises.
    """
    patch = apply_local_dependency_patches(package_dir, available, disable=disable)
    try:
        yield patch
    finally:
        patch.restore()
