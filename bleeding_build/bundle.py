"""Packaging: one archive per built package, then one aggregate bundle.

The bundle directory is laid out as:

    bundle/
      manifest.json        BundleManifest
      package.json         aggregate descriptor (manifest under "bleedingEdge")
      README.md
      packages/<archive>   one per package (or a placeholder file)

and is itself packed into dist/<prefix>-<timestamp>.tgz.
"""

from __future__ import annotations

import json
import shutil
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from .config import DEFAULT_BUNDLE_PREFIX, DEFAULT_PACK_COMMAND
from .errors import PackagingError
from .manifests import write_json
from .models import BuildManifest, BundleEntry, BundleManifest, BundleResult
from .pipeline import BuildContext
from .shell import OutputMode, info, run_command, step, success
from .versions import Timestamp, bundle_version, create_timestamp

PACKAGES_DIR_NAME = "packages"


@dataclass(frozen=True)
class PackedArchive:
    manifest: BuildManifest
    file_name: str
    path: Path
    skipped: bool


def clean_dir(path: Path) -> None:
    """Remove `path` and recreate it empty."""
    shutil.rmtree(path, ignore_errors=True)
    path.mkdir(parents=True, exist_ok=True)


def parse_pack_output(stdout: str, what: str) -> str:
    """Extract the archive file name from `npm pack --json` output.

    Raises:
        PackagingError: If the output is not JSON or names no file.
    """
    try:
        parsed = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise PackagingError(f"Unparsable pack output for {what}: {exc}") from exc
    if not isinstance(parsed, list) or not parsed or not isinstance(parsed[0], dict):
        raise PackagingError(f"Pack did not produce an archive for {what}")
    file_name = parsed[0].get("filename")
    if not file_name:
        raise PackagingError(f"Pack did not produce an archive for {what}")
    # Scoped packages may be reported as "scope/name-1.0.0.tgz" by some npm versions.
    return Path(file_name).name


async def pack_directory(
    directory: Path,
    destination: Path,
    *,
    what: str,
    command: list[str] | None = None,
) -> str:
    """Pack `directory` into `destination`, returning the archive file name."""
    argv = [*(command or DEFAULT_PACK_COMMAND), "--pack-destination", str(destination)]
    result = await run_command(argv, cwd=directory, output=OutputMode.CAPTURE)
    return parse_pack_output(result.stdout, what)


async def pack_package(
    manifest: BuildManifest,
    context: BuildContext,
    *,
    placeholder: bool = False,
    command: list[str] | None = None,
) -> PackedArchive:
    packs_dir = context.paths.packs_dir
    if placeholder:
        info(f"→ Skipping pack for {manifest.package_name}")
        file_name = f"{manifest.dir_name}.placeholder.txt"
        path = packs_dir / file_name
        path.write_text(
            f"Packaging skipped for {manifest.package_name}@{manifest.version}.\n"
        )
        return PackedArchive(manifest, file_name, path, skipped=True)

    info(f"→ Packing {manifest.package_name}")
    package_dir = context.paths.root_dir / manifest.relative_repo_dir
    file_name = await pack_directory(
        package_dir, packs_dir, what=manifest.package_name, command=command
    )
    success(f"✓ {manifest.package_name} packed ({file_name})")
    return PackedArchive(manifest, file_name, packs_dir / file_name, skipped=False)


def bundle_package_json(
    bundle_manifest: BundleManifest, timestamp: Timestamp, prefix: str
) -> dict:
    return {
        "name": prefix,
        "version": bundle_version(timestamp),
        "description": "Aggregated bleeding-edge build of interdependent packages.",
        "type": "module",
        "files": ["manifest.json", f"{PACKAGES_DIR_NAME}/"],
        "keywords": ["bleeding-edge", "bundle"],
        "bleedingEdge": bundle_manifest.to_json_dict(),
    }


def write_bundle_dir(
    archives: list[PackedArchive],
    bundle_dir: Path,
    timestamp: Timestamp,
    prefix: str,
) -> BundleManifest:
    """Lay out the bundle directory from packed archives."""
    clean_dir(bundle_dir)
    packages_dir = bundle_dir / PACKAGES_DIR_NAME
    packages_dir.mkdir(parents=True, exist_ok=True)

    entries = []
    for archive in archives:
        shutil.copy2(archive.path, packages_dir / archive.file_name)
        manifest = archive.manifest
        entries.append(
            BundleEntry(
                package_name=manifest.package_name,
                version=manifest.version,
                repository=manifest.repository,
                commit=manifest.commit,
                ref=manifest.ref,
                group_id=manifest.group_id,
                tarball_file=f"{PACKAGES_DIR_NAME}/{archive.file_name}",
                local_dependencies=manifest.local_dependencies,
                skipped=archive.skipped,
            )
        )

    bundle_manifest = BundleManifest(built_at=timestamp.iso, packages=entries)
    write_json(bundle_dir / "manifest.json", bundle_manifest.to_json_dict())
    write_json(
        bundle_dir / "package.json",
        bundle_package_json(bundle_manifest, timestamp, prefix),
    )
    (bundle_dir / "README.md").write_text(
        f"# {prefix}\n\nGenerated at {timestamp.iso} UTC.\n"
    )
    return bundle_manifest


async def bundle(
    manifests: Iterable[BuildManifest],
    context: BuildContext,
    *,
    skip_packages: frozenset[str] = frozenset(),
    pack_commands: Mapping[str, list[str]] | None = None,
    prefix: str = DEFAULT_BUNDLE_PREFIX,
) -> BundleResult:
    """Pack every built package and assemble the aggregate bundle.

    Args:
        manifests: Build manifests, in the order they should appear.
        context: Build context (paths and settings are used).
        skip_packages: Package names that get a placeholder instead of an
            archive. settings.skip_package_packs applies this to every package.
        pack_commands: Per-package pack command overrides, by package name.
        prefix: Name of the aggregate package and of the final archive.

    Returns:
        BundleResult with the bundle manifest and final archive path.

    Raises:
        PackagingError: If there is nothing to bundle or a pack fails to
            report its archive.
    """
    manifests = list(manifests)
    if not manifests:
        raise PackagingError("No build manifests available. Run the build first.")

    step("Bundling packages")
    paths = context.paths
    pack_commands = pack_commands or {}
    paths.dist_dir.mkdir(parents=True, exist_ok=True)

    clean_dir(paths.packs_dir)
    archives = []
    for manifest in manifests:
        placeholder = (
            context.settings.skip_package_packs or manifest.package_name in skip_packages
        )
        archives.append(
            await pack_package(
                manifest,
                context,
                placeholder=placeholder,
                command=pack_commands.get(manifest.package_name),
            )
        )

    timestamp = create_timestamp()
    bundle_manifest = write_bundle_dir(archives, paths.bundle_dir, timestamp, prefix)

    produced = await pack_directory(paths.bundle_dir, paths.dist_dir, what="the bundle")
    tarball_path = paths.dist_dir / f"{prefix}-{timestamp.file_safe}.tgz"
    (paths.dist_dir / produced).replace(tarball_path)
    success(f"✓ Bundle available at {tarball_path}")

    return BundleResult(manifest=bundle_manifest, tarball_path=tarball_path)
