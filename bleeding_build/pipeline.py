"""Build pipeline: checkout → patch → install → build → restore → manifest.

This module orchestrates a bleeding-edge build:
1. Walk the plan's groups strictly in order
2. Build every package of a group with bounded concurrency
3. For each package, check out its repository, point dependencies on
   packages built in earlier groups at their local checkouts, run the
   install/build commands, restore package.json and write a manifest
4. Once a whole group has finished, register its packages so later groups
   can link against them

A package never links against a package of its own or a later group: the
registry is only written between groups, by the orchestrator.
"""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType

from .concurrency import map_with_concurrency
from .config import (
    BUILD_ENV,
    DEFAULT_BUILD_COMMAND,
    DEFAULT_INSTALL_COMMAND,
    BuildOptions,
    BuildSettings,
)
from .deps import PACKAGE_JSON, ManifestPatch, patched_manifest
from .errors import CheckoutError, CommandError, ConfigError
from .git import CheckoutManager, get_current_commit
from .manifests import write_build_manifest
from .models import (
    BuildGroup,
    BuildManifest,
    BuildPlan,
    LocalPackageRef,
    PackageSpec,
)
from .paths import WorkspacePaths
from .shell import error, info, run_command, step, success, warn
from .versions import utc_now_iso

DRY_RUN_COMMIT = "dry-run"


@dataclass
class BuildContext:
    """Everything a build run needs besides the plan itself."""

    paths: WorkspacePaths
    settings: BuildSettings
    options: BuildOptions
    checkouts: CheckoutManager

    @classmethod
    def create(
        cls,
        paths: WorkspacePaths,
        settings: BuildSettings | None = None,
        options: BuildOptions | None = None,
    ) -> BuildContext:
        options = options or BuildOptions()
        return cls(
            paths=paths,
            settings=settings or BuildSettings.from_env(),
            options=options,
            checkouts=CheckoutManager(
                paths,
                dry_run=options.dry_run,
                skip_update=options.skip_git_update,
                skip_clean=options.skip_git_clean,
            ),
        )


class GroupStatus(Enum):
    PENDING = "pending"
    BUILDING = "building"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


def resolve_command(
    override: list[str] | None, default: list[str], *, label: str, package: str
) -> list[str]:
    """Pick a package's command override, or the default when unset.

    Raises:
        ConfigError: If the override is an empty list.
    """
    if override is None:
        return list(default)
    if not override:
        raise ConfigError(f"{label} command for {package} is empty")
    return list(override)


async def build_package(
    spec: PackageSpec,
    registry: Mapping[str, LocalPackageRef],
    context: BuildContext,
    group_id: str,
) -> BuildManifest:
    """Build one package and write its manifest.

    package.json is restored whether install/build succeed or fail; a
    failure is re-raised after the restore.

    Args:
        spec: Package to build.
        registry: Packages built in earlier groups (read-only).
        context: Paths, settings and options of the run.
        group_id: Id of the group the package belongs to.

    Returns:
        The manifest that was written to disk.

    Raises:
        CheckoutError: If the repository cannot be checked out.
        PatchError: If package.json is missing or malformed.
        CommandError: If install, build or publish fails.
        ConfigError: If a command override is empty.
    """
    settings, options = context.settings, context.options
    prefix = spec.name
    info("Building", prefix=prefix)

    install_command = resolve_command(
        spec.install_command, DEFAULT_INSTALL_COMMAND, label="Install", package=spec.name
    )
    build_command = resolve_command(
        spec.build_command, DEFAULT_BUILD_COMMAND, label="Build", package=spec.name
    )
    publish_command = (
        resolve_command(spec.publish_command, [], label="Publish", package=spec.name)
        if spec.publish_command is not None
        else None
    )

    repo_state = await context.checkouts.ensure_repo(spec)
    package_dir = spec.package_dir(repo_state.repo_dir)
    env = {**BUILD_ENV, **spec.env}

    async def run(command: list[str]) -> None:
        await run_command(
            command, cwd=package_dir, env=env, prefix=prefix, dry_run=options.dry_run
        )

    if settings.patching_disabled and registry:
        info("Local dependency patching disabled", prefix=prefix)

    if options.dry_run and not (package_dir / PACKAGE_JSON).exists():
        warn(f"No {PACKAGE_JSON} in {package_dir} (dry-run), not patching", prefix=prefix)
        patch_scope = nullcontext(None)
    else:
        patch_scope = patched_manifest(
            package_dir, registry, disable=settings.patching_disabled
        )

    with patch_scope as patch:
        if patch is not None:
            for dep_name, local in patch.local_dependencies.items():
                info(
                    f"Linked {dep_name} → file:{local.relative_path}"
                    f" (was {local.original_version})",
                    prefix=prefix,
                )

        if settings.skip_builds:
            info("Skipping install/build commands", prefix=prefix)
        else:
            if spec.skip_install or options.skip_install:
                info("Skipping dependency installation", prefix=prefix)
            else:
                info(f"Installing dependencies ({' '.join(install_command)})", prefix=prefix)
                await run(install_command)

            if spec.skip_build or options.skip_build:
                info("Skipping build step", prefix=prefix)
            else:
                for command in spec.pre_build_commands:
                    await run(command)
                info(f"Running build ({' '.join(build_command)})", prefix=prefix)
                await run(build_command)
                for command in spec.post_build_commands:
                    await run(command)

    if publish_command and not (spec.skip_publish or options.skip_publish):
        info(f"Publishing ({' '.join(publish_command)})", prefix=prefix)
        await run(publish_command)

    commit = await _capture_commit(spec, repo_state.repo_dir, dry_run=options.dry_run)
    manifest = _assemble_manifest(
        spec,
        patch,
        context=context,
        package_dir=package_dir,
        commit=commit,
        ref=repo_state.branch,
        install_command=install_command,
        build_command=build_command,
        group_id=group_id,
    )
    write_build_manifest(context.paths, manifest)
    success(f"✓ {manifest.package_name}@{manifest.version} built", prefix=prefix)
    return manifest


async def _capture_commit(spec: PackageSpec, repo_dir: Path, *, dry_run: bool) -> str:
    if dry_run:
        return DRY_RUN_COMMIT
    try:
        return await get_current_commit(repo_dir)
    except CommandError as exc:
        raise CheckoutError(f"Failed to read commit of {spec.name}: {exc}") from exc


def _assemble_manifest(
    spec: PackageSpec,
    patch: ManifestPatch | None,
    *,
    context: BuildContext,
    package_dir: Path,
    commit: str,
    ref: str,
    install_command: list[str],
    build_command: list[str],
    group_id: str,
) -> BuildManifest:
    """Build the manifest; name and version come from package.json."""
    return BuildManifest(
        package_name=(patch and patch.package_name) or spec.name,
        version=(patch and patch.version) or "0.0.0",
        repository=spec.repository,
        dir_name=spec.resolved_dir_name,
        commit=commit,
        ref=ref,
        built_at=utc_now_iso(),
        relative_repo_dir=context.paths.relative_to_root(package_dir),
        install_command=install_command,
        build_command=build_command,
        group_id=group_id,
        local_dependencies=dict(patch.local_dependencies) if patch else {},
    )


class GroupOrchestrator:
    """Runs the groups of a plan in order, feeding built packages forward.

    Attributes:
        statuses: GroupStatus of every group id, updated as the run goes.
        registry: Read-only view of the packages built so far.
    """

    def __init__(self, context: BuildContext) -> None:
        self.context = context
        self.statuses: dict[str, GroupStatus] = {}
        self._registry: dict[str, LocalPackageRef] = {}
        self.registry: Mapping[str, LocalPackageRef] = MappingProxyType(self._registry)

    def selected_packages(self, group: BuildGroup) -> list[PackageSpec]:
        """Packages of `group` that will be built, or [] if it is skipped."""
        if not self.context.settings.includes_group(group.id):
            return []
        return [spec for spec in group.packages if self.context.options.selects(spec)]

    async def run(self, plan: BuildPlan) -> list[BuildManifest]:
        """Build every selected group; the first failure aborts the run."""
        self.statuses = {group.id: GroupStatus.PENDING for group in plan.groups}
        manifests: list[BuildManifest] = []

        for group in plan.groups:
            label = group.title or group.id
            specs = self.selected_packages(group)
            if not specs:
                self.statuses[group.id] = GroupStatus.SKIPPED
                info(f"• {label} (skipped)")
                continue

            self.statuses[group.id] = GroupStatus.BUILDING
            count = len(specs)
            info(f"• {label} ({count} package{'s' if count != 1 else ''})")
            limit = group.concurrency or self.context.settings.concurrency

            async def build(spec: PackageSpec, group_id: str = group.id) -> BuildManifest:
                return await build_package(spec, self.registry, self.context, group_id)

            try:
                group_manifests = await map_with_concurrency(specs, limit, build)
            except Exception as exc:
                self.statuses[group.id] = GroupStatus.FAILED
                error(f"Group {group.id} failed: {exc}")
                raise

            for spec, manifest in zip(specs, group_manifests):
                repo_state = await self.context.checkouts.ensure_repo(spec)
                self._registry[manifest.package_name] = LocalPackageRef(
                    manifest=manifest,
                    repo_state=repo_state,
                    package_dir=spec.package_dir(repo_state.repo_dir),
                )
                manifests.append(manifest)

            self.statuses[group.id] = GroupStatus.COMPLETED
            success(f"Completed group: {label}")

        return manifests


async def run_plan(plan: BuildPlan, context: BuildContext) -> list[BuildManifest]:
    """Build a whole plan and return the manifests in build order."""
    step("Building packages")
    context.paths.ensure()
    return await GroupOrchestrator(context).run(plan)


def plan_lines(plan: BuildPlan, context: BuildContext) -> list[str]:
    """Describe the resolved build order without executing anything."""
    orchestrator = GroupOrchestrator(context)
    lines = ["Build plan:"]
    for index, group in enumerate(plan.groups, start=1):
        label = f"{group.id}: {group.title}" if group.title else group.id
        specs = orchestrator.selected_packages(group)
        if not specs:
            lines.append(f"{index}. {label} (skipped)")
            continue
        concurrency = group.concurrency or context.settings.concurrency
        lines.append(f"{index}. {label} (concurrency {concurrency})")
        for spec in specs:
            ref = f"#{spec.ref}" if spec.ref else ""
            lines.append(f"   • {spec.name} ← {spec.repository}{ref}")
    if len(lines) == 1:
        lines.append("(no groups in plan)")
    return lines
