"""Configuration: environment settings, CLI options and the default plan."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

from .models import BuildGroup, BuildPlan, PackageSpec
from .shell import warn

ENV_PREFIX = "BLEEDING_"
DEFAULT_INSTALL_COMMAND = ["bun", "install"]
DEFAULT_BUILD_COMMAND = ["bun", "run", "build"]
DEFAULT_PACK_COMMAND = ["npm", "pack", "--json"]
DEFAULT_BUNDLE_PREFIX = "tscircuit-bleeding"
BUILD_ENV = {"HUSKY": "0", "CI": "1"}


def default_concurrency() -> int:
    """One less than the CPU count, between 1 and 4."""
    cpu_count = os.cpu_count() or 2
    return max(1, min(4, cpu_count - 1))


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(ENV_PREFIX + name) == "1"


class BuildSettings(BaseModel):
    """Settings read from the environment.

    Attributes:
        concurrency: Default concurrency ceiling for a group.
        group_filter: Group ids to build; None builds every group.
        skip_builds: Skip install/build commands (manifest-only pass).
            Also disables local dependency patching.
        disable_patch: Disable local dependency patching.
        skip_package_packs: Write placeholder files instead of packing
            each package while bundling.
    """

    concurrency: int = Field(default_factory=default_concurrency, ge=1)
    group_filter: frozenset[str] | None = None
    skip_builds: bool = False
    disable_patch: bool = False
    skip_package_packs: bool = False

    @property
    def patching_disabled(self) -> bool:
        return self.skip_builds or self.disable_patch

    def includes_group(self, group_id: str) -> bool:
        return self.group_filter is None or group_id in self.group_filter

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BuildSettings:
        """Build settings from BLEEDING_* environment variables.

        An unparsable or non-positive BLEEDING_CONCURRENCY falls back to the
        CPU-based default.
        """
        env = os.environ if environ is None else environ

        concurrency = default_concurrency()
        raw = env.get(ENV_PREFIX + "CONCURRENCY")
        if raw:
            try:
                parsed = int(raw)
            except ValueError:
                parsed = 0
            if parsed > 0:
                concurrency = parsed
            else:
                warn(f"Ignoring invalid {ENV_PREFIX}CONCURRENCY={raw!r}")

        groups = [
            value.strip()
            for value in env.get(ENV_PREFIX + "GROUP_FILTER", "").split(",")
            if value.strip()
        ]

        return cls(
            concurrency=concurrency,
            group_filter=frozenset(groups) if groups else None,
            skip_builds=_flag(env, "SKIP_BUILDS"),
            disable_patch=_flag(env, "DISABLE_PATCH"),
            skip_package_packs=_flag(env, "SKIP_PACKAGE_PACKS"),
        )


class BuildOptions(BaseModel):
    """Options selected on the command line."""

    only_packages: list[str] | None = None
    skip_install: bool = False
    skip_build: bool = False
    skip_publish: bool = False
    skip_pack: bool = False
    skip_git_update: bool = False
    skip_git_clean: bool = False
    dry_run: bool = False

    def selects(self, spec: PackageSpec) -> bool:
        """Whether --only (by package name or dir name) keeps this package."""
        if not self.only_packages:
            return True
        return any(
            name in (spec.name, spec.resolved_dir_name) for name in self.only_packages
        )


def expand_repository(repository: str) -> str:
    """Expand a GitHub "owner/name" slug to a clone URL.

    Examples:
        "tscircuit/core" → "https://github.com/tscircuit/core.git"
        "git@host:x/y.git" → unchanged
    """
    if "://" in repository or repository.startswith("git@"):
        return repository
    slug = repository.strip("/").removesuffix(".git")
    return f"https://github.com/{slug}.git"


def _package(name: str, repository: str, **overrides: object) -> PackageSpec:
    return PackageSpec(name=name, repository=expand_repository(repository), **overrides)


DEFAULT_PLAN = BuildPlan(
    groups=[
        BuildGroup(
            id="group-1",
            title="Viewer foundations",
            packages=[
                _package("@tscircuit/core", "tscircuit/core"),
                _package("@tscircuit/pcb-viewer", "tscircuit/pcb-viewer"),
                _package("@tscircuit/schematic-viewer", "tscircuit/schematic-viewer"),
                _package("@tscircuit/3d-viewer", "tscircuit/3d-viewer"),
            ],
        ),
        BuildGroup(
            id="group-2",
            title="Runtime packages",
            packages=[
                _package("@tscircuit/eval", "tscircuit/eval"),
                _package("@tscircuit/runframe", "tscircuit/runframe"),
            ],
        ),
        BuildGroup(
            id="group-3",
            title="CLI",
            packages=[_package("@tscircuit/cli", "tscircuit/cli")],
        ),
        BuildGroup(
            id="group-4",
            title="Top-level tscircuit",
            packages=[_package("tscircuit", "tscircuit/tscircuit")],
        ),
    ]
)
