"""Data models for bleeding-build.

These Pydantic models represent the core data structures used throughout
the build pipeline. Records that are persisted as JSON (build manifests,
bundle manifests) serialize with camelCase keys because the files are
consumed by JavaScript tooling.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_REF = "main"
FALLBACK_REF = "master"

# An argv: the program and its arguments.
Argv = Annotated[list[str], Field(min_length=1)]


def slugify_package_name(name: str) -> str:
    """Derive a directory name from an npm package name.

    Examples:
        "@scope/core" → "scope-core"
        "tscircuit" → "tscircuit"
    """
    return name.removeprefix("@").replace("/", "-")


class PackageSpec(BaseModel):
    """Declarative description of one buildable package.

    Attributes:
        name: npm package name, used for linking and the registry.
        repository: Git URL of the repository holding the package.
        ref: Branch, tag or commit to check out. None means the primary
             branch ("main", falling back to "master").
        directory: Sub-directory of the repository containing package.json.
        dir_name: Checkout directory name. Packages living in the same
                  repository must share it so the repo is cloned once.
        install_command / build_command / publish_command / pack_command:
            argv overrides. None selects the default.
        pre_build_commands / post_build_commands: extra argvs run around
            the build step. Each argv must be non-empty.
        env: Extra environment variables for every command of the package.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    repository: str
    ref: str | None = None
    directory: str | None = None
    dir_name: str | None = None
    install_command: list[str] | None = None
    build_command: list[str] | None = None
    publish_command: list[str] | None = None
    pack_command: list[str] | None = None
    pre_build_commands: list[Argv] = Field(default_factory=list)
    post_build_commands: list[Argv] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    skip_install: bool = False
    skip_build: bool = False
    skip_publish: bool = False
    skip_pack: bool = False

    @property
    def resolved_dir_name(self) -> str:
        return self.dir_name or slugify_package_name(self.name)

    def package_dir(self, repo_dir: Path) -> Path:
        """Directory holding this package's package.json inside a checkout."""
        return repo_dir / self.directory if self.directory else repo_dir


class BuildGroup(BaseModel):
    """Ordered batch of mutually independent packages."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    title: str = ""
    packages: list[PackageSpec] = Field(default_factory=list)
    concurrency: int | None = Field(default=None, ge=1)


class BuildPlan(BaseModel):
    """The full, ordered list of build groups.

    A package in group N may depend on packages of groups 1..N-1 only.
    Group ids and package names must be unique across the plan.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    groups: list[BuildGroup] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique(self) -> BuildPlan:
        group_ids = [group.id for group in self.groups]
        duplicate_groups = sorted({g for g in group_ids if group_ids.count(g) > 1})
        if duplicate_groups:
            raise ValueError(f"Duplicate group ids: {', '.join(duplicate_groups)}")
        names = [pkg.name for group in self.groups for pkg in group.packages]
        duplicate_names = sorted({n for n in names if names.count(n) > 1})
        if duplicate_names:
            raise ValueError(f"Duplicate package names: {', '.join(duplicate_names)}")
        return self

    def group_order(self) -> dict[str, int]:
        """Map of group id → position in the plan."""
        return {group.id: index for index, group in enumerate(self.groups)}


class RepoState(BaseModel):
    """A repository checked out during the current run.

    Created once per checkout directory by the CheckoutManager and reused by
    every package that lives in the same repository.
    """

    spec: PackageSpec
    repo_dir: Path
    dir_name: str
    branch: str


class LocalDependency(BaseModel):
    """A dependency rewritten to point at a sibling built in this run."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    relative_path: str
    original_version: str


class BuildManifest(BaseModel):
    """Provenance record of one package build.

    Serialized (by alias) to manifests/<dirName>.json. Field order matches
    the key order expected by consumers.
    """

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    package_name: str
    version: str
    repository: str
    dir_name: str
    commit: str
    ref: str
    built_at: str
    relative_repo_dir: str
    install_command: list[str]
    build_command: list[str]
    group_id: str
    local_dependencies: dict[str, LocalDependency] = Field(default_factory=dict)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class LocalPackageRef(BaseModel):
    """Registry entry for a package that finished building in this run."""

    manifest: BuildManifest
    repo_state: RepoState
    package_dir: Path


class BundleEntry(BaseModel):
    """One package inside the aggregate bundle."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    package_name: str
    version: str
    repository: str
    commit: str
    ref: str
    group_id: str
    tarball_file: str
    local_dependencies: dict[str, LocalDependency] = Field(default_factory=dict)
    skipped: bool = False


class BundleManifest(BaseModel):
    """Aggregate of every package manifest in a bundle."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    built_at: str
    packages: list[BundleEntry] = Field(default_factory=list)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class BundleResult(BaseModel):
    """Outcome of the bundling phase."""

    manifest: BundleManifest
    tarball_path: Path
