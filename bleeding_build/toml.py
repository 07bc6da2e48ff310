"""TOML reading and writing utilities for build plan files.

Uses tomlkit so a plan file keeps its formatting and comments, and so the
built-in plan can be exported as a starting point for a custom one.

Plan file layout:

    [[groups]]
    id = "group-1"
    title = "Foundations"

    [[groups.packages]]
    name = "@scope/core"
    repository = "scope/core"
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomlkit
from pydantic import ValidationError
from tomlkit.exceptions import TOMLKitError

from .config import expand_repository
from .errors import ConfigError
from .models import BuildPlan


def load_toml(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a TOML file.

    Raises:
        ConfigError: If the file is missing or not valid TOML.
    """
    try:
        return tomlkit.parse(path.read_text())
    except FileNotFoundError as exc:
        raise ConfigError(f"Plan file not found: {path}") from exc
    except TOMLKitError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc


def get_group_tables(doc: tomlkit.TOMLDocument) -> list[dict[str, Any]]:
    """Extract the [[groups]] array as plain Python data.

    Raises:
        ConfigError: If no groups are defined.
    """
    groups = doc.unwrap().get("groups")
    if not groups or not isinstance(groups, list):
        raise ConfigError("No [[groups]] defined in plan file")
    return groups


def load_plan(path: Path) -> BuildPlan:
    """Read a build plan from a TOML file.

    Repository slugs ("owner/name") are expanded to GitHub clone URLs.

    Raises:
        ConfigError: If the file is invalid or the plan fails validation
                     (unknown keys, duplicate group ids or package names).
    """
    groups = get_group_tables(load_toml(path))
    for group in groups:
        for package in group.get("packages", []):
            if isinstance(package, dict) and "repository" in package:
                package["repository"] = expand_repository(str(package["repository"]))
    try:
        return BuildPlan.model_validate({"groups": groups})
    except ValidationError as exc:
        raise ConfigError(f"Invalid build plan in {path}:\n{exc}") from exc


def dump_plan(plan: BuildPlan) -> str:
    """Render a build plan as TOML, omitting fields left at their default."""
    doc = tomlkit.document()
    groups = tomlkit.aot()
    for group in plan.groups:
        table = tomlkit.table()
        table.add("id", group.id)
        if group.title:
            table.add("title", group.title)
        if group.concurrency is not None:
            table.add("concurrency", group.concurrency)
        packages = tomlkit.aot()
        for spec in group.packages:
            package = tomlkit.table()
            for key, value in spec.model_dump(exclude_defaults=True).items():
                package.add(key, value)
            packages.append(package)
        table.add("packages", packages)
        groups.append(table)
    doc.add("groups", groups)
    return tomlkit.dumps(doc)
