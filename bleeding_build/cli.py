"""CLI entry point for bleeding-build."""

from __future__ import annotations

import asyncio
import functools
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from .bundle import bundle
from .config import DEFAULT_PLAN, BuildOptions, BuildSettings
from .errors import BleedingBuildError
from .manifests import load_build_manifests
from .models import BuildPlan
from .paths import WorkspacePaths
from .pipeline import BuildContext, plan_lines, run_plan
from .shell import info, step, success
from .toml import dump_plan, load_plan


def _split_csv(ctx: click.Context, param: click.Parameter, value: str | None) -> list[str] | None:
    if not value:
        return None
    names = [name.strip() for name in value.split(",") if name.strip()]
    return names or None


def _path_options(func: Callable[..., Any]) -> Callable[..., Any]:
    func = click.option(
        "--dist",
        "dist_dir",
        type=click.Path(file_okay=False, path_type=Path),
        help="Directory receiving the final bundle archive. [default: ./dist]",
    )(func)
    func = click.option(
        "--workspace",
        "workspace_dir",
        type=click.Path(file_okay=False, path_type=Path),
        help="Scratch directory for checkouts and manifests. [default: ./.bleeding-edge]",
    )(func)
    return func


def _plan_options(func: Callable[..., Any]) -> Callable[..., Any]:
    func = click.option(
        "--only",
        "only_packages",
        callback=_split_csv,
        metavar="NAMES",
        help="Comma-separated package names (or dir names) to build.",
    )(func)
    func = click.option(
        "--plan-file",
        type=click.Path(dir_okay=False, exists=True, path_type=Path),
        help="TOML build plan to use instead of the built-in one.",
    )(func)
    return _path_options(func)


def _handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn pipeline errors into click errors (message on stderr, exit 1)."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except BleedingBuildError as exc:
            raise click.ClickException(str(exc)) from exc

    return wrapper


def _load_plan(plan_file: Path | None) -> BuildPlan:
    return load_plan(plan_file) if plan_file else DEFAULT_PLAN


def _make_context(
    workspace_dir: Path | None, dist_dir: Path | None, options: BuildOptions
) -> BuildContext:
    paths = WorkspacePaths.create(Path.cwd(), workspace_dir, dist_dir)
    return BuildContext.create(paths, BuildSettings.from_env(), options)


def _pack_overrides(plan: BuildPlan) -> tuple[frozenset[str], dict[str, list[str]]]:
    """Packages to leave out of the bundle and per-package pack commands."""
    specs = [spec for group in plan.groups for spec in group.packages]
    skipped = frozenset(spec.name for spec in specs if spec.skip_pack)
    commands = {spec.name: spec.pack_command for spec in specs if spec.pack_command}
    return skipped, commands


@click.group(invoke_without_command=True)
@click.version_option(package_name="bleeding-build")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Build a bleeding-edge bundle from interdependent repositories.

    Runs `build` when no command is given.
    """
    if ctx.invoked_subcommand is None:
        ctx.invoke(build)


@cli.command()
@_plan_options
@click.option("--dry-run", is_flag=True, help="Print commands instead of running them.")
@click.option("--skip-install", is_flag=True, help="Do not install dependencies.")
@click.option("--skip-build", is_flag=True, help="Do not run build commands.")
@click.option("--skip-publish", is_flag=True, help="Do not run publish commands.")
@click.option("--skip-pack", is_flag=True, help="Do not create the bundle.")
@click.option(
    "--skip-git-update",
    "--skip-git",
    "skip_git_update",
    is_flag=True,
    help="Use existing checkouts as they are.",
)
@click.option("--skip-git-clean", is_flag=True, help="Keep untracked files in checkouts.")
@_handle_errors
def build(
    workspace_dir: Path | None = None,
    dist_dir: Path | None = None,
    plan_file: Path | None = None,
    only_packages: list[str] | None = None,
    dry_run: bool = False,
    skip_install: bool = False,
    skip_build: bool = False,
    skip_publish: bool = False,
    skip_pack: bool = False,
    skip_git_update: bool = False,
    skip_git_clean: bool = False,
) -> None:
    """Check out, link and build every package, then bundle them."""
    plan = _load_plan(plan_file)
    options = BuildOptions(
        only_packages=only_packages,
        skip_install=skip_install,
        skip_build=skip_build,
        skip_publish=skip_publish,
        skip_pack=skip_pack,
        skip_git_update=skip_git_update,
        skip_git_clean=skip_git_clean,
        dry_run=dry_run,
    )
    context = _make_context(workspace_dir, dist_dir, options)
    for line in plan_lines(plan, context):
        info(line)

    manifests = asyncio.run(run_plan(plan, context))

    if skip_pack or dry_run:
        info("Skipping bundle step")
    else:
        skipped, commands = _pack_overrides(plan)
        result = asyncio.run(
            bundle(manifests, context, skip_packages=skipped, pack_commands=commands)
        )
        info(f"Bundle: {result.tarball_path}")

    success(f"✓ Built {len(manifests)} package{'s' if len(manifests) != 1 else ''}")


@cli.command("plan")
@_plan_options
@click.option("--toml", "as_toml", is_flag=True, help="Print the plan as a TOML plan file.")
@_handle_errors
def plan_command(
    workspace_dir: Path | None,
    dist_dir: Path | None,
    plan_file: Path | None,
    only_packages: list[str] | None,
    as_toml: bool,
) -> None:
    """Show the build order without executing anything."""
    plan = _load_plan(plan_file)
    if as_toml:
        click.echo(dump_plan(plan), nl=False)
        return
    context = _make_context(workspace_dir, dist_dir, BuildOptions(only_packages=only_packages))
    for line in plan_lines(plan, context):
        click.echo(line)


@cli.command("bundle")
@_path_options
@click.option(
    "--plan-file",
    type=click.Path(dir_okay=False, exists=True, path_type=Path),
    help="TOML build plan used to order the manifests.",
)
@_handle_errors
def bundle_command(
    workspace_dir: Path | None, dist_dir: Path | None, plan_file: Path | None
) -> None:
    """Bundle the packages built by a previous run."""
    plan = _load_plan(plan_file)
    context = _make_context(workspace_dir, dist_dir, BuildOptions())
    manifests = load_build_manifests(context.paths, plan)
    skipped, commands = _pack_overrides(plan)
    result = asyncio.run(
        bundle(manifests, context, skip_packages=skipped, pack_commands=commands)
    )
    click.echo(f"✓ Bundle available at {result.tarball_path}")


@cli.command()
@_path_options
@_handle_errors
def clean(workspace_dir: Path | None, dist_dir: Path | None) -> None:
    """Remove the workspace and dist directories."""
    paths = WorkspacePaths.create(Path.cwd(), workspace_dir, dist_dir)
    step("Cleaning")
    for path in (paths.workspace_dir, paths.dist_dir):
        if path.exists():
            try:
                shutil.rmtree(path)
            except OSError as exc:
                raise click.ClickException(f"Failed to remove {path}: {exc}") from exc
            info(f"Removed {path}")
    success("✓ Clean")
