"""Repository checkout management.

Clones or refreshes each repository of the plan under the workspace's repos
directory. Checkouts are cached per run by directory name, so packages that
share a repository trigger a single clone/fetch.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from .errors import CheckoutError, CommandError
from .models import DEFAULT_REF, FALLBACK_REF, PackageSpec, RepoState
from .paths import WorkspacePaths
from .shell import OutputMode, git, info, run_command, warn


async def get_current_commit(directory: Path) -> str:
    """Return the commit hash HEAD points at."""
    return await git("rev-parse", "HEAD", cwd=directory)


async def get_current_branch(directory: Path) -> str | None:
    """Return the checked-out branch name, or None when HEAD is detached."""
    branch = await git("rev-parse", "--abbrev-ref", "HEAD", cwd=directory, check=False)
    return branch if branch and branch != "HEAD" else None


class CheckoutManager:
    """Idempotent clone-or-update of repositories, cached for one run.

    Args:
        paths: Workspace layout; checkouts live in paths.repos_dir.
        dry_run: Log git commands without running them.
        skip_update: Leave existing checkouts untouched (no fetch/reset).
        skip_clean: Do not run `git clean -fdx` after updating.
    """

    def __init__(
        self,
        paths: WorkspacePaths,
        *,
        dry_run: bool = False,
        skip_update: bool = False,
        skip_clean: bool = False,
    ) -> None:
        self.paths = paths
        self.dry_run = dry_run
        self.skip_update = skip_update
        self.skip_clean = skip_clean
        self._checkouts: dict[str, asyncio.Future[RepoState]] = {}

    async def ensure_repo(self, spec: PackageSpec) -> RepoState:
        """Make sure the package's repository is checked out at its ref.

        The first call for a directory name performs the checkout; every
        later (or concurrent) call for the same directory awaits that same
        checkout and returns its RepoState.

        Raises:
            CheckoutError: If any git command other than the submodule
                           update fails.
        """
        dir_name = spec.resolved_dir_name
        checkout = self._checkouts.get(dir_name)
        if checkout is None:
            checkout = asyncio.ensure_future(self._checkout(spec, dir_name))
            self._checkouts[dir_name] = checkout
        return await asyncio.shield(checkout)

    async def _checkout(self, spec: PackageSpec, dir_name: str) -> RepoState:
        repo_dir = self.paths.repo_dir(dir_name)
        try:
            if (repo_dir / ".git").exists():
                branch = await self._update(spec, repo_dir)
            else:
                branch = await self._clone(spec, repo_dir)
        except CommandError as exc:
            raise CheckoutError(
                f"Failed to check out {spec.repository} into {repo_dir}:\n{exc}"
            ) from exc

        await self._update_submodules(spec, repo_dir)
        info(f"Repository ready at {repo_dir} ({branch})", prefix=spec.name)
        return RepoState(spec=spec, repo_dir=repo_dir, dir_name=dir_name, branch=branch)

    async def _clone(self, spec: PackageSpec, repo_dir: Path) -> str:
        """Shallow, single-branch clone of the requested ref."""
        info(f"Cloning {spec.repository}", prefix=spec.name)
        repo_dir.parent.mkdir(parents=True, exist_ok=True)
        command = [
            "git",
            "clone",
            "--filter=blob:none",
            "--single-branch",
            "--depth",
            "1",
        ]
        if spec.ref:
            command.extend(["--branch", spec.ref])
        command.extend([spec.repository, str(repo_dir)])
        await run_command(command, prefix=spec.name, dry_run=self.dry_run)

        if spec.ref:
            return spec.ref
        if self.dry_run:
            return DEFAULT_REF
        return await get_current_branch(repo_dir) or DEFAULT_REF

    async def _update(self, spec: PackageSpec, repo_dir: Path) -> str:
        """Fetch and hard-reset an existing checkout to the requested ref."""
        if self.skip_update:
            info("Skipping git update", prefix=spec.name)
            if spec.ref:
                return spec.ref
            return await get_current_branch(repo_dir) or DEFAULT_REF

        info(f"Updating {repo_dir}", prefix=spec.name)
        await git("fetch", "--tags", "--prune", "origin", cwd=repo_dir, dry_run=self.dry_run)

        if spec.ref:
            await self._checkout_ref(spec, repo_dir, spec.ref)
            branch = spec.ref
        else:
            branch = await self._default_branch(spec, repo_dir)
            await self._checkout_ref(spec, repo_dir, branch)

        if not self.skip_clean:
            await git("clean", "-fdx", cwd=repo_dir, dry_run=self.dry_run)
        return branch

    async def _default_branch(self, spec: PackageSpec, repo_dir: Path) -> str:
        """Pick the checked-out branch, else "main", else "master".

        A clone without a ref sits on the branch the remote HEAD pointed at.
        """
        candidates = [DEFAULT_REF, FALLBACK_REF]
        if not self.dry_run:
            current = await get_current_branch(repo_dir)
            if current:
                candidates = list(dict.fromkeys([current, *candidates]))
        for candidate in candidates:
            if await self._ref_exists(repo_dir, f"origin/{candidate}"):
                return candidate
        raise CheckoutError(
            f"None of origin/{', origin/'.join(candidates)} exists for {spec.repository}"
        )

    async def _checkout_ref(self, spec: PackageSpec, repo_dir: Path, ref: str) -> None:
        """Check out a branch (tracking origin) or else a tag/commit."""
        if await self._ref_exists(repo_dir, f"origin/{ref}"):
            await git("checkout", "-B", ref, f"origin/{ref}", cwd=repo_dir, dry_run=self.dry_run)
            await git("reset", "--hard", f"origin/{ref}", cwd=repo_dir, dry_run=self.dry_run)
            return
        if await self._ref_exists(repo_dir, f"{ref}^{{commit}}"):
            await git("checkout", "--detach", ref, cwd=repo_dir, dry_run=self.dry_run)
            await git("reset", "--hard", ref, cwd=repo_dir, dry_run=self.dry_run)
            return
        raise CheckoutError(f"Unable to check out ref {ref!r} of {spec.repository}")

    async def _ref_exists(self, repo_dir: Path, ref: str) -> bool:
        result = await run_command(
            ["git", "rev-parse", "--verify", "--quiet", ref],
            cwd=repo_dir,
            output=OutputMode.CAPTURE,
            check=False,
            dry_run=self.dry_run,
        )
        return result.ok

    async def _update_submodules(self, spec: PackageSpec, repo_dir: Path) -> None:
        """Recursively update submodules; failures are only warned about."""
        try:
            await git(
                "submodule",
                "update",
                "--init",
                "--recursive",
                cwd=repo_dir,
                dry_run=self.dry_run,
            )
        except CommandError as exc:
            warn(f"Failed to update submodules in {repo_dir}: {exc}", prefix=spec.name)
