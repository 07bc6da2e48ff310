"""Error types raised by the build pipeline.

Every fatal condition in the pipeline is one of these exceptions. They unwind
to the group orchestrator, which does not attempt partial continuation, and
from there to the CLI, which prints the message and exits non-zero.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class BleedingBuildError(Exception):
    """Base exception for bleeding-build."""


class ConfigError(BleedingBuildError):
    """Invalid build plan, package spec, or settings."""


class CommandError(BleedingBuildError):
    """An external command exited with a non-zero status.

    Attributes:
        command: The argv that was executed.
        cwd: Working directory the command ran in (None = process cwd).
        exit_code: The process exit status.
        stdout: Captured stdout (empty when output was streamed).
        stderr: Captured stderr (empty when output was streamed).
    """

    def __init__(
        self,
        command: Sequence[str],
        cwd: Path | None,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.command = list(command)
        self.cwd = cwd
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        message = (
            f"Command `{' '.join(self.command)}` exited with code {exit_code}"
            f" (cwd: {cwd or Path.cwd()})"
        )
        if stderr.strip():
            message += f"\n{stderr.strip()}"
        super().__init__(message)


class CheckoutError(BleedingBuildError):
    """A version-control operation failed while preparing a checkout."""


class PatchError(BleedingBuildError):
    """package.json could not be patched or restored."""


class PackagingError(BleedingBuildError):
    """Packing a package or the aggregate bundle failed."""
