"""Shell and git utilities.

Provides an async wrapper around subprocess execution used for every
external command (git, the package manager, the packer), plus console
output helpers.
"""

from __future__ import annotations

import asyncio
import os
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import click

from .errors import CommandError


class OutputMode(Enum):
    """How a command's output is handled.

    INHERIT streams to the terminal (prefixed per line when a prefix is
    given); CAPTURE collects stdout/stderr into the result.
    """

    INHERIT = "inherit"
    CAPTURE = "capture"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a command that ran to completion."""

    command: list[str]
    cwd: Path | None
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


async def run_command(
    command: Sequence[str | Path],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    output: OutputMode = OutputMode.INHERIT,
    prefix: str | None = None,
    dry_run: bool = False,
    check: bool = True,
) -> CommandResult:
    """Run an external command and wait for it to exit.

    Args:
        command: Command and arguments (e.g., ["bun", "run", "build"]).
        cwd: Working directory. None runs in the current directory.
        env: Extra environment variables, merged over os.environ.
        output: Stream output to the terminal or capture it.
        prefix: Label prepended to each streamed line and log message.
        dry_run: Log the command instead of running it.
        check: If True (default), raise CommandError on non-zero exit.

    Returns:
        CommandResult with exit code and any captured output.

    Raises:
        ValueError: If the command is empty.
        CommandError: If the command fails and check is True, or if the
                      executable cannot be started.
    """
    argv = [str(part) for part in command]
    if not argv:
        raise ValueError("Command must contain at least one argument")

    if dry_run:
        info(f"[dry-run] {shlex.join(argv)}", prefix=prefix)
        return CommandResult(command=argv, cwd=cwd, exit_code=0)

    merged_env = {**os.environ, **env} if env else None
    piped = output is OutputMode.CAPTURE or prefix is not None
    stream = asyncio.subprocess.PIPE if piped else None

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv, cwd=cwd, env=merged_env, stdout=stream, stderr=stream
        )
    except OSError as exc:
        raise CommandError(argv, cwd, 127, stderr=str(exc)) from exc

    if output is OutputMode.CAPTURE:
        out, err = await proc.communicate()
        stdout = out.decode("utf-8", errors="replace")
        stderr = err.decode("utf-8", errors="replace")
    elif prefix is not None:
        stdout, stderr = await asyncio.gather(
            _relay_lines(proc.stdout, prefix, err=False),
            _relay_lines(proc.stderr, prefix, err=True),
        )
        await proc.wait()
    else:
        await proc.wait()
        stdout = stderr = ""

    result = CommandResult(
        command=argv,
        cwd=cwd,
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout,
        stderr=stderr,
    )
    if check and not result.ok:
        raise CommandError(argv, cwd, result.exit_code, stdout, stderr)
    return result


async def _relay_lines(
    reader: asyncio.StreamReader | None, prefix: str, *, err: bool
) -> str:
    """Echo a child stream line by line with a prefix, returning all of it."""
    if reader is None:
        return ""
    collected: list[str] = []
    while True:
        raw = await reader.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace")
        collected.append(line)
        click.echo(f"[{prefix}] {line.rstrip()}", err=err)
    return "".join(collected)


async def git(
    *args: str,
    cwd: Path | None = None,
    check: bool = True,
    dry_run: bool = False,
) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "rev-parse", "HEAD").
        cwd: Repository to run in.
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail (e.g., ref lookup).
        dry_run: Log the command instead of running it.

    Returns:
        Stripped stdout from the git command.
    """
    result = await run_command(
        ["git", *args],
        cwd=cwd,
        output=OutputMode.CAPTURE,
        check=check,
        dry_run=dry_run,
    )
    return result.stdout.strip()


def _format(msg: str, prefix: str | None) -> str:
    return f"[{prefix}] {msg}" if prefix else msg


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate major phases of the build pipeline in terminal output.
    """
    click.secho(f"\n{'─' * 60}\n{msg}\n{'─' * 60}", bold=True)


def info(msg: str, *, prefix: str | None = None) -> None:
    click.echo(_format(msg, prefix))


def success(msg: str, *, prefix: str | None = None) -> None:
    click.secho(_format(msg, prefix), fg="green")


def warn(msg: str, *, prefix: str | None = None) -> None:
    click.secho(_format(f"Warning: {msg}", prefix), fg="yellow", err=True)


def error(msg: str, *, prefix: str | None = None) -> None:
    click.secho(_format(f"ERROR: {msg}", prefix), fg="red", err=True)
