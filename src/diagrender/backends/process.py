"""Async subprocess helper shared by the process and container backends."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


async def run_command(
    args: Sequence[str],
    *,
    input: bytes | None = None,
    timeout: float = 30.0,
    cwd: str | None = None,
) -> CommandResult:
    """Run a command to completion and capture its output.

    Args:
        args: Executable and arguments
        input: Bytes written to stdin, if any
        timeout: Seconds before the process is killed
        cwd: Working directory

    Returns:
        CommandResult with exit code and captured streams

    Raises:
        FileNotFoundError: If the executable does not exist
        TimeoutError: If the process outlives ``timeout``
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(input), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise TimeoutError(f"{args[0]} timed out after {timeout:g}s") from None
    return CommandResult(returncode=process.returncode or 0, stdout=stdout, stderr=stderr)
