"""Async subprocess execution with timeout and cancellation."""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of a command execution."""

    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    not_found: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """Check if command was successful."""
        return self.returncode == 0 and not self.timed_out


async def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill a still-running process and reap it."""
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


async def run_command(
    cmd: list[str],
    timeout: float | None = None,
    env: dict[str, str] | None = None,
    cwd: str | None = None,
) -> CommandResult:
    """Run a command, killing it on timeout or cancellation.

    Args:
        cmd: Command and arguments
        timeout: Timeout in seconds (None for no timeout)
        env: Environment variables (default: inherit)
        cwd: Working directory

    Returns:
        CommandResult with decoded stdout/stderr

    Raises:
        asyncio.CancelledError: Re-raised after the child process is killed
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    start = time.monotonic()

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
        )
    except FileNotFoundError as e:
        logger.debug(f"Command not found: {cmd[0]}")
        return CommandResult(returncode=127, stdout="", stderr=str(e), not_found=True)
    except OSError as e:
        # e.g. on PATH but not executable
        logger.debug(f"Cannot execute {cmd[0]}: {e}")
        return CommandResult(returncode=126, stdout="", stderr=f"Cannot execute {cmd[0]}: {e}")

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        await _kill(process)
        logger.debug(f"Command timed out after {timeout}s: {cmd[0]}")
        return CommandResult(
            returncode=-1,
            stdout="",
            stderr=f"Command timed out after {timeout} seconds",
            timed_out=True,
            duration_seconds=time.monotonic() - start,
        )
    except asyncio.CancelledError:
        await _kill(process)
        raise

    return CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        duration_seconds=time.monotonic() - start,
    )
