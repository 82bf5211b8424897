"""External command execution.

Every diagnostic, extraction, update and reset tool is invoked through a
``CommandRunner``. The runner is handed to the components that need it at
construction time, so tests substitute a fake instead of patching module state.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

from flashgate.engine.errors import ToolExecutionError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one command invocation."""

    args: list[str]
    returncode: int
    output: str = ""
    dry_run: bool = False


class CommandRunner(Protocol):
    """Capability to execute commands, honoring dry-run."""

    async def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        dry_run: bool = False,
    ) -> CommandResult:
        """Run a command and return its combined output."""
        ...

    async def run_streaming(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        dry_run: bool = False,
    ) -> CommandResult:
        """Run a command, forwarding its output to the log line by line."""
        ...


class ProcessRunner:
    """Runs commands as local subprocesses."""

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds

    async def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        dry_run: bool = False,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        if dry_run:
            logger.debug(f"Run exec in dry-run mode: {argv}")
            return CommandResult(args=argv, returncode=0, dry_run=True)

        process = await _spawn(argv, cwd, stderr=asyncio.subprocess.STDOUT)
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ToolExecutionError(argv, -1, f"timed out after {self.timeout_seconds}s")

        output = stdout.decode(errors="replace") if stdout else ""
        if process.returncode != 0:
            logger.debug(f"Executed unsuccessfully: {argv} output={output!r}")
            raise ToolExecutionError(argv, process.returncode, output)
        return CommandResult(args=argv, returncode=process.returncode, output=output)

    async def run_streaming(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        dry_run: bool = False,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        if dry_run:
            logger.debug(f"Run exec in dry-run mode: {argv}")
            return CommandResult(args=argv, returncode=0, dry_run=True)

        process = await _spawn(argv, cwd, stderr=asyncio.subprocess.PIPE)
        await asyncio.gather(
            _forward_lines(process.stdout, "stdout"),
            _forward_lines(process.stderr, "stderr"),
        )
        returncode = await process.wait()
        if returncode != 0:
            raise ToolExecutionError(argv, returncode)
        return CommandResult(args=argv, returncode=returncode)


async def _spawn(argv: list[str], cwd: Optional[Path], stderr: int) -> asyncio.subprocess.Process:
    # Missing or non-executable binaries surface as a failed command
    try:
        return await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=stderr,
        )
    except OSError as e:
        logger.debug(f"Failed to start {argv}: {e}")
        raise ToolExecutionError(argv, -1, str(e)) from e


async def _forward_lines(stream: Optional[asyncio.StreamReader], name: str) -> None:
    if stream is None:
        return
    async for raw in stream:
        # Carriage returns from progress output split into separate records
        for line in raw.decode(errors="replace").replace("\r", "\n").split("\n"):
            line = line.strip()
            if line:
                logger.debug(line, extra={"stream": name})
