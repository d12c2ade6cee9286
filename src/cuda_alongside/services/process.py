"""Subprocess execution for installer tools."""

import asyncio
import shlex
import sys
from dataclasses import dataclass
from typing import Optional, Sequence
import logging

_SPIN_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessManager:
    """Runs external commands (installer, update-alternatives, ldconfig, ...)."""

    def __init__(self, show_spinner: Optional[bool] = None):
        """Initialize process manager.

        Args:
            show_spinner: Draw a spinner for long commands (default: only on a TTY)
        """
        self.logger = logging.getLogger("cuda_alongside.process")
        self.show_spinner = sys.stderr.isatty() if show_spinner is None else show_spinner

    async def run(
        self,
        argv: Sequence[str],
        check: bool = False,
        message: Optional[str] = None,
    ) -> CmdResult:
        """Run a command to completion.

        Args:
            argv: Command and arguments
            check: Raise RuntimeError on non-zero exit status
            message: Spinner label for long-running commands

        Returns:
            CmdResult with exit status and decoded output

        Raises:
            FileNotFoundError: If the executable does not exist
            RuntimeError: If check is set and the command fails
        """
        argv_list = [str(a) for a in argv]
        cmdline = " ".join(shlex.quote(a) for a in argv_list)
        self.logger.debug(f"CMD {cmdline}")

        process = await asyncio.create_subprocess_exec(
            *argv_list,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        spinner = None
        if message and self.show_spinner:
            spinner = asyncio.create_task(self._spin(message))
        try:
            stdout, stderr = await process.communicate()
        finally:
            if spinner is not None:
                spinner.cancel()
                await asyncio.gather(spinner, return_exceptions=True)
                sys.stderr.write(f"\r{message} ✓\n")

        result = CmdResult(
            argv=argv_list,
            returncode=process.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if result.stderr.strip():
            self.logger.debug(f"STDERR {result.stderr.strip()}")

        if check and not result.ok:
            raise RuntimeError(
                f"Command failed ({result.returncode}): {cmdline}\n{result.stderr.strip()}"
            )
        return result

    async def _spin(self, message: str) -> None:
        """Cosmetic progress indicator; has no effect on ordering."""
        i = 0
        while True:
            sys.stderr.write(f"\r{message} {_SPIN_FRAMES[i % len(_SPIN_FRAMES)]}")
            sys.stderr.flush()
            i += 1
            await asyncio.sleep(0.1)
