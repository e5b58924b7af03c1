"""Command execution primitive shared by every service."""

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass

from fusion_vm.exceptions import ExternalCommandError

logger = logging.getLogger(__name__)

# Exit statuses reported for commands that never produced one
EXIT_TIMEOUT = 124
EXIT_CANNOT_EXECUTE = 126
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Check if the command exited successfully."""
        return self.returncode == 0

    @property
    def command(self) -> str:
        """Shell-quoted command line."""
        return shlex.join(self.args)

    @property
    def output(self) -> str:
        """Diagnostic text: stderr when present, else stdout."""
        return self.stderr.strip() or self.stdout.strip()

    def check(self) -> "CommandResult":
        """Raise ExternalCommandError unless the command succeeded."""
        if not self.ok:
            raise ExternalCommandError(self.command, self.returncode, self.output)
        return self


class CommandExecutor:
    """Runs external commands and never raises on failure."""

    def __init__(self, use_sudo: bool | None = None) -> None:
        # Root needs no sudo; anyone else escalates non-interactively
        self._use_sudo = os.geteuid() != 0 if use_sudo is None else use_sudo

    def run(
        self,
        args: list[str],
        privileged: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and capture its output."""
        if privileged and self._use_sudo:
            args = ["sudo", "-n", *args]

        argv = tuple(args)
        logger.debug("Running: %s", shlex.join(argv))

        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            return CommandResult(argv, EXIT_NOT_FOUND, stderr=f"{argv[0]}: command not found")
        except subprocess.TimeoutExpired:
            return CommandResult(argv, EXIT_TIMEOUT, stderr=f"timed out after {timeout}s")
        except OSError as e:
            return CommandResult(argv, EXIT_CANNOT_EXECUTE, stderr=str(e))

        if result.returncode != 0:
            logger.debug("Command exited %d: %s", result.returncode, result.stderr.strip())

        return CommandResult(argv, result.returncode, result.stdout, result.stderr)
