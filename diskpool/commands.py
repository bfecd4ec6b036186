"""Running external storage tools."""

from __future__ import annotations

import logging
import subprocess
from typing import Protocol, Sequence

log = logging.getLogger(__name__)


class CommandError(Exception):
    """An external command could not be started or exited with an error."""

    def __init__(self, argv: Sequence[str], returncode: int | None, output: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.output = output
        if returncode is None:
            reason = output or "could not start"
        else:
            reason = f"exit status {returncode}"
        super().__init__(f"{' '.join(self.argv)}: {reason}")


class Executor(Protocol):
    """What the LVM, bcache and partition layers need to run commands."""

    def execute_command(self, command: str, *args: str) -> None: ...

    def execute_command_with_output(self, command: str, *args: str) -> str: ...

    def execute_command_with_combined_output(self, command: str, *args: str) -> str: ...

    def execute_command_resident_binary(
        self, timeout: float, command: str, *args: str
    ) -> subprocess.Popen: ...


class CommandExecutor:
    """Runs commands as child processes and raises CommandError on failure."""

    @staticmethod
    def _argv(command: str, args: Sequence[object]) -> list[str]:
        return [command, *(str(a) for a in args)]

    def _run(self, argv: list[str], merge_stderr: bool) -> subprocess.CompletedProcess:
        log.debug("running %s", " ".join(argv))
        try:
            return subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise CommandError(argv, None, str(exc)) from exc

    def execute_command(self, command: str, *args: str) -> None:
        """Run a command, discarding its output."""
        argv = self._argv(command, args)
        result = self._run(argv, merge_stderr=False)
        if result.returncode != 0:
            output = (result.stdout + (result.stderr or "")).strip()
            log.debug("%s failed: %s", " ".join(argv), output)
            raise CommandError(argv, result.returncode, output)

    def execute_command_with_output(self, command: str, *args: str) -> str:
        """Run a command and return its standard output, trimmed."""
        argv = self._argv(command, args)
        result = self._run(argv, merge_stderr=False)
        if result.returncode != 0:
            output = (result.stdout + (result.stderr or "")).strip()
            raise CommandError(argv, result.returncode, output)
        return result.stdout.strip()

    def execute_command_with_combined_output(self, command: str, *args: str) -> str:
        """Run a command and return standard output and error interleaved."""
        argv = self._argv(command, args)
        result = self._run(argv, merge_stderr=True)
        output = result.stdout.strip()
        if result.returncode != 0:
            raise CommandError(argv, result.returncode, output)
        return output

    def execute_command_resident_binary(
        self, timeout: float, command: str, *args: str
    ) -> subprocess.Popen:
        """Start a long-running daemon.

        If the process exits with an error within ``timeout`` seconds a
        CommandError is raised; otherwise the running process is returned.
        """
        argv = self._argv(command, args)
        try:
            process = subprocess.Popen(
                argv, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True
            )
        except OSError as exc:
            raise CommandError(argv, None, str(exc)) from exc
        try:
            returncode = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return process
        if returncode != 0:
            output = process.stderr.read().strip() if process.stderr else ""
            raise CommandError(argv, returncode, output)
        return process