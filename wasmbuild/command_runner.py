"""Utilities for executing external commands with optional dry-run support."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence
import os
import shlex
import signal
import subprocess
import threading

from .errors import CancelledError, CommandError


_POLL_INTERVAL = 0.1


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def display(self) -> str:
        return " ".join(shlex.quote(part) for part in self.command)


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(part) for part in command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`.

    Output is always captured. When ``timeout`` elapses or ``cancel_event`` is
    set, the whole process group is killed and :class:`CancelledError` raised.
    """

    def _finalize(self, result: CommandResult, *, check: bool) -> CommandResult:
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    @staticmethod
    def _kill_tree(process: subprocess.Popen) -> None:
        if os.name == "posix":
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        else:  # pragma: no cover - exercised on Windows only
            process.kill()

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CommandResult:
        try:
            process = subprocess.Popen(
                list(command),
                cwd=str(cwd) if cwd else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=os.name == "posix",
            )
        except FileNotFoundError as exc:
            # Report a missing executable the way a shell would.
            return self._finalize(
                CommandResult(command=command, returncode=127, stdout="", stderr=str(exc)),
                check=check,
            )

        stdout, stderr = self._communicate(process, timeout=timeout, cancel_event=cancel_event)
        return self._finalize(
            CommandResult(
                command=command,
                returncode=process.returncode,
                stdout=stdout,
                stderr=stderr,
            ),
            check=check,
        )

    def _communicate(
        self,
        process: subprocess.Popen,
        *,
        timeout: float | None,
        cancel_event: threading.Event | None,
    ) -> tuple[str, str]:
        if timeout is None and cancel_event is None:
            try:
                return process.communicate()
            except KeyboardInterrupt:
                self._kill_tree(process)
                process.communicate()
                raise CancelledError(f"Interrupted: {self.format_command(process.args)}") from None

        waited = 0.0
        while True:
            interval = _POLL_INTERVAL
            if timeout is not None:
                interval = max(0.0, min(interval, timeout - waited))
            try:
                return process.communicate(timeout=interval)
            except subprocess.TimeoutExpired:
                waited += interval
            except KeyboardInterrupt:
                self._kill_tree(process)
                process.communicate()
                raise CancelledError(f"Interrupted: {self.format_command(process.args)}") from None

            if cancel_event is not None and cancel_event.is_set():
                self._kill_tree(process)
                process.communicate()
                raise CancelledError(f"Cancelled: {self.format_command(process.args)}")
            if timeout is not None and waited >= timeout:
                self._kill_tree(process)
                process.communicate()
                raise CancelledError(
                    f"Timed out after {timeout:g}s: {self.format_command(process.args)}"
                )


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them."""

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CommandResult:
        self.commands.append(
            RecordedCommand(
                command=list(command),
                cwd=str(cwd) if cwd else None,
            )
        )
        return CommandResult(command=command, returncode=0, stdout="", stderr="")

    def iter_commands(self) -> Iterable[RecordedCommand]:
        return iter(self.commands)

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            cmd = self.format_command(record.command)
            cwd = record.cwd or default_cwd
            parts: List[str] = ["[dry-run]"]
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(cmd)
            yield " ".join(parts)
