"""Execution of a single, already expanded, build step."""
from __future__ import annotations

from pathlib import Path
import shlex
import shutil
import threading

from .command_runner import CommandResult, CommandRunner
from .console import Console
from .errors import CommandError, ParseError, StepExecutionError, StepPreparationError
from .manifest import Step


def _within(base: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


class StepExecutor:
    """Prepares directories for a step and runs its command.

    Side effects happen in a fixed order: ``rmdirs`` are removed, ``mkdirs``
    are created, then the command runs with the step's directory as cwd. In
    dry-run mode the directory actions are only reported.
    """

    def __init__(
        self,
        runner: CommandRunner,
        console: Console | None = None,
        *,
        dry_run: bool = False,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._runner = runner
        self._console = console or Console(level="none", dry_run=dry_run)
        self._dry_run = dry_run
        self._timeout = timeout
        self._cancel_event = cancel_event

    def _remove(self, path: Path) -> None:
        if self._dry_run:
            self._console.dry(f"rmdir {path}")
            return
        try:
            if path.is_dir() and not path.is_symlink():
                self._console.debug(f"Removing directory {path}")
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()
        except OSError as exc:
            raise StepPreparationError("remove", path, exc) from exc

    def _create(self, path: Path) -> None:
        if self._dry_run:
            self._console.dry(f"mkdir {path}")
            return
        self._console.debug(f"Creating directory {path}")
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StepPreparationError("create directory", path, exc) from exc

    def execute(self, step: Step, working_dir: Path) -> CommandResult:
        for entry in step.rmdirs:
            self._remove(_within(working_dir, entry))
        for entry in step.mkdirs:
            self._create(_within(working_dir, entry))

        cwd = _within(working_dir, step.dir) if step.dir else working_dir
        try:
            command = shlex.split(step.command)
        except ValueError as exc:
            raise ParseError(f"Cannot parse command '{step.command}': {exc}") from exc

        try:
            result = self._runner.run(
                command,
                cwd=cwd,
                check=True,
                timeout=self._timeout,
                cancel_event=self._cancel_event,
            )
        except CommandError as exc:
            raise StepExecutionError(exc.result) from None

        if result.stdout:
            self._console.debug(result.stdout.rstrip())
        return result


__all__ = ["StepExecutor"]
