"""Console output with log levels and nested indentation."""
from __future__ import annotations

from contextlib import contextmanager
from typing import IO, Iterator
import sys


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < warn < info < debug
    Default: 'info'
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "warn": 2,
        "info": 3,
        "debug": 4,
    }

    def __init__(
        self,
        level: str = "info",
        dry_run: bool = False,
        *,
        stdout: IO[str] | None = None,
        stderr: IO[str] | None = None,
    ) -> None:
        self.level_name = level
        self.level = self.LEVELS.get(level, self.LEVELS["info"])
        self.dry_run = dry_run
        self._stdout = stdout
        self._stderr = stderr
        self._indent = 0

    # Resolved lazily so redirect_stdout in callers is honoured.
    @property
    def stdout(self) -> IO[str]:
        return self._stdout or sys.stdout

    @property
    def stderr(self) -> IO[str]:
        return self._stderr or sys.stderr

    def derive(self) -> "Console":
        """Return a console with the same settings and its own indentation."""

        return Console(self.level_name, self.dry_run, stdout=self._stdout, stderr=self._stderr)

    @contextmanager
    def indented(self) -> Iterator[None]:
        self._indent += 1
        try:
            yield
        finally:
            self._indent -= 1

    def _emit(self, message: str, *, stream: IO[str]) -> None:
        prefix = "  " * self._indent
        for line in message.splitlines() or [""]:
            print(f"{prefix}{line}", file=stream)

    def action(self, verb: str, subject: str) -> None:
        if self.level >= self.LEVELS["info"]:
            self._emit(f"{verb} {subject}", stream=self.stdout)

    def skipping_up_to_date(self, subject: str) -> None:
        if self.level >= self.LEVELS["info"]:
            self._emit(f"Skipping {subject}, UP-TO-DATE", stream=self.stdout)

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            self._emit(message, stream=self.stdout)

    def warn(self, message: str) -> None:
        if self.level >= self.LEVELS["warn"]:
            self._emit(f"[WARN] {message}", stream=self.stderr)

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            self._emit(f"[ERROR] {message}", stream=self.stderr)

    def dry(self, message: str) -> None:
        if self.dry_run:
            self._emit(f"[DRY] {message}", stream=self.stdout)

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            self._emit(f"[DEBUG] {message}", stream=self.stdout)
