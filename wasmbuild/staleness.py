"""Timestamp-based staleness checks for build steps.

A step is stale when it declares no targets, when any declared target is
missing, or when the newest source is strictly newer than the oldest target.
Directories are expanded recursively to the files they contain; an empty
directory stands for itself. Equal timestamps count as up to date.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence
import fnmatch
import glob
import os

from .errors import MissingSourceError
from .manifest import Step


EPOCH = 0

_GLOB_CHARS = frozenset("*?[")


@dataclass(frozen=True, slots=True)
class StalenessCheck:
    stale: bool
    reason: str

    def __bool__(self) -> bool:
        return self.stale


def _has_magic(pattern: str) -> bool:
    return any(char in _GLOB_CHARS for char in pattern)


def _iter_files(path: Path) -> Iterator[Path]:
    if not path.is_dir():
        yield path
        return
    found = False
    for root, _dirs, files in os.walk(path):
        for name in files:
            found = True
            yield Path(root) / name
    if not found:
        yield path


def _mtime(path: Path) -> int:
    return path.stat().st_mtime_ns


def _normalize(path: Path) -> Path:
    return Path(os.path.normpath(path))


class DependencyTracker:
    """Decides whether a step must run, relative to ``working_dir``."""

    def __init__(self, working_dir: Path) -> None:
        self.working_dir = Path(working_dir)

    def resolve(self, pattern: str) -> List[Path]:
        """Return the existing filesystem entries matched by ``pattern``."""

        candidate = Path(pattern).expanduser()
        if not candidate.is_absolute():
            candidate = self.working_dir / candidate
        if _has_magic(pattern):
            return sorted(Path(item) for item in glob.glob(str(candidate), recursive=True))
        return [candidate] if candidate.exists() else []

    def _is_generated(self, pattern: str, generated: Sequence[str]) -> bool:
        path = self._absolute(pattern)
        for item in generated:
            root = self._absolute(item)
            if path == root or root in path.parents:
                return True
        return False

    def _absolute(self, pattern: str) -> Path:
        candidate = Path(pattern).expanduser()
        if not candidate.is_absolute():
            candidate = self.working_dir / candidate
        return _normalize(candidate)

    def depends_on(self, step: Step, paths: Sequence[str]) -> bool:
        """Return whether any source of ``step`` overlaps one of ``paths``.

        A source overlaps a path when either contains the other, or when a
        glob source matches it.
        """

        rebuilt = [self._absolute(item) for item in paths]
        for pattern in step.sources:
            source = self._absolute(pattern)
            for path in rebuilt:
                if source == path or source in path.parents or path in source.parents:
                    return True
                if _has_magic(pattern) and fnmatch.fnmatchcase(str(path), str(source)):
                    return True
        return False

    def newest_source(self, step: Step, generated: Sequence[str] = ()) -> int:
        newest = EPOCH
        for pattern in step.sources:
            entries = self.resolve(pattern)
            if not entries:
                if _has_magic(pattern) or self._is_generated(pattern, generated):
                    continue
                raise MissingSourceError(pattern, self._absolute(pattern))
            for entry in entries:
                for path in _iter_files(entry):
                    newest = max(newest, _mtime(path))
        return newest

    def check(self, step: Step, generated: Sequence[str] = ()) -> StalenessCheck:
        """Return whether ``step`` is stale together with a short reason.

        ``generated`` lists paths produced by the pipeline itself; a missing
        source inside one of them counts as infinitely old instead of raising
        :class:`MissingSourceError`.
        """

        newest = self.newest_source(step, generated)
        if not step.targets:
            return StalenessCheck(True, "no targets declared")

        oldest_target: int | None = None
        for pattern in step.targets:
            entries = self.resolve(pattern)
            if not entries:
                return StalenessCheck(True, f"target '{pattern}' is missing")
            for entry in entries:
                for path in _iter_files(entry):
                    mtime = _mtime(path)
                    if oldest_target is None or mtime < oldest_target:
                        oldest_target = mtime

        if oldest_target is not None and newest > oldest_target:
            return StalenessCheck(True, "sources are newer than targets")
        return StalenessCheck(False, "up to date")

    def is_stale(self, step: Step, generated: Sequence[str] = ()) -> bool:
        return self.check(step, generated).stale


def is_stale(step: Step, working_dir: Path, generated: Iterable[str] = ()) -> bool:
    """Convenience wrapper around :meth:`DependencyTracker.is_stale`."""

    return DependencyTracker(working_dir).is_stale(step, tuple(generated))


__all__ = ["DependencyTracker", "EPOCH", "StalenessCheck", "is_stale"]
