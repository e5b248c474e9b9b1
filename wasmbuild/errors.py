"""Exception hierarchy shared by the manifest, expansion and build layers."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from .command_runner import CommandResult


class WasmBuildError(Exception):
    """Base class for every error raised by wasmbuild."""


class ManifestError(WasmBuildError):
    """Raised when a manifest or configuration file cannot be loaded."""


class ParseError(ManifestError):
    """Malformed manifest structure: bad syntax, wrong types, duplicates."""


class SchemaError(ManifestError):
    """A required manifest key is absent."""


class LookupFailure(WasmBuildError):
    """Base class for unknown template or profile names."""


class UnknownTemplateError(LookupFailure):
    def __init__(self, name: str, available: list[str] | None = None) -> None:
        message = f"Unknown template '{name}'"
        if available:
            message = f"{message}. Available: {', '.join(available)}"
        super().__init__(message)
        self.name = name


class UnknownProfileError(LookupFailure):
    def __init__(self, template: str, profile: str, available: list[str] | None = None) -> None:
        message = f"Unknown profile '{profile}' for template '{template}'"
        if available:
            message = f"{message}. Available: {', '.join(available)}"
        super().__init__(message)
        self.template = template
        self.profile = profile


class TemplateError(WasmBuildError, ValueError):
    """Raised when template expansion fails."""


class UndefinedVariableError(TemplateError):
    def __init__(self, name: str, text: str) -> None:
        super().__init__(f"Undefined variable '{name}' in '{text}'")
        self.name = name


class UnknownFilterError(TemplateError):
    def __init__(self, name: str, text: str) -> None:
        super().__init__(f"Unknown filter '{name}' in '{text}'")
        self.name = name


class MissingSourceError(WasmBuildError):
    """A declared step source does not exist and is not a generated path."""

    def __init__(self, pattern: str, path: Any) -> None:
        super().__init__(f"Source '{pattern}' does not exist: {path}")
        self.pattern = pattern
        self.path = path


class StepPreparationError(WasmBuildError):
    """A step's ``rmdirs`` or ``mkdirs`` entry could not be applied."""

    def __init__(self, action: str, path: Any, error: OSError) -> None:
        super().__init__(f"Cannot {action} '{path}': {error.strerror or error}")
        self.action = action
        self.path = path
        self.error = error


class CommandError(WasmBuildError):
    """Raised when a command exits with a non-zero status."""

    def __init__(self, result: "CommandResult") -> None:
        super().__init__(
            f"Command failed with exit code {result.returncode}: {result.display}\n"
            f"stdout: {result.stdout}\n"
            f"stderr: {result.stderr}"
        )
        self.result = result


class StepExecutionError(CommandError):
    """The external tool of a build step failed."""


class CancelledError(WasmBuildError):
    """A running command was cancelled by its caller or timed out.

    When raised out of a build, ``report`` holds the partial build report.
    """

    report: Any = None


class BuildFailedError(WasmBuildError):
    """Wraps the error of the step that stopped a build."""

    def __init__(
        self,
        step_index: int,
        cause: WasmBuildError,
        *,
        result: "CommandResult | None" = None,
        report: Any = None,
    ) -> None:
        super().__init__(f"Build step {step_index} failed: {cause}")
        self.step_index = step_index
        self.cause = cause
        self.result = result
        self.report = report
