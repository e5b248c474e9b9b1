"""Core build planning and execution logic."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping
import json
import os
import shlex
import shutil
import threading

from .command_runner import CommandResult, CommandRunner
from .console import Console
from .errors import (
    BuildFailedError,
    CancelledError,
    MissingSourceError,
    ParseError,
    StepExecutionError,
    StepPreparationError,
)
from .executor import StepExecutor
from .manifest import Profile, Step, Template, TemplateStore
from .staleness import DependencyTracker
from .template import VariableContext, expand, expand_all


class BuildState(str, Enum):
    NOT_STARTED = "not-started"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepStatus(str, Enum):
    SKIPPED = "skipped"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass(slots=True)
class BuildOptions:
    template: str
    profile: str | None = None
    variables: Dict[str, Any] = field(default_factory=dict)
    working_dir: Path | None = None
    dry_run: bool = False
    force: bool = False
    link: bool = False


@dataclass(slots=True)
class BuildPlan:
    template: Template
    profile: Profile
    context: VariableContext
    working_dir: Path
    steps: List[Step]
    generated: List[tuple[str, ...]]
    component_wasm: Path
    linked_wasm: Path
    dry_run: bool = False
    force: bool = False
    link: bool = False


@dataclass(slots=True)
class StepOutcome:
    index: int
    command: str
    status: StepStatus
    reason: str
    result: CommandResult | None = None


@dataclass(slots=True)
class BuildReport:
    template: str
    profile: str
    working_dir: Path
    state: BuildState = BuildState.NOT_STARTED
    current_step: int | None = None
    outcomes: List[StepOutcome] = field(default_factory=list)
    component_wasm: Path | None = None
    linked_wasm: Path | None = None
    linked: bool = False

    @property
    def executed(self) -> List[StepOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is StepStatus.EXECUTED]

    @property
    def executed_count(self) -> int:
        return len(self.executed)

    @property
    def skipped_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is StepStatus.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template": self.template,
            "profile": self.profile,
            "working_dir": str(self.working_dir),
            "state": self.state.value,
            "current_step": self.current_step,
            "steps": [
                {
                    "index": outcome.index,
                    "command": outcome.command,
                    "status": outcome.status.value,
                    "reason": outcome.reason,
                    "returncode": outcome.result.returncode if outcome.result else None,
                }
                for outcome in self.outcomes
            ],
            "component_wasm": str(self.component_wasm) if self.component_wasm else None,
            "linked_wasm": str(self.linked_wasm) if self.linked_wasm else None,
            "linked": self.linked,
        }


def _join(base: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base / path
    return Path(os.path.normpath(path))


class BuildEngine:
    def __init__(
        self,
        *,
        store: TemplateStore,
        command_runner: CommandRunner,
        console: Console | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._store = store
        self._command_runner = command_runner
        self._console = console or Console(level="none")
        self._timeout = timeout
        self._cancel_event = cancel_event

    def plan(self, options: BuildOptions) -> BuildPlan:
        """Resolve the template and expand every templated value.

        All expansion happens here, so an undefined variable or unknown filter
        fails before any step touches the filesystem.
        """

        template, profile = self._store.resolve(options.template, options.profile)
        context = VariableContext.create(options.variables)
        working_dir = Path(options.working_dir or Path.cwd()).expanduser().resolve()

        steps: List[Step] = []
        for step in profile.steps:
            expanded = replace(
                step,
                command=expand(step.command, context),
                sources=expand_all(step.sources, context),
                targets=expand_all(step.targets, context),
                mkdirs=expand_all(step.mkdirs, context),
                rmdirs=expand_all(step.rmdirs, context),
                dir=expand(step.dir, context) if step.dir else None,
            )
            try:
                if not shlex.split(expanded.command):
                    raise ValueError("empty command")
            except ValueError as exc:
                raise ParseError(f"Cannot parse command '{expanded.command}': {exc}") from exc
            steps.append(expanded)

        generated_root = expand(profile.generated_wit, context)
        generated: List[tuple[str, ...]] = []
        produced: List[str] = [generated_root]
        for step in steps:
            generated.append(tuple(produced))
            produced.extend(step.targets)

        return BuildPlan(
            template=template,
            profile=profile,
            context=context,
            working_dir=working_dir,
            steps=steps,
            generated=generated,
            component_wasm=_join(working_dir, expand(profile.component_wasm, context)),
            linked_wasm=_join(working_dir, expand(profile.linked_wasm, context)),
            dry_run=options.dry_run,
            force=options.force,
            link=options.link,
        )

    def execute(self, plan: BuildPlan) -> BuildReport:
        report = BuildReport(
            template=plan.template.name,
            profile=plan.profile.name,
            working_dir=plan.working_dir,
        )
        console = self._console.derive()
        tracker = DependencyTracker(plan.working_dir)
        executor = StepExecutor(
            self._command_runner,
            console,
            dry_run=plan.dry_run,
            timeout=self._timeout,
            cancel_event=self._cancel_event,
        )
        total = len(plan.steps)
        # Targets a dry run would have rewritten; later steps see them as fresh.
        rebuilt: List[str] = []

        console.action("Building", f"{plan.template.name} ({plan.profile.name}) in {plan.working_dir}")
        report.state = BuildState.RUNNING
        with console.indented():
            for index, step in enumerate(plan.steps):
                report.current_step = index
                label = f"step {index + 1}/{total}: {step.command}"
                try:
                    if plan.force:
                        reason = "forced"
                    elif rebuilt and tracker.depends_on(step, rebuilt):
                        reason = "sources rebuilt earlier in this run"
                    else:
                        check = tracker.check(step, plan.generated[index])
                        if not check.stale:
                            console.skipping_up_to_date(label)
                            report.outcomes.append(
                                StepOutcome(index, step.command, StepStatus.SKIPPED, check.reason)
                            )
                            continue
                        reason = check.reason

                    console.action("Executing", label)
                    console.debug(f"Reason: {reason}")
                    result = executor.execute(step, plan.working_dir)
                except (StepExecutionError, StepPreparationError, MissingSourceError) as exc:
                    result = getattr(exc, "result", None)
                    report.outcomes.append(
                        StepOutcome(index, step.command, StepStatus.FAILED, str(exc), result)
                    )
                    report.state = BuildState.FAILED
                    console.error(f"Step {index + 1}/{total} failed: {step.command}")
                    raise BuildFailedError(index, exc, result=result, report=report) from exc
                except CancelledError as exc:
                    report.state = BuildState.FAILED
                    exc.report = report
                    raise
                report.outcomes.append(StepOutcome(index, step.command, StepStatus.EXECUTED, reason, result))
                if plan.dry_run:
                    rebuilt.extend(step.targets)

            if plan.link:
                try:
                    report.linked = self._link(plan, console)
                except MissingSourceError:
                    report.state = BuildState.FAILED
                    raise

        report.current_step = None
        report.state = BuildState.SUCCEEDED
        report.component_wasm = plan.component_wasm
        report.linked_wasm = plan.linked_wasm
        console.action("Built", f"{plan.linked_wasm} ({report.executed_count} executed, {report.skipped_count} up-to-date)")
        return report

    def _link(self, plan: BuildPlan, console: Console) -> bool:
        """Copy the component artifact to the linked artifact when out of date."""

        component, linked = plan.component_wasm, plan.linked_wasm
        if not component.exists():
            if plan.dry_run:
                console.dry(f"copy {component} -> {linked}")
                return False
            raise MissingSourceError(plan.profile.component_wasm, component)

        if (
            not plan.force
            and linked.exists()
            and linked.stat().st_mtime_ns >= component.stat().st_mtime_ns
        ):
            console.skipping_up_to_date(f"linking {linked}")
            return False

        if plan.dry_run:
            console.dry(f"copy {component} -> {linked}")
            return False

        console.action("Copying", f"{component} to {linked} without linking")
        linked.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(component, linked)
        return True

    def build(self, options: BuildOptions) -> BuildReport:
        return self.execute(self.plan(options))

    def build_template(
        self,
        template: str,
        profile: str | None = None,
        variables: Mapping[str, Any] | None = None,
        *,
        working_dir: Path | None = None,
        dry_run: bool = False,
        force: bool = False,
        link: bool = False,
    ) -> BuildReport:
        return self.build(
            BuildOptions(
                template=template,
                profile=profile,
                variables=dict(variables or {}),
                working_dir=working_dir,
                dry_run=dry_run,
                force=force,
                link=link,
            )
        )

    def serialize_report(self, report: BuildReport) -> str:
        return json.dumps(report.to_dict(), indent=2)

