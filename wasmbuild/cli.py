"""Command line interface for the wasmbuild tool."""
from __future__ import annotations

from argparse import ArgumentParser, ArgumentTypeError, Namespace
from pathlib import Path
from typing import Dict, Iterable, List
import sys

from .build import BuildEngine, BuildOptions
from .command_runner import RecordingCommandRunner, SubprocessCommandRunner
from .config_loader import LOG_LEVELS, ConfigurationStore
from .console import Console
from .errors import (
    BuildFailedError,
    CancelledError,
    LookupFailure,
    ManifestError,
    MissingSourceError,
    TemplateError,
)
from .manifest import Profile
from .template import VariableContext, expand, extract_placeholders


EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_MANIFEST = 3
EXIT_UNKNOWN = 4
EXIT_EXPANSION = 5
EXIT_CANCELLED = 130


def _make_runner(dry_run: bool) -> SubprocessCommandRunner | RecordingCommandRunner:
    return RecordingCommandRunner() if dry_run else SubprocessCommandRunner()


def _parse_variable(text: str) -> tuple[str, str]:
    key, sep, value = text.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ArgumentTypeError(f"expected KEY=VALUE, got '{text}'")
    return key, value


def _collect_variables(values: Iterable[tuple[str, str]]) -> Dict[str, str]:
    variables: Dict[str, str] = {}
    for key, value in values:
        variables[key] = value
    return variables


def _emit_dry_run_output(runner: RecordingCommandRunner, *, workspace: Path) -> None:
    for line in runner.iter_formatted(workspace=workspace):
        print(line)


def _add_manifest_argument(parser: ArgumentParser) -> None:
    parser.add_argument(
        "--manifest",
        action="append",
        default=[],
        metavar="PATH",
        help="Manifest file or directory (repeatable); replaces configured manifest_dirs",
    )


def _add_variable_argument(parser: ArgumentParser) -> None:
    parser.add_argument(
        "--var",
        dest="variables",
        action="append",
        default=[],
        type=_parse_variable,
        metavar="KEY=VALUE",
        help="Template variable (repeatable)",
    )


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="wasmbuild", description="Template-driven WebAssembly component build orchestrator")
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="Console verbosity (overrides config)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Run the build steps of a template profile")
    build_parser.add_argument("template", help="Template name to build")
    build_parser.add_argument("--profile", help="Profile to build (defaults to the template's defaultProfile)")
    _add_variable_argument(build_parser)
    _add_manifest_argument(build_parser)
    build_parser.add_argument("--workdir", type=Path, help="Working directory for the steps (defaults to cwd)")
    build_parser.add_argument("--dry-run", action="store_true", help="Print commands without executing them")
    build_parser.add_argument("--force", action="store_true", help="Run every step regardless of timestamps")
    build_parser.add_argument("--link", action="store_true", help="Copy componentWasm to linkedWasm after building")
    build_parser.add_argument("--timeout", type=float, help="Kill a step that runs longer than SECONDS")
    build_parser.add_argument("--json", action="store_true", help="Print the build report as JSON")

    list_parser = subparsers.add_parser("list", help="List templates and their profiles")
    _add_manifest_argument(list_parser)

    validate_parser = subparsers.add_parser("validate", help="Validate manifests")
    _add_manifest_argument(validate_parser)
    _add_variable_argument(validate_parser)

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    workspace = Path.cwd()

    try:
        store = ConfigurationStore.from_directory(workspace, manifests=args.manifest or None)
    except ManifestError as exc:
        print(f"Manifest error: {exc}", file=sys.stderr)
        return EXIT_MANIFEST

    console = Console(level=args.log_level or store.global_config.log_level, dry_run=getattr(args, "dry_run", False))

    if args.command == "build":
        return _handle_build(args, store, console)
    if args.command == "list":
        return _handle_list(store)
    if args.command == "validate":
        return _handle_validate(args, store)
    raise ValueError(f"Unknown command: {args.command}")


def _handle_build(args: Namespace, store: ConfigurationStore, console: Console) -> int:
    runner = _make_runner(args.dry_run)
    timeout = args.timeout if args.timeout is not None else store.global_config.timeout
    engine = BuildEngine(
        store=store.templates,
        command_runner=runner,
        console=console,
        timeout=timeout,
    )
    options = BuildOptions(
        template=args.template,
        profile=args.profile,
        variables=_collect_variables(args.variables),
        working_dir=args.workdir,
        dry_run=args.dry_run,
        force=args.force or store.global_config.skip_up_to_date_checks,
        link=args.link,
    )

    try:
        report = engine.build(options)
    except LookupFailure as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_UNKNOWN
    except TemplateError as exc:
        print(f"Expansion error: {exc}", file=sys.stderr)
        return EXIT_EXPANSION
    except ManifestError as exc:
        print(f"Manifest error: {exc}", file=sys.stderr)
        return EXIT_MANIFEST
    except BuildFailedError as exc:
        _report_failure(exc)
        return EXIT_BUILD_FAILED
    except MissingSourceError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_BUILD_FAILED
    except CancelledError as exc:
        print(f"Cancelled: {exc}", file=sys.stderr)
        return EXIT_CANCELLED

    if args.dry_run and isinstance(runner, RecordingCommandRunner):
        _emit_dry_run_output(runner, workspace=report.working_dir)
    if args.json:
        print(engine.serialize_report(report))
    else:
        print(f"componentWasm: {report.component_wasm}")
        print(f"linkedWasm: {report.linked_wasm}")
    return EXIT_OK


def _report_failure(exc: BuildFailedError) -> None:
    command = "<unknown>"
    if exc.report is not None:
        for outcome in exc.report.outcomes:
            if outcome.index == exc.step_index:
                command = outcome.command
    print(f"Build failed at step {exc.step_index + 1}: {command}", file=sys.stderr)
    if exc.result is not None:
        print(f"Exit code: {exc.result.returncode}", file=sys.stderr)
        if exc.result.stderr:
            print(exc.result.stderr.rstrip(), file=sys.stderr)
    else:
        print(str(exc.cause), file=sys.stderr)


def _handle_list(store: ConfigurationStore) -> int:
    if not store.list_templates():
        print("No templates found")
        return EXIT_OK
    for template in store.templates:
        profiles: List[str] = []
        for name in template.profile_names():
            marker = " (default)" if name == template.default_profile else ""
            profiles.append(f"{name}{marker}")
        origin = f"  [{template.origin}]" if template.origin else ""
        print(f"{template.name}: {', '.join(profiles)}{origin}")
    return EXIT_OK


def _handle_validate(args: Namespace, store: ConfigurationStore) -> int:
    variables = _collect_variables(args.variables)
    context = VariableContext.create(variables)
    errors: List[str] = []

    referenced: set[str] = set()

    for template in store.templates:
        for profile in template.profiles.values():
            for text in _profile_strings(profile):
                referenced.update(extract_placeholders(text))
                if not variables:
                    continue
                try:
                    expand(text, context)
                except TemplateError as exc:
                    errors.append(f"{template.name}/{profile.name}: {exc}")

    if errors:
        for message in errors:
            print(f"Error: {message}", file=sys.stderr)
        return EXIT_EXPANSION

    print(f"Validated {len(store.manifest_files)} manifest(s), {len(store.list_templates())} template(s)")
    if referenced:
        print(f"Variables referenced: {', '.join(sorted(referenced))}")
    return EXIT_OK


def _profile_strings(profile: Profile) -> List[str]:
    values = [profile.source_wit, profile.generated_wit, profile.component_wasm, profile.linked_wasm]
    for step in profile.steps:
        values.append(step.command)
        values.extend(step.sources)
        values.extend(step.targets)
        values.extend(step.mkdirs)
        values.extend(step.rmdirs)
        if step.dir:
            values.append(step.dir)
    return values


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
