"""Template-driven, dependency-aware build orchestrator for WebAssembly components."""
from __future__ import annotations

from .build import BuildEngine, BuildOptions, BuildReport, BuildState, StepStatus
from .cli import main
from .manifest import Profile, Step, Template, TemplateStore, load_manifest, load_template, resolve_profile
from .template import VariableContext, expand, to_snake_case

__version__ = "0.1.0"

__all__ = [
    "BuildEngine",
    "BuildOptions",
    "BuildReport",
    "BuildState",
    "Profile",
    "Step",
    "StepStatus",
    "Template",
    "TemplateStore",
    "VariableContext",
    "expand",
    "load_manifest",
    "load_template",
    "main",
    "resolve_profile",
    "to_snake_case",
]
