"""Build template manifests: parsing, validation and lookup."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple

import yaml

from .errors import ParseError, SchemaError, UnknownProfileError, UnknownTemplateError
from .loaders import load_config_file, load_yaml, normalize_string_list


@dataclass(frozen=True, slots=True)
class Step:
    """One unit of build work: a command plus its declared file dependencies."""

    command: str
    sources: Tuple[str, ...] = ()
    targets: Tuple[str, ...] = ()
    mkdirs: Tuple[str, ...] = ()
    rmdirs: Tuple[str, ...] = ()
    dir: str | None = None


@dataclass(frozen=True, slots=True)
class Profile:
    name: str
    source_wit: str
    generated_wit: str
    component_wasm: str
    linked_wasm: str
    steps: Tuple[Step, ...]


@dataclass(frozen=True, slots=True)
class Template:
    name: str
    profiles: Mapping[str, Profile]
    default_profile: str
    origin: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "profiles", MappingProxyType(dict(self.profiles)))

    def profile_names(self) -> List[str]:
        return list(self.profiles)


def _require(section: Mapping[str, Any], key: str, *, where: str, error: type = ParseError) -> Any:
    if key not in section or section[key] is None:
        raise error(f"{where}.{key} is required")
    return section[key]


def _require_mapping(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ParseError(f"{where} must be a mapping")
    return value


def _require_string(section: Mapping[str, Any], key: str, *, where: str) -> str:
    value = _require(section, key, where=where)
    if not isinstance(value, str) or not value.strip():
        raise ParseError(f"{where}.{key} must be a non-empty string")
    return value.strip()


def _string_tuple(section: Mapping[str, Any], key: str, *, where: str) -> Tuple[str, ...]:
    return tuple(normalize_string_list(section.get(key), field_name=f"{where}.{key}"))


def _parse_step(data: Any, *, where: str) -> Step:
    section = _require_mapping(data, where=where)
    step_dir = section.get("dir")
    if step_dir is not None and (not isinstance(step_dir, str) or not step_dir.strip()):
        raise ParseError(f"{where}.dir must be a non-empty string")
    return Step(
        command=_require_string(section, "command", where=where),
        sources=_string_tuple(section, "sources", where=where),
        targets=_string_tuple(section, "targets", where=where),
        mkdirs=_string_tuple(section, "mkdirs", where=where),
        rmdirs=_string_tuple(section, "rmdirs", where=where),
        dir=step_dir.strip() if step_dir else None,
    )


def _parse_profile(name: str, data: Any, *, where: str) -> Profile:
    section = _require_mapping(data, where=where)
    build = _require(section, "build", where=where)
    if isinstance(build, (str, bytes)) or not isinstance(build, Sequence):
        raise ParseError(f"{where}.build must be a list of steps")
    if not build:
        raise ParseError(f"{where}.build must declare at least one step")
    steps = tuple(_parse_step(item, where=f"{where}.build[{index}]") for index, item in enumerate(build))
    return Profile(
        name=name,
        source_wit=_require_string(section, "sourceWit", where=where),
        generated_wit=_require_string(section, "generatedWit", where=where),
        component_wasm=_require_string(section, "componentWasm", where=where),
        linked_wasm=_require_string(section, "linkedWasm", where=where),
        steps=steps,
    )


def _parse_template(name: str, data: Any, *, origin: str | None) -> Template:
    where = f"templates.{name}"
    section = _require_mapping(data, where=where)
    profiles_section = _require_mapping(_require(section, "profiles", where=where, error=SchemaError), where=f"{where}.profiles")
    default_profile = _require(section, "defaultProfile", where=where, error=SchemaError)
    if not isinstance(default_profile, str):
        raise ParseError(f"{where}.defaultProfile must be a string")
    if not profiles_section:
        raise ParseError(f"{where}.profiles must declare at least one profile")

    profiles: Dict[str, Profile] = {}
    for profile_name, profile_data in profiles_section.items():
        key = str(profile_name)
        if key in profiles:
            raise ParseError(f"{where}.profiles declares '{key}' more than once")
        profiles[key] = _parse_profile(key, profile_data, where=f"{where}.profiles.{key}")

    if default_profile not in profiles:
        raise SchemaError(
            f"{where}.defaultProfile '{default_profile}' is not one of: {', '.join(profiles)}"
        )
    return Template(name=name, profiles=profiles, default_profile=default_profile, origin=origin)


def _decode_source(source: Any) -> tuple[Mapping[str, Any], str | None]:
    if isinstance(source, Mapping):
        return source, None
    if isinstance(source, Path):
        return load_config_file(source), str(source)
    if isinstance(source, str):
        try:
            data = load_yaml(source)
        except yaml.YAMLError as exc:
            raise ParseError(f"Cannot parse manifest: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ParseError("Manifest must contain a mapping at the root")
        return data, None
    raise TypeError(f"Unsupported manifest source: {type(source).__name__}")


def load_manifest(source: Mapping[str, Any] | Path | str, *, origin: str | None = None) -> Dict[str, Template]:
    """Parse every template declared by ``source``.

    ``source`` may be a decoded mapping, a path to a YAML/TOML/JSON file or
    YAML text. Nothing is returned unless the whole manifest is valid.
    """

    data, detected_origin = _decode_source(source)
    origin = origin or detected_origin
    templates_section = _require(data, "templates", where="manifest", error=SchemaError)
    templates_section = _require_mapping(templates_section, where="templates")
    if not templates_section:
        raise ParseError("templates must declare at least one template")

    templates: Dict[str, Template] = {}
    for raw_name, template_data in templates_section.items():
        name = str(raw_name)
        templates[name] = _parse_template(name, template_data, origin=origin)
    return templates


def load_template(source: Mapping[str, Any] | Path | str, name: str | None = None) -> Template:
    """Load a single template from ``source``."""

    templates = load_manifest(source)
    if name is not None:
        if name not in templates:
            raise UnknownTemplateError(name, sorted(templates))
        return templates[name]
    if len(templates) != 1:
        raise ParseError(
            f"Manifest declares {len(templates)} templates ({', '.join(sorted(templates))}); specify one by name"
        )
    return next(iter(templates.values()))


def resolve_profile(template: Template, profile_name: str | None = None) -> Profile:
    """Return ``profile_name`` from ``template``, or its default profile."""

    name = profile_name or template.default_profile
    profile = template.profiles.get(name)
    if profile is None:
        raise UnknownProfileError(template.name, name, template.profile_names())
    return profile


@dataclass(frozen=True, slots=True)
class TemplateStore:
    """Immutable index of templates gathered from one or more manifests."""

    templates: Mapping[str, Template] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "templates", MappingProxyType(dict(self.templates)))

    @classmethod
    def from_mappings(cls, manifests: Iterable[tuple[str | None, Mapping[str, Any]]]) -> "TemplateStore":
        merged: Dict[str, Template] = {}
        for origin, data in manifests:
            for name, template in load_manifest(data, origin=origin).items():
                if name in merged:
                    raise ParseError(
                        f"Template '{name}' is declared in both '{merged[name].origin}' and '{origin}'"
                    )
                merged[name] = template
        return cls(templates=merged)

    @classmethod
    def from_paths(cls, paths: Iterable[Path]) -> "TemplateStore":
        return cls.from_mappings((str(path), load_config_file(path)) for path in paths)

    def get(self, name: str) -> Template:
        template = self.templates.get(name)
        if template is None:
            raise UnknownTemplateError(name, self.names())
        return template

    def resolve(self, name: str, profile_name: str | None = None) -> tuple[Template, Profile]:
        template = self.get(name)
        return template, resolve_profile(template, profile_name)

    def names(self) -> List[str]:
        return sorted(self.templates)

    def __contains__(self, name: object) -> bool:
        return name in self.templates

    def __iter__(self) -> Iterator[Template]:
        return iter(self.templates[name] for name in self.names())

    def __len__(self) -> int:
        return len(self.templates)


__all__ = [
    "Profile",
    "Step",
    "Template",
    "TemplateStore",
    "load_manifest",
    "load_template",
    "resolve_profile",
]
