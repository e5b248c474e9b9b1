"""Placeholder expansion for manifest paths and commands.

Strings may contain ``{{ variable }}`` or ``{{ variable | filter | ... }}``
placeholders. Filters are plain ``str -> str`` callables looked up in a
registry; nothing is evaluated dynamically.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping
import re

from .errors import TemplateError, UndefinedVariableError, UnknownFilterError


Filter = Callable[[str], str]

_PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS = re.compile(r"[^A-Za-z0-9]+")


def split_words(value: str) -> List[str]:
    """Split an identifier in any common casing into its words."""

    text = _ACRONYM_BOUNDARY.sub(r"\1 \2", value)
    text = _CAMEL_BOUNDARY.sub(r"\1 \2", text)
    return [word for word in _SEPARATORS.split(text) if word]


def to_snake_case(value: str) -> str:
    return "_".join(word.lower() for word in split_words(value))


def to_kebab_case(value: str) -> str:
    return "-".join(word.lower() for word in split_words(value))


def to_pascal_case(value: str) -> str:
    return "".join(word[:1].upper() + word[1:].lower() for word in split_words(value))


def to_lower_camel_case(value: str) -> str:
    pascal = to_pascal_case(value)
    return pascal[:1].lower() + pascal[1:]


FILTERS: Dict[str, Filter] = {
    "to_snake_case": to_snake_case,
    "to_kebab_case": to_kebab_case,
    "to_pascal_case": to_pascal_case,
    "to_lower_camel_case": to_lower_camel_case,
    "lower": str.lower,
    "upper": str.upper,
}
"""Filters available to every :class:`VariableContext` by default."""


@dataclass(frozen=True, slots=True)
class VariableContext:
    """Variables and filters used while expanding one build."""

    variables: Mapping[str, Any] = field(default_factory=dict)
    filters: Mapping[str, Filter] = field(default_factory=lambda: dict(FILTERS))

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))
        object.__setattr__(self, "filters", MappingProxyType(dict(self.filters)))

    @classmethod
    def create(cls, variables: Mapping[str, Any] | None = None, **extra_filters: Filter) -> "VariableContext":
        filters = dict(FILTERS)
        filters.update(extra_filters)
        return cls(variables=dict(variables or {}), filters=filters)


def _parse_placeholder(body: str, text: str) -> tuple[str, List[str]]:
    parts = [part.strip() for part in body.split("|")]
    name, filters = parts[0], parts[1:]
    if not name or any(not item for item in filters):
        raise TemplateError(f"Malformed placeholder '{{{{{body}}}}}' in '{text}'")
    return name, filters


def expand(text: str, context: VariableContext) -> str:
    """Render every placeholder in ``text`` using ``context``."""

    if "{{" not in text:
        return text

    def replacement(match: re.Match[str]) -> str:
        name, filters = _parse_placeholder(match.group(1), text)
        if name not in context.variables:
            raise UndefinedVariableError(name, text)
        value = str(context.variables[name])
        for filter_name in filters:
            func = context.filters.get(filter_name)
            if func is None:
                raise UnknownFilterError(filter_name, text)
            value = func(value)
        return value

    return _PLACEHOLDER_PATTERN.sub(replacement, text)


def expand_all(values: Iterable[str], context: VariableContext) -> tuple[str, ...]:
    return tuple(expand(value, context) for value in values)


def extract_placeholders(text: str) -> set[str]:
    """Collect the variable names referenced within ``text``."""

    names: set[str] = set()
    for match in _PLACEHOLDER_PATTERN.finditer(text):
        name = match.group(1).split("|", 1)[0].strip()
        if name:
            names.add(name)
    return names


__all__ = [
    "FILTERS",
    "Filter",
    "VariableContext",
    "expand",
    "expand_all",
    "extract_placeholders",
    "split_words",
    "to_kebab_case",
    "to_lower_camel_case",
    "to_pascal_case",
    "to_snake_case",
]
