"""Workspace configuration loading and manifest discovery."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence

from .errors import ParseError
from .loaders import collect_config_files, load_config_file, normalize_string_list
from .manifest import Template, TemplateStore


LOG_LEVELS = ("none", "error", "warn", "info", "debug")

DEFAULT_MANIFEST_DIRS = ("config/templates",)


@dataclass(slots=True)
class GlobalConfig:
    log_level: str = "info"
    skip_up_to_date_checks: bool = False
    timeout: float | None = None
    manifest_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_MANIFEST_DIRS))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        section = data.get("global", {})
        if not isinstance(section, Mapping):
            raise ParseError("[global] section must be a mapping")

        log_level = str(section.get("log_level", "info")).lower()
        if log_level not in LOG_LEVELS:
            raise ParseError(f"global.log_level must be one of: {', '.join(LOG_LEVELS)}")

        skip = section.get("skip_up_to_date_checks", False)
        if not isinstance(skip, bool):
            raise ParseError("global.skip_up_to_date_checks must be a boolean")

        timeout = section.get("timeout")
        if timeout is not None:
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
                raise ParseError("global.timeout must be a positive number of seconds")
            timeout = float(timeout)

        manifest_dirs = list(DEFAULT_MANIFEST_DIRS)
        if "manifest_dirs" in section:
            manifest_dirs = normalize_string_list(section.get("manifest_dirs"), field_name="global.manifest_dirs")

        return cls(
            log_level=log_level,
            skip_up_to_date_checks=skip,
            timeout=timeout,
            manifest_dirs=manifest_dirs,
        )


def discover_manifest_files(root: Path, locations: Iterable[str | Path]) -> List[Path]:
    """Expand manifest ``locations`` (files or directories) relative to ``root``."""

    files: List[Path] = []
    for raw in locations:
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = root / path
        if path.is_dir():
            files.extend(collect_config_files(path).values())
        elif path.is_file():
            files.append(path)
        else:
            raise ParseError(f"Manifest location does not exist: {path}")
    return files


@dataclass(slots=True)
class ConfigurationStore:
    """Global settings plus every template found in the workspace."""

    root: Path
    global_config: GlobalConfig
    templates: TemplateStore
    manifest_files: List[Path] = field(default_factory=list)

    @classmethod
    def from_directory(
        cls,
        root: Path,
        *,
        manifests: Sequence[str | Path] | None = None,
    ) -> "ConfigurationStore":
        config_dir = root / "config"
        global_config = GlobalConfig()
        if config_dir.is_dir():
            config_files = collect_config_files(config_dir)
            if "config" in config_files:
                global_config = GlobalConfig.from_mapping(load_config_file(config_files["config"]))

        if manifests:
            paths = discover_manifest_files(root, manifests)
        else:
            existing = [item for item in global_config.manifest_dirs if (root / item).exists()]
            paths = discover_manifest_files(root, existing)

        return cls(
            root=root,
            global_config=global_config,
            templates=TemplateStore.from_paths(paths),
            manifest_files=paths,
        )

    def get_template(self, name: str) -> Template:
        return self.templates.get(name)

    def list_templates(self) -> List[str]:
        return self.templates.names()


__all__ = [
    "ConfigurationStore",
    "DEFAULT_MANIFEST_DIRS",
    "GlobalConfig",
    "LOG_LEVELS",
    "discover_manifest_files",
]
