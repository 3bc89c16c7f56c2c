from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from ruamel.yaml import YAML

from .defaults import DEFAULT_CONFIG_NAME
from .model import Config


class ConfigError(RuntimeError):
    pass


_yaml = YAML(typ="safe")


def resolve_config_path(project_dir: Path, config_path: Path | None = None) -> Path:
    config_path = config_path or Path(DEFAULT_CONFIG_NAME)
    if not config_path.is_absolute():
        config_path = project_dir / config_path
    return config_path


def load_config(project_dir: Path, config_path: Path | None = None) -> Config:
    """Load ``distpipe.yaml``.

    Without an explicit ``config_path`` a missing default file yields the
    built-in defaults; an explicitly named file must exist.
    """
    explicit = config_path is not None
    config_path = resolve_config_path(project_dir, config_path)
    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Missing config: {config_path}")
        return Config()
    data = _load_yaml(config_path)
    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ConfigError("Config must be a YAML mapping at the top level.")
    try:
        return Config.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def resolve_build_version(config: Config, source_root: Path) -> str:
    if config.build_version:
        return config.build_version
    version_file = Path(config.version_file)
    if not version_file.is_absolute():
        version_file = source_root / version_file
    if not version_file.exists():
        raise ConfigError(
            f"No build_version configured and {version_file} does not exist."
        )
    try:
        data: Any = json.loads(version_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse JSON: {version_file}") from exc
    version = data.get("version") if isinstance(data, dict) else None
    if not isinstance(version, str) or not version:
        raise ConfigError(f"{version_file} has no version field.")
    return version


def _load_yaml(path: Path) -> Any:
    try:
        return _yaml.load(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise ConfigError(f"Failed to parse YAML: {path}") from exc
