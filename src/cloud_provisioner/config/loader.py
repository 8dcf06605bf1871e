"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from cloud_provisioner.config.schema import Config

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from cloud_provisioner.resources.base import Resource


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


# Field name → environment variable.
_PROVIDER_ENV_MAP: dict[str, str] = {
    "kind": "CLOUD_KIND",
    "endpoint": "CLOUD_ENDPOINT",
    "region": "CLOUD_REGION",
    "api_key": "CLOUD_API_KEY",
    "memory_path": "CLOUD_MEMORY_PATH",
}


def _resolve_provider(raw_provider: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve provider fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    unknown = set(raw_provider) - set(_PROVIDER_ENV_MAP)
    if unknown:
        raise ConfigError(f"Unknown provider field(s): {', '.join(sorted(unknown))}")

    resolved: dict[str, Any] = {}
    for field, env_key in _PROVIDER_ENV_MAP.items():
        val = raw_provider.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val

    return resolved


def _validate_unique_addresses(resources: list[Resource]) -> list[str]:
    """Check that no two resources share the same ``type.name`` address."""
    seen: set[str] = set()
    errors: list[str] = []
    for r in resources:
        if r.address in seen:
            errors.append(f"Duplicate resource address '{r.address}'")
        seen.add(r.address)
    return errors


def _relative_to(config_dir: Path, path: Path) -> Path:
    return path if path.is_absolute() else config_dir / path


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Relative ``state_path`` and ``provider.memory_path`` are resolved against
    the directory holding the file.

    Raises:
        ConfigError: On YAML parse errors, missing sections, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    try:
        raw["provider"] = _resolve_provider(raw.get("provider") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    config.state_path = _relative_to(path.parent, config.state_path)
    if config.provider.memory_path is not None:
        config.provider.memory_path = _relative_to(path.parent, config.provider.memory_path)

    errors = _validate_unique_addresses(config.resources)
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info("Loaded config from %s (%d resources)", path, len(config.resources))
    return config
