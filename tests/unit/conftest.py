"""Shared fixtures for unit tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from cloud_provisioner.config import load
from cloud_provisioner.config.registry import default_registry
from cloud_provisioner.core import CloudProvider
from cloud_provisioner.core.memory import InMemoryCloud
from cloud_provisioner.engine import Engine, EngineSettings, RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from cloud_provisioner.config.schema import Config
    from cloud_provisioner.engine.registry import ResourceTypeRegistry

_CLOUD_ENV_VARS = (
    "CLOUD_KIND",
    "CLOUD_ENDPOINT",
    "CLOUD_REGION",
    "CLOUD_API_KEY",
    "CLOUD_MEMORY_PATH",
    "CLOUD_LOG",
    "NO_COLOR",
)


@pytest.fixture(autouse=True)
def _clean_cloud_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove CLOUD_* env vars so unit tests don't leak provider config."""
    for var in _CLOUD_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml")

    return _make


@pytest.fixture
def registry() -> ResourceTypeRegistry:
    return default_registry()


@pytest.fixture
def cloud() -> InMemoryCloud:
    return InMemoryCloud()


@pytest.fixture
def settings() -> EngineSettings:
    """Engine settings with zero backoff so retry tests run instantly."""
    return EngineSettings(
        parallelism=4,
        timeout=5,
        retry=RetryPolicy(max_attempts=3, initial_delay=0, max_delay=0),
    )


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state.json"


@pytest.fixture
def engine(
    cloud: InMemoryCloud,
    state_path: Path,
    registry: ResourceTypeRegistry,
    settings: EngineSettings,
) -> Engine:
    return Engine(
        provider=CloudProvider.from_client(cloud),
        workspace="test",
        state_path=state_path,
        registry=registry,
        settings=settings,
    )
