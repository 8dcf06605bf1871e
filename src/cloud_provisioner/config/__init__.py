"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cloud_provisioner.config.loader import ConfigError, load_config
from cloud_provisioner.config.registry import default_registry
from cloud_provisioner.config.schema import Config, ProviderConfig
from cloud_provisioner.core.provider import ApiKeyAuth, CloudProvider
from cloud_provisioner.core.state import State
from cloud_provisioner.engine.engine import Engine, ProgressCallback
from cloud_provisioner.engine.lock import StateLock
from cloud_provisioner.engine.types import Action, ResourceChange

if TYPE_CHECKING:
    from pathlib import Path

    from cloud_provisioner.engine.context import RunContext
    from cloud_provisioner.engine.types import ApplyResult, Plan

__all__ = [
    "Config",
    "ConfigError",
    "ProviderConfig",
    "State",
    "apply",
    "drift",
    "engine_from_config",
    "graph",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "refresh",
    "save_state",
    "validate",
]

MEMORY_FILE_NAME = ".cloud-memory.json"


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def _provider_from_config(config: Config) -> CloudProvider:
    p = config.provider
    if p.kind == "memory":
        # Persist the simulated cloud next to the state so runs see each other's objects.
        memory_path = p.memory_path or config.state_path.parent / MEMORY_FILE_NAME
        return CloudProvider(kind="memory", region=p.region, memory_path=memory_path)

    if not p.endpoint:
        raise ConfigError("provider.endpoint is required (set in YAML or CLOUD_ENDPOINT env var)")
    if p.api_key is None:
        raise ConfigError("provider.api_key is required (set CLOUD_API_KEY env var)")
    return CloudProvider(
        kind="http",
        endpoint=p.endpoint,
        region=p.region,
        auth=ApiKeyAuth(api_key=p.api_key),
    )


def engine_from_config(config: Config) -> Engine:
    """Build an ``Engine`` from a ``Config`` instance."""
    return Engine(
        provider=_provider_from_config(config),
        workspace=config.workspace,
        state_path=config.state_path,
        registry=default_registry(),
        settings=config.settings,
    )


def plan(
    config: Config,
    *,
    destroy: bool = False,
    refresh: bool = True,
    run: RunContext | None = None,
) -> Plan:
    """Plan changes for the given configuration."""
    engine = engine_from_config(config)
    return engine.plan(
        config.resources,
        variables=config.variables,
        outputs=config.outputs,
        destroy=destroy,
        refresh=refresh,
        run=run,
    )


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    parallelism: int | None = None,
    run: RunContext | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = engine_from_config(config)
    return engine.apply(plan_obj, progress=progress, parallelism=parallelism, run=run)


def plan_and_apply(
    config: Config,
    *,
    destroy: bool = False,
    refresh: bool = True,
    progress: ProgressCallback | None = None,
) -> ApplyResult:
    """Plan and apply in one step."""
    plan_obj = plan(config, destroy=destroy, refresh=refresh)
    return apply(plan_obj, config, progress=progress)


def refresh(config: Config) -> tuple[list[ResourceChange], State]:
    """Refresh state from the remote API (not persisted).

    Returns the list of drift changes and the new state. Call
    :func:`save_state` to persist the returned state to disk.
    """
    engine = engine_from_config(config)
    old_state, new_state = engine.refresh()
    return _build_drift_changes(old_state, new_state), new_state


def save_state(config: Config, state: State) -> None:
    """Persist state to disk."""
    with StateLock(config.state_path):
        state.serial += 1
        state.save(config.state_path)


def drift(config: Config) -> list[ResourceChange]:
    """Detect drift between state file and the remote API."""
    changes, _ = refresh(config)
    return changes


def validate(config: Config) -> list[list[str]]:
    """Validate references, cycles and resource rules. Returns instance batches."""
    engine = engine_from_config(config)
    return engine.validate(config.resources, variables=config.variables)


def graph(config: Config) -> list[list[str]]:
    """Instance dependency batches of the configuration, without touching state."""
    engine = engine_from_config(config)
    return engine.graph(config.resources, variables=config.variables).topological_batches()


def _build_drift_changes(old_state: State, new_state: State) -> list[ResourceChange]:
    """Compare old vs new state and return a list of drift changes."""
    changes: list[ResourceChange] = []
    for addr, entry in sorted(new_state.resources.items()):
        old_entry = old_state.resources.get(addr)
        if old_entry is None or old_entry.attributes == entry.attributes:
            continue
        old, new = old_entry.attributes, entry.attributes
        diff = {
            k: {"from": old.get(k), "to": new.get(k)}
            for k in sorted(set(old) | set(new))
            if old.get(k) != new.get(k)
        }
        changes.append(
            ResourceChange(
                address=addr,
                resource_type=entry.resource_type,
                name=entry.name,
                action=Action.UPDATE,
                prior=dict(old),
                planned=dict(new),
                diff=diff,
                remote_id=entry.remote_id,
            )
        )
    for addr in sorted(set(old_state.resources) - set(new_state.resources)):
        old_entry = old_state.resources[addr]
        changes.append(
            ResourceChange(
                address=addr,
                resource_type=old_entry.resource_type,
                name=old_entry.name,
                action=Action.DESTROY,
                prior=dict(old_entry.attributes),
                remote_id=old_entry.remote_id,
            )
        )
    return changes
