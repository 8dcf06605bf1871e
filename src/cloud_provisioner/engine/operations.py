"""Apply operations.

Each scheduled step of a plan becomes one operation. Operations run on
worker threads: they resolve the instance's attributes against the state
store (upstream outputs are known by then), talk to the remote API through
the type's handler and commit the entry after every phase.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from cloud_provisioner.core.state import StateEntry, compute_attributes_hash
from cloud_provisioner.engine.errors import InstanceFailedError
from cloud_provisioner.engine.references import Unknown, contains_unknown
from cloud_provisioner.engine.resolver import dig, resolve_attributes
from cloud_provisioner.engine.types import Action, InstanceStatus, destroy_step_key

if TYPE_CHECKING:
    from cloud_provisioner.core.state import StateStore
    from cloud_provisioner.engine.context import RunContext
    from cloud_provisioner.engine.diff import DiffEngine
    from cloud_provisioner.engine.handlers import EngineContext, ResourceHandler
    from cloud_provisioner.engine.registry import ResourceTypeRegistry
    from cloud_provisioner.engine.types import PlanStep, ResourceChange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyEnv:
    """Everything an operation needs while it runs."""

    ctx: EngineContext
    run: RunContext
    store: StateStore
    registry: ResourceTypeRegistry
    diff: DiffEngine

    def handler(self, resource_type: str) -> ResourceHandler[Any]:
        return self.registry.get(resource_type).handler


class Operation(Protocol):
    change: ResourceChange

    @property
    def key(self) -> str: ...

    @property
    def deps(self) -> list[str]: ...

    def run(self, env: ApplyEnv) -> None:
        """Execute this operation, recording status transitions on ``env.run``.

        Raises on failure; the executor records the error.
        """


def _remote_id(address: str, attrs: dict[str, Any]) -> str:
    remote_id = attrs.get("id")
    if not isinstance(remote_id, str) or not remote_id:
        raise InstanceFailedError(address, "remote API returned no object id")
    return remote_id


def _new_entry(
    change: ResourceChange,
    attrs: dict[str, Any],
    config: dict[str, Any],
    *,
    prior: StateEntry | None = None,
    deposed: list[str] | None = None,
) -> StateEntry:
    entry = StateEntry(
        address=change.address,
        resource_type=change.resource_type,
        name=change.name,
        remote_id=_remote_id(change.address, attrs),
        attributes=attrs,
        attributes_hash=compute_attributes_hash(attrs),
        config=config,
        config_hash=compute_attributes_hash(config),
        dependencies=list(change.dependencies),
        deposed=list(deposed or []),
    )
    if prior is not None and prior.remote_id == entry.remote_id:
        entry.created_at = prior.created_at
    return entry


def _purge_deposed(env: ApplyEnv, change: ResourceChange, deposed: list[str]) -> None:
    """Destroy old objects left behind by an earlier create-before-destroy."""
    handler = env.handler(change.resource_type)
    for remote_id in deposed:
        logger.debug("Destroying deposed object %s of %s", remote_id, change.address)
        handler.delete(env.ctx, change.resource_type, remote_id)

        def _drop(current: StateEntry | None, rid: str = remote_id) -> StateEntry | None:
            if current is None:
                return None
            current.deposed = [d for d in current.deposed if d != rid]
            return current

        env.store.update(change.address, _drop)


@dataclass
class DestroyOperation:
    change: ResourceChange

    @property
    def key(self) -> str:
        return self.change.address

    @property
    def deps(self) -> list[str]:
        return self.change.depends_on

    def run(self, env: ApplyEnv) -> None:
        address = self.change.address
        env.run.transition(address, InstanceStatus.DESTROYING)
        entry = env.store.get(address)
        if entry is not None:
            _purge_deposed(env, self.change, list(entry.deposed))
            env.handler(entry.resource_type).delete(env.ctx, entry.resource_type, entry.remote_id)
            env.store.remove(address)
        env.run.transition(address, InstanceStatus.DESTROYED)
        logger.debug("Destroyed %s", address)


@dataclass
class DestroyPriorOperation:
    """Destroy step of a change: removes what the instance leaves behind.

    Before a destroy-before-create replacement that is the current object.
    Otherwise it is the deposed objects of a create-before-destroy
    replacement, including leftovers of an earlier interrupted one.
    """

    change: ResourceChange

    @property
    def key(self) -> str:
        return destroy_step_key(self.change.address)

    @property
    def deps(self) -> list[str]:
        return self.change.destroy_depends_on

    def run(self, env: ApplyEnv) -> None:
        change = self.change
        address = change.address
        env.run.transition(address, InstanceStatus.DESTROYING)
        entry = env.store.get(address)
        if entry is not None:
            _purge_deposed(env, change, list(entry.deposed))
            if change.destroys_first:
                env.handler(entry.resource_type).delete(
                    env.ctx, entry.resource_type, entry.remote_id
                )
                env.store.remove(address)
                logger.debug("Destroyed %s (%s) ahead of its replacement", address, entry.remote_id)
        env.run.transition(address, InstanceStatus.DESTROYED)
        if not change.destroys_first:
            env.run.transition(address, InstanceStatus.SUCCEEDED)


@dataclass
class ApplyOperation:
    """Create, update or replace one instance.

    Attributes are re-resolved first. A provisional change is re-classified
    against the recorded entry now that every upstream value is known.
    """

    change: ResourceChange

    @property
    def key(self) -> str:
        return self.change.address

    @property
    def deps(self) -> list[str]:
        return self.change.depends_on

    def _resolve(self, env: ApplyEnv) -> dict[str, Any]:
        def lookup(address: str, path: str) -> Any:
            entry = env.store.get(address)
            if entry is None:
                return Unknown(f"{address}.{path}")
            return dig(entry.attributes, path)

        desired = self.change.desired or {}
        resolved = resolve_attributes(
            desired, lookup, self.change.references, address=self.change.address
        )
        if contains_unknown(resolved):
            raise InstanceFailedError(
                self.change.address, "a referenced value is still unknown after its producer ran"
            )
        return resolved

    def run(self, env: ApplyEnv) -> None:
        change = self.change
        resolved = self._resolve(env)
        prior = env.store.get(change.address)

        action = change.action
        diff = change.diff or {}
        if change.provisional:
            result = env.diff.classify(
                change.address,
                change.resource_type,
                resolved,
                prior,
                ignore_changes=change.ignore_changes,
            )
            if result.action == Action.REPLACE and action != Action.REPLACE:
                raise InstanceFailedError(
                    change.address, "change now requires replacement; re-run plan"
                )
            logger.debug(
                "Re-classified %s: %s -> %s", change.address, action.value, result.action.value
            )
            action, diff = result.action, result.diff

        match action:
            case Action.CREATE:
                self._create(env, resolved)
            case Action.UPDATE:
                self._update(env, resolved, prior, diff)
            case Action.REPLACE:
                self._replace(env, resolved, prior)
            case Action.NOOP:
                self._record_config(env, resolved, prior)
            case _:
                raise ValueError(f"Unsupported action for {change.address}: {action}")

        if not change.has_destroy_step or change.destroys_first:
            env.run.transition(change.address, InstanceStatus.SUCCEEDED)

    def _create(self, env: ApplyEnv, resolved: dict[str, Any]) -> None:
        change = self.change
        env.run.transition(change.address, InstanceStatus.CREATING)
        token = env.run.idempotency_token(change.address, "create")
        attrs = env.handler(change.resource_type).create(
            env.ctx, change.resource_type, resolved, idempotency_token=token
        )
        entry = _new_entry(change, attrs, resolved)
        env.store.put(entry)
        env.run.record_remote_id(change.address, entry.remote_id)
        logger.debug("Created %s (%s)", change.address, entry.remote_id)

    def _update(
        self,
        env: ApplyEnv,
        resolved: dict[str, Any],
        prior: StateEntry | None,
        diff: dict[str, dict[str, Any]],
    ) -> None:
        change = self.change
        if prior is None:
            raise InstanceFailedError(change.address, "no recorded entry to update")
        changes = {k: resolved.get(k) for k in diff}
        attrs = env.handler(change.resource_type).update(env.ctx, prior, changes)
        entry = _new_entry(change, attrs, resolved, prior=prior, deposed=prior.deposed)
        env.store.put(entry)
        logger.debug("Updated %s (%s)", change.address, ", ".join(sorted(changes)))

    def _replace(self, env: ApplyEnv, resolved: dict[str, Any], prior: StateEntry | None) -> None:
        """Create the new object; the destroy step removes the old one.

        Before a destroy-before-create replacement the destroy step already
        ran, so there is no prior entry left and this is a plain create.
        """
        change = self.change
        if prior is None:
            self._create(env, resolved)
            return
        env.run.transition(change.address, InstanceStatus.CREATING)
        token = env.run.idempotency_token(change.address, "replace-create")
        attrs = env.handler(change.resource_type).create(
            env.ctx, change.resource_type, resolved, idempotency_token=token
        )
        entry = _new_entry(change, attrs, resolved, deposed=[*prior.deposed, prior.remote_id])
        env.store.put(entry)
        env.run.record_remote_id(change.address, entry.remote_id)
        logger.debug(
            "Created replacement for %s: %s (deposed %s)",
            change.address,
            entry.remote_id,
            prior.remote_id,
        )

    def _record_config(
        self, env: ApplyEnv, resolved: dict[str, Any], prior: StateEntry | None
    ) -> None:
        if prior is None:
            return
        config_hash = compute_attributes_hash(resolved)
        dependencies = list(self.change.dependencies)

        def _refresh(current: StateEntry | None) -> StateEntry | None:
            if current is None:
                return None
            current.config = resolved
            current.config_hash = config_hash
            current.dependencies = dependencies
            return current

        env.store.update(self.change.address, _refresh)


def operation_for(step: PlanStep) -> Operation:
    change = step.change
    if step.destroy:
        return DestroyPriorOperation(change)
    match change.action:
        case Action.DESTROY:
            return DestroyOperation(change)
        case Action.CREATE | Action.UPDATE | Action.REPLACE:
            return ApplyOperation(change)
        case _:
            raise ValueError(f"No apply step for {change.address}: {change.action}")
