"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from cloud_provisioner import __version__
from cloud_provisioner.core.state import (
    State,
    StateStore,
    compute_attributes_hash,
    compute_state_digest,
)
from cloud_provisioner.engine.context import RunContext
from cloud_provisioner.engine.diff import DiffEngine
from cloud_provisioner.engine.errors import (
    DiffConflictError,
    StateWorkspaceMismatchError,
    ValidationError,
)
from cloud_provisioner.engine.executor import Executor, ProgressCallback
from cloud_provisioner.engine.graph import DependencyGraph
from cloud_provisioner.engine.handlers import EngineContext, PlanContext
from cloud_provisioner.engine.lock import StateLock
from cloud_provisioner.engine.operations import ApplyEnv
from cloud_provisioner.engine.references import (
    Unknown,
    contains_unknown,
    encode_unknowns,
)
from cloud_provisioner.engine.resolver import (
    InstanceSet,
    build_dependencies,
    collect_references,
    dig,
    expand_instances,
    resolve_attributes,
)
from cloud_provisioner.engine.settings import EngineSettings
from cloud_provisioner.engine.types import (
    TERMINAL_OK,
    Action,
    ApplyResult,
    InstanceStatus,
    Plan,
    PlanMetadata,
    PlannedOutput,
    ResourceChange,
    RunOutcome,
    destroy_step_key,
)

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from cloud_provisioner.core import CloudProvider
    from cloud_provisioner.engine.registry import ResourceTypeRegistry
    from cloud_provisioner.resources.base import Resource

__all__ = ["Engine", "ProgressCallback"]


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _compute_config_digest(instances: InstanceSet, outputs: Mapping[str, Any]) -> str:
    items = [
        {
            "address": addr,
            "resource_type": inst.resource_type,
            "attributes": inst.attributes,
            "depends_on": list(inst.depends_on),
        }
        for addr, inst in sorted(instances.items())
    ]
    return _sha256_hex(_canonical_json({"instances": items, "outputs": dict(outputs)}))


def _run_outcome(run: RunContext) -> RunOutcome:
    statuses = [o.status for o in run.results.values()]
    if run.canceled and statuses and all(s == InstanceStatus.PENDING for s in statuses):
        return RunOutcome.ABORTED
    if any(s not in TERMINAL_OK for s in statuses):
        return RunOutcome.PARTIAL_FAILURE
    return RunOutcome.SUCCESS


class Engine:
    """Terraform-like plan/apply engine for cloud resources."""

    def __init__(
        self,
        *,
        provider: CloudProvider,
        workspace: str,
        state_path: Path,
        registry: ResourceTypeRegistry,
        settings: EngineSettings | None = None,
    ) -> None:
        self._provider = provider
        self._workspace = workspace
        self._state_path = state_path
        self._registry = registry
        self._settings = settings or EngineSettings()

    @property
    def workspace(self) -> str:
        return self._workspace

    @property
    def state_path(self) -> Path:
        return self._state_path

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    def _ctx(self) -> EngineContext:
        return EngineContext(
            provider=self._provider, workspace=self._workspace, settings=self._settings
        )

    def _load_state(self) -> State:
        state = State.load_or_create(self._state_path, workspace=self._workspace)
        if state.workspace != self._workspace:
            raise StateWorkspaceMismatchError(self._workspace, state.workspace)
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    def _load_state_for_apply(self, plan: Plan) -> State:
        if self._state_path.exists():
            return self._load_state()
        # If no state exists, bootstrap from the plan metadata (saved-plan semantics).
        return State(
            workspace=self._workspace,
            lineage=plan.metadata.state_lineage,
            serial=plan.metadata.state_serial,
        )

    # ── Refresh ─────────────────────────────────────────────────────

    def _refresh_state_in_place(self, state: State) -> bool:
        logger.debug("Refreshing state from the remote API")
        changed = False
        ctx = self._ctx()

        for address, entry in list(state.resources.items()):
            if not entry.remote_id:
                continue
            handler = self._registry.get(entry.resource_type).handler
            attrs = handler.read(ctx, entry)
            if attrs is None:
                logger.info("%s no longer exists remotely; dropping it from state", address)
                del state.resources[address]
                changed = True
                continue

            new_hash = compute_attributes_hash(attrs)
            if attrs != entry.attributes or new_hash != entry.attributes_hash:
                entry.attributes = attrs
                entry.attributes_hash = new_hash
                entry.updated_at = datetime.now(UTC)
                changed = True

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from the remote API. Returns (pre_refresh, post_refresh)."""
        with StateLock(self._state_path):
            state = self._load_state()
            snapshot = state.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                state.serial += 1
                state.save(self._state_path)
            return snapshot, state

    # ── Graph / validation ──────────────────────────────────────────

    def _instance_graph(
        self, resources: Sequence[Resource], variables: Mapping[str, Any]
    ) -> tuple[InstanceSet, dict[str, list[str]], DependencyGraph]:
        instances = expand_instances(resources, variables, self._registry)
        deps = build_dependencies(instances, self._registry)
        priorities = {
            addr: self._registry.priority(inst.resource_type)
            for addr, inst in instances.items()
        }
        graph = DependencyGraph(instances.keys(), deps, priorities=priorities)
        graph.topological_batches()  # cycle check
        return instances, deps, graph

    def _validate(self, instances: InstanceSet, state: State) -> None:
        ctx = self._ctx()
        errors: list[str] = []
        for r in instances.resources.values():
            errors.extend(self._registry.get(r.resource_type).handler.validate(ctx, r))
        plan_ctx = PlanContext(instances, state)
        for inst in instances.values():
            handler = self._registry.get(inst.resource_type).handler
            errors.extend(handler.validate_plan(ctx, inst, plan_ctx))
        if errors:
            raise ValidationError(errors)

    def validate(
        self, resources: Sequence[Resource], *, variables: Mapping[str, Any] | None = None
    ) -> list[list[str]]:
        """Check references, cycles and handler validation. Returns instance batches."""
        instances, _, graph = self._instance_graph(resources, variables or {})
        self._validate(instances, self._load_state())
        return graph.topological_batches()

    def graph(
        self, resources: Sequence[Resource], *, variables: Mapping[str, Any] | None = None
    ) -> DependencyGraph:
        """Instance dependency graph of the configuration."""
        _, _, graph = self._instance_graph(resources, variables or {})
        return graph

    # ── Plan ────────────────────────────────────────────────────────

    def _classify(
        self,
        instances: InstanceSet,
        deps: dict[str, list[str]],
        order: list[str],
        state: State,
    ) -> list[ResourceChange]:
        diff_engine = DiffEngine(self._registry)
        # address -> value view used by dependents' lookups
        planned_view: dict[str, dict[str, Any]] = {}

        def lookup(address: str, path: str) -> Any:
            return dig(planned_view[address], path)

        changes: list[ResourceChange] = []
        for addr in order:
            inst = instances[addr]
            registration = self._registry.get(inst.resource_type)
            refs = collect_references(inst.attributes, instances, self._registry, address=addr)
            resolved = resolve_attributes(inst.attributes, lookup, refs, address=addr)
            entry = state.resources.get(addr)
            lifecycle = inst.resource.lifecycle
            result = diff_engine.classify(
                addr,
                inst.resource_type,
                resolved,
                entry,
                ignore_changes=lifecycle.ignore_changes,
                prevent_destroy=lifecycle.prevent_destroy,
            )

            if result.action in (Action.CREATE, Action.REPLACE) or entry is None:
                view = dict(resolved)
                # Computed outputs and unset attributes come back from the API.
                for name in registration.attributes - set(resolved):
                    view[name] = Unknown(f"{addr}.{name}")
            else:
                view = {**entry.attributes, **resolved}
            planned_view[addr] = view

            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=inst.resource_type,
                    name=inst.name,
                    action=result.action,
                    desired=inst.attributes,
                    references=refs,
                    planned=encode_unknowns(resolved),
                    prior=dict(entry.attributes) if entry is not None else None,
                    prior_hash=entry.attributes_hash if entry is not None else None,
                    remote_id=entry.remote_id if entry is not None else None,
                    diff=encode_unknowns(result.diff) or None,
                    provisional=result.provisional,
                    replacement=(
                        inst.resource.effective_replacement_policy()
                        if result.action == Action.REPLACE
                        else None
                    ),
                    ignore_changes=list(lifecycle.ignore_changes),
                    dependencies=deps[addr],
                    deposed=list(entry.deposed) if entry is not None else [],
                )
            )
        return changes

    def _plan_destroys(self, state: State, addrs: set[str]) -> list[ResourceChange]:
        """Plan destroy changes for the given addresses in reverse dependency order."""
        changes: list[ResourceChange] = []
        for addr in self._destroy_order(state, addrs):
            entry = state.resources[addr]
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=entry.resource_type,
                    name=entry.name,
                    action=Action.DESTROY,
                    prior=dict(entry.attributes),
                    prior_hash=entry.attributes_hash,
                    remote_id=entry.remote_id,
                    dependencies=list(entry.dependencies),
                    deposed=list(entry.deposed),
                )
            )
        return changes

    def _destroy_order(self, state: State, destroy_set: set[str]) -> list[str]:
        dep_map: dict[str, list[str]] = {}
        priorities: dict[str, int] = {}
        for addr in destroy_set:
            entry = state.resources[addr]
            dep_map[addr] = [d for d in entry.dependencies if d in destroy_set]
            priorities[addr] = self._registry.priority(entry.resource_type)
        return DependencyGraph(
            destroy_set, dep_map, priorities=priorities
        ).reverse_topological_order()

    def _propagate_destroy_first(
        self, changes: list[ResourceChange], state: State
    ) -> list[ResourceChange]:
        """Replaced dependents of a destroy-before-create replacement follow it.

        The old producer can only go once its old dependents are gone, and
        it must go before its new self exists, so a dependent cannot keep its
        old object around until its own replacement is created.
        """
        by_address = {c.address: c for c in changes}
        pending = True
        while pending:
            pending = False
            for addr, c in by_address.items():
                if c.action != Action.REPLACE or c.destroys_first:
                    continue
                entry = state.resources.get(addr)
                producers = entry.dependencies if entry is not None else []
                forcing = [
                    p for p in producers if p in by_address and by_address[p].destroys_first
                ]
                if forcing:
                    logger.debug(
                        "%s is replaced destroy-before-create with %s", addr, forcing[0]
                    )
                    by_address[addr] = c.model_copy(
                        update={"replacement": "destroy_before_create"}
                    )
                    pending = True
        return [by_address[c.address] for c in changes]

    def _schedule(
        self,
        changes: list[ResourceChange],
        deps: Mapping[str, list[str]],
        state: State,
    ) -> tuple[list[ResourceChange], list[list[str]]]:
        """Attach step dependencies and batch ranks to actionable changes.

        The apply step of a create/update/replace waits for the apply steps
        of the producers it reaches, looking through unchanged instances. A
        step that removes old objects (a destroy, or the destroy step of a
        replacement) waits until the instances recorded as depending on them
        have moved off or are gone themselves. Before a destroy-before-create
        replacement only replaced or destroyed dependents are waited for;
        updated ones pick up the new object afterwards.
        """
        changes = self._propagate_destroy_first(changes, state)
        actionable = {c.address: c for c in changes if c.actionable}
        producers = {
            a for a, c in actionable.items() if c.has_apply_step and c.action != Action.DESTROY
        }
        reach_cache: dict[str, set[str]] = {}

        def reach(addr: str) -> set[str]:
            if addr not in reach_cache:
                found: set[str] = set()
                for dep in deps.get(addr, []):
                    if dep in producers:
                        found.add(dep)
                    else:
                        found |= reach(dep)
                reach_cache[addr] = found
            return reach_cache[addr]

        step_deps: dict[str, set[str]] = {}
        priorities: dict[str, int] = {}
        for addr, c in actionable.items():
            priority = self._registry.priority(c.resource_type)
            for step in c.steps():
                step_deps[step.key] = set()
                priorities[step.key] = priority
            if c.has_apply_step and c.action != Action.DESTROY:
                step_deps[addr] |= reach(addr)
            if c.destroys_first:
                step_deps[addr].add(destroy_step_key(addr))
            elif c.has_destroy_step and c.has_apply_step:
                step_deps[destroy_step_key(addr)].add(addr)

        for addr, c in actionable.items():
            removal = c.removal_step
            if removal is None:
                continue
            for other, entry in state.resources.items():
                dependent = actionable.get(other)
                if other == addr or dependent is None or addr not in entry.dependencies:
                    continue
                if c.destroys_first and dependent.action not in (Action.REPLACE, Action.DESTROY):
                    continue
                gone = dependent.removal_step or (other if dependent.has_apply_step else None)
                if gone is not None:
                    step_deps[removal].add(gone)

        graph = DependencyGraph(step_deps.keys(), step_deps, priorities=priorities)
        batches = graph.topological_batches()
        rank = {key: i for i, batch in enumerate(batches) for key in batch}

        scheduled: list[ResourceChange] = []
        for c in changes:
            if not c.actionable:
                scheduled.append(c)
                continue
            update: dict[str, Any] = {}
            if c.has_apply_step:
                update["depends_on"] = sorted(step_deps[c.address])
                update["rank"] = rank[c.address]
            if c.has_destroy_step:
                key = destroy_step_key(c.address)
                update["destroy_depends_on"] = sorted(step_deps[key])
                update["destroy_rank"] = rank[key]
            scheduled.append(c.model_copy(update=update))
        return scheduled, batches

    def plan(
        self,
        resources: Sequence[Resource],
        *,
        variables: Mapping[str, Any] | None = None,
        outputs: Mapping[str, Any] | None = None,
        destroy: bool = False,
        refresh: bool = True,
        run: RunContext | None = None,
    ) -> Plan:
        run = run or RunContext()
        variables = variables or {}
        outputs = outputs or {}
        logger.info(
            "Planning %d resources (destroy=%s, refresh=%s, run=%s)",
            len(resources),
            destroy,
            refresh,
            run.run_id,
        )
        instances, deps, graph = self._instance_graph(resources, variables)

        # Only lock when refresh may write state.
        lock_cm = StateLock(self._state_path) if refresh else contextlib.nullcontext()
        with lock_cm:
            state = self._load_state()
            if refresh:
                changed = self._refresh_state_in_place(state)
                if changed:
                    state.serial += 1
                    state.save(self._state_path)

        planned_outputs: dict[str, PlannedOutput] = {}
        if destroy:
            for addr in state.resources:
                inst = instances.get(addr)
                if inst is not None:
                    DiffEngine.check_destroy(
                        addr, prevent_destroy=inst.resource.lifecycle.prevent_destroy
                    )
            changes = self._plan_destroys(state, set(state.resources))
        else:
            self._validate(instances, state)
            changes = self._classify(instances, deps, graph.topological_order(), state)
            changes.extend(self._plan_destroys(state, set(state.resources) - set(instances)))
            for name, expression in outputs.items():
                planned_outputs[name] = PlannedOutput(
                    expression=expression,
                    references=collect_references(
                        expression, instances, self._registry, address=f"output.{name}"
                    ),
                )

        changes, batches = self._schedule(changes, deps, state)

        metadata = PlanMetadata(
            workspace=self._workspace,
            run_id=run.run_id,
            created_at=datetime.now(UTC),
            destroy=destroy,
            refresh=refresh,
            state_lineage=state.lineage,
            state_serial=state.serial,
            state_digest=compute_state_digest(state),
            config_digest=_compute_config_digest(instances, {} if destroy else outputs),
            engine_version=__version__,
        )
        plan = Plan(metadata=metadata, changes=changes, batches=batches, outputs=planned_outputs)
        logger.info(
            "Plan: %s",
            ", ".join(f"{n} to {a}" for a, n in plan.summary().items() if n and a != "no-op")
            or "no changes",
        )
        return plan

    # ── Apply ───────────────────────────────────────────────────────

    def _check_stale(self, plan: Plan, state: State) -> None:
        if state.workspace != self._workspace:
            raise StateWorkspaceMismatchError(self._workspace, state.workspace)
        if state.lineage != plan.metadata.state_lineage:
            raise DiffConflictError("State lineage changed; re-run plan")
        if state.serial != plan.metadata.state_serial:
            raise DiffConflictError("State serial changed; re-run plan")
        if compute_state_digest(state) != plan.metadata.state_digest:
            raise DiffConflictError("State digest changed; re-run plan")

    def _verify_remote(self, plan: Plan, state: State) -> None:
        """Re-read every object the plan mutates; it must match what was planned against."""
        ctx = self._ctx()
        for c in plan.changes:
            if c.action not in (Action.UPDATE, Action.REPLACE, Action.DESTROY):
                continue
            entry = state.resources.get(c.address)
            if entry is None or c.prior_hash is None:
                continue
            attrs = self._registry.get(c.resource_type).handler.read(ctx, entry)
            if attrs is None:
                raise DiffConflictError(f"{c.address} no longer exists remotely; re-run plan")
            if compute_attributes_hash(attrs) != c.prior_hash:
                raise DiffConflictError(f"{c.address} changed remotely since plan; re-run plan")

    @staticmethod
    def _resolve_outputs(plan: Plan, store: StateStore) -> dict[str, Any]:
        def lookup(address: str, path: str) -> Any:
            entry = store.get(address)
            if entry is None:
                return Unknown(f"{address}.{path}")
            return dig(entry.attributes, path)

        values: dict[str, Any] = {}
        for name, out in plan.outputs.items():
            value = resolve_attributes(
                {"value": out.expression}, lookup, out.references, address=f"output.{name}"
            )["value"]
            if contains_unknown(value):
                logger.info("Output %s is not known yet", name)
                continue
            values[name] = value
        return values

    def apply(
        self,
        plan: Plan,
        *,
        progress: ProgressCallback | None = None,
        run: RunContext | None = None,
        parallelism: int | None = None,
    ) -> ApplyResult:
        run = run or RunContext(run_id=plan.metadata.run_id)
        with StateLock(self._state_path, holder=f"apply {run.run_id}"):
            state = self._load_state_for_apply(plan)
            self._check_stale(plan, state)
            if plan.metadata.refresh and self._settings.verify_remote_on_apply:
                self._verify_remote(plan, state)

            store = StateStore(state, self._state_path)
            env = ApplyEnv(
                ctx=self._ctx(),
                run=run,
                store=store,
                registry=self._registry,
                diff=DiffEngine(self._registry),
            )
            workers = parallelism or self._settings.parallelism
            logger.info(
                "Applying %d changes in %d batches (parallelism=%d)",
                len(plan.actionable()),
                len(plan.batches),
                workers,
            )
            applied = Executor(env, parallelism=workers, progress=progress).run(plan)

            outputs = self._resolve_outputs(plan, store)
            store.set_outputs(outputs)

            outcome = _run_outcome(run)
            logger.info("Apply finished: %s", outcome.value)
            return ApplyResult(
                run_id=run.run_id,
                outcome=outcome,
                canceled=run.canceled,
                outcomes={a: o.model_copy(deep=True) for a, o in run.results.items()},
                applied=applied,
                outputs=outputs,
            )
