"""Engine types (plan, changes, metadata, run results)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cloud_provisioner.resources.base import ReplacementPolicy  # noqa: TC001


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DESTROY = "destroy"
    NOOP = "no-op"


class InstanceStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    CREATING = "creating"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"


TERMINAL_OK: frozenset[InstanceStatus] = frozenset(
    {InstanceStatus.SUCCEEDED, InstanceStatus.DESTROYED}
)


class RunOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    ABORTED = "aborted"


# Suffix of the scheduled step that removes an instance's old remote objects.
DESTROY_STEP_SUFFIX = "#destroy"


def destroy_step_key(address: str) -> str:
    return address + DESTROY_STEP_SUFFIX


class PlanMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    workspace: str
    run_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    refresh: bool
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    """Planned action for one instance.

    Attributes:
        desired: Expanded attributes, references still in place
        references: Reference expression -> target instance addresses
        planned: Resolved attributes; unknown values encoded as ``{"$unknown": expr}``
        prior: Remote attributes recorded in state
        prior_hash: Hash of ``prior`` at plan time
        diff: Attribute -> ``{"from", "to", "forces_replacement"}``
        provisional: Depends on values only known during apply
        replacement: Ordering used when ``action`` is ``replace``
        dependencies: Instance dependencies recorded in state on success
        depends_on: Step keys the apply step waits for
        rank: Index of the batch the apply step runs in
        destroy_depends_on: Step keys the destroy step waits for
        destroy_rank: Index of the batch the destroy step runs in
        deposed: Remote ids of old objects still awaiting destruction

    A change runs as up to two scheduled steps. The apply step (keyed by the
    address) creates, updates or destroys the instance. The destroy step
    (keyed by :func:`destroy_step_key`) removes the objects the instance
    leaves behind: the current one before a destroy-before-create
    replacement, deposed ones otherwise. It waits until old dependents have
    moved off those objects.
    """

    model_config = ConfigDict(frozen=True)

    address: str
    resource_type: str
    name: str
    action: Action
    desired: dict[str, Any] | None = None
    references: dict[str, list[str]] = Field(default_factory=dict)
    planned: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    prior_hash: str | None = None
    remote_id: str | None = None
    diff: dict[str, dict[str, Any]] | None = None
    provisional: bool = False
    replacement: ReplacementPolicy | None = None
    ignore_changes: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)
    rank: int | None = None
    destroy_depends_on: list[str] = Field(default_factory=list)
    destroy_rank: int | None = None
    deposed: list[str] = Field(default_factory=list)

    @property
    def actionable(self) -> bool:
        return self.action != Action.NOOP or bool(self.deposed)

    @property
    def has_apply_step(self) -> bool:
        return self.action != Action.NOOP

    @property
    def has_destroy_step(self) -> bool:
        if self.action == Action.DESTROY:
            return False
        return self.action == Action.REPLACE or bool(self.deposed)

    @property
    def destroys_first(self) -> bool:
        return self.action == Action.REPLACE and self.replacement == "destroy_before_create"

    @property
    def removal_step(self) -> str | None:
        """Key of the step after which the instance's old objects are gone."""
        if self.action == Action.DESTROY:
            return self.address
        if self.has_destroy_step:
            return destroy_step_key(self.address)
        return None

    def steps(self) -> list[PlanStep]:
        steps: list[PlanStep] = []
        if self.has_apply_step:
            steps.append(PlanStep(self.address, self, destroy=False))
        if self.has_destroy_step:
            steps.append(PlanStep(destroy_step_key(self.address), self, destroy=True))
        return steps


@dataclass(frozen=True)
class PlanStep:
    """One scheduled unit of work of a change."""

    key: str
    change: ResourceChange
    destroy: bool

    @property
    def depends_on(self) -> list[str]:
        return self.change.destroy_depends_on if self.destroy else self.change.depends_on

    @property
    def last(self) -> bool:
        """Whether finishing this step finishes the instance."""
        if self.destroy:
            return not (self.change.destroys_first and self.change.has_apply_step)
        return not (self.change.has_destroy_step and not self.change.destroys_first)


class PlannedOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    expression: Any
    references: dict[str, list[str]] = Field(default_factory=dict)


class Plan(BaseModel):
    """Ordered, immutable action list grouped into dependency batches."""

    model_config = ConfigDict(frozen=True)

    metadata: PlanMetadata
    changes: list[ResourceChange]
    batches: list[list[str]] = Field(default_factory=list)
    outputs: dict[str, PlannedOutput] = Field(default_factory=dict)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        return counts

    def actionable(self) -> list[ResourceChange]:
        return [c for c in self.changes if c.actionable]

    def has_changes(self) -> bool:
        return any(c.actionable for c in self.changes)

    def change(self, address: str) -> ResourceChange:
        for c in self.changes:
            if c.address == address:
                return c
        raise KeyError(address)

    def batch_steps(self) -> list[list[PlanStep]]:
        by_key = {s.key: s for c in self.changes for s in c.steps()}
        return [[by_key[k] for k in batch] for batch in self.batches]

    def batch_changes(self) -> list[list[ResourceChange]]:
        return [[s.change for s in batch] for batch in self.batch_steps()]

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class InstanceOutcome(BaseModel):
    """Execution record for one planned change."""

    address: str
    action: Action
    status: InstanceStatus = InstanceStatus.PENDING
    history: list[InstanceStatus] = Field(default_factory=lambda: [InstanceStatus.PENDING])
    error: str | None = None
    remote_id: str | None = None

    def transition(self, status: InstanceStatus) -> None:
        self.status = status
        self.history.append(status)

    @property
    def ok(self) -> bool:
        return self.status in TERMINAL_OK


class ApplyResult(BaseModel):
    run_id: str
    outcome: RunOutcome
    canceled: bool = False
    outcomes: dict[str, InstanceOutcome] = Field(default_factory=dict)
    applied: list[ResourceChange] = Field(default_factory=list)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def with_status(self, status: InstanceStatus) -> list[str]:
        return sorted(a for a, o in self.outcomes.items() if o.status == status)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.applied:
            counts[c.action.value] += 1
        return counts

    def status_counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in InstanceStatus}
        for o in self.outcomes.values():
            counts[o.status.value] += 1
        return counts
