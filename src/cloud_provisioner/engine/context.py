"""Per-run context threaded through plan and apply."""

from __future__ import annotations

import hashlib
import threading
import uuid
from dataclasses import dataclass, field

from cloud_provisioner.engine.types import Action, InstanceOutcome, InstanceStatus


def new_run_id() -> str:
    return uuid.uuid4().hex


@dataclass
class RunContext:
    """Run id, cancellation signal and accumulated per-instance results.

    ``cancel()`` may be called from any thread; the executor stops
    dispatching new work once it is set.
    """

    run_id: str = field(default_factory=new_run_id)
    results: dict[str, InstanceOutcome] = field(default_factory=dict)
    _completed: set[str] = field(default_factory=set, repr=False)
    _cancel: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def canceled(self) -> bool:
        return self._cancel.is_set()

    def track(self, address: str, action: Action) -> InstanceOutcome:
        with self._lock:
            outcome = InstanceOutcome(address=address, action=action)
            self.results[address] = outcome
            return outcome

    def transition(
        self,
        address: str,
        status: InstanceStatus,
        *,
        error: str | None = None,
        remote_id: str | None = None,
    ) -> None:
        with self._lock:
            outcome = self.results[address]
            outcome.transition(status)
            if error is not None:
                outcome.error = error
            if remote_id is not None:
                outcome.remote_id = remote_id

    def record_remote_id(self, address: str, remote_id: str) -> None:
        with self._lock:
            self.results[address].remote_id = remote_id

    def status(self, address: str) -> InstanceStatus:
        with self._lock:
            return self.results[address].status

    def complete_step(self, key: str) -> None:
        with self._lock:
            self._completed.add(key)

    def step_completed(self, key: str) -> bool:
        with self._lock:
            return key in self._completed

    def idempotency_token(self, address: str, phase: str) -> str:
        """Stable across retries of the same call within this run."""
        payload = f"{self.run_id}:{address}:{phase}"
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()
