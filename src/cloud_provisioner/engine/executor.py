"""Batch-by-batch concurrent plan execution."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, Literal

from cloud_provisioner.core.errors import RemoteError
from cloud_provisioner.engine.errors import EngineError
from cloud_provisioner.engine.operations import operation_for
from cloud_provisioner.engine.types import InstanceStatus, ResourceChange

if TYPE_CHECKING:
    from cloud_provisioner.engine.operations import ApplyEnv, Operation
    from cloud_provisioner.engine.types import Plan, PlanStep

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ResourceChange, Literal["start", "done"]], None]


class Executor:
    """Runs a plan's batches in order on a bounded thread pool.

    Within a batch steps run concurrently; the next batch starts only after
    every step of the current one finished. A step whose dependencies did not
    all complete marks its instance ``blocked`` without any remote call.
    Progress callbacks are invoked on the calling thread, ``start`` before an
    instance's first step and ``done`` once it succeeded or failed.
    """

    def __init__(
        self,
        env: ApplyEnv,
        *,
        parallelism: int,
        progress: ProgressCallback | None = None,
    ) -> None:
        self._env = env
        self._parallelism = parallelism
        self._progress = progress
        self._applied: list[ResourceChange] = []

    def _blocked_by(self, step: PlanStep) -> list[str]:
        run = self._env.run
        return [d for d in step.depends_on if not run.step_completed(d)]

    def _block(self, step: PlanStep, blockers: list[str]) -> None:
        run = self._env.run
        address = step.change.address
        logger.info("%s blocked by %s", step.key, ", ".join(blockers))
        if run.status(address) in (InstanceStatus.FAILED, InstanceStatus.BLOCKED):
            return
        run.transition(
            address, InstanceStatus.BLOCKED, error=f"blocked by {', '.join(blockers)}"
        )

    def _execute(self, op: Operation, address: str) -> bool:
        """Worker body. Records the step or the failure; returns True on success."""
        run = self._env.run
        if run.canceled:
            return False
        if run.status(address) == InstanceStatus.PENDING:
            run.transition(address, InstanceStatus.IN_PROGRESS)
        try:
            op.run(self._env)
        except (RemoteError, EngineError) as e:
            logger.warning("%s failed: %s", op.key, e)
            run.transition(address, InstanceStatus.FAILED, error=str(e))
            return False
        except Exception as e:
            logger.exception("Unexpected error applying %s", op.key)
            run.transition(address, InstanceStatus.FAILED, error=f"{type(e).__name__}: {e}")
            return False
        run.complete_step(op.key)
        return True

    def _report(self, change: ResourceChange, event: Literal["start", "done"]) -> None:
        if self._progress is not None:
            self._progress(change, event)

    def _finish(self, step: PlanStep, ok: bool) -> None:
        change = step.change
        if ok:
            if step.last:
                self._applied.append(change)
                self._report(change, "done")
        elif self._env.run.status(change.address) == InstanceStatus.FAILED:
            self._report(change, "done")

    def _run_batch(self, pool: ThreadPoolExecutor, batch: list[PlanStep]) -> None:
        run = self._env.run
        futures: dict[Future[bool], PlanStep] = {}
        finished: set[Future[bool]] = set()
        try:
            for step in batch:
                if run.canceled:
                    break
                blockers = self._blocked_by(step)
                if blockers:
                    self._block(step, blockers)
                    continue
                if run.status(step.change.address) == InstanceStatus.PENDING:
                    self._report(step.change, "start")
                op = operation_for(step)
                futures[pool.submit(self._execute, op, step.change.address)] = step

            for fut in as_completed(futures):
                finished.add(fut)
                self._finish(futures[fut], fut.result())
        except KeyboardInterrupt:
            logger.warning("Interrupted; waiting for in-flight operations to finish")
            run.cancel()
            # In-flight steps still commit state; account for them too.
            for fut, step in futures.items():
                if fut not in finished:
                    self._finish(step, fut.result())

    def run(self, plan: Plan) -> list[ResourceChange]:
        """Execute *plan*; return the changes that completed successfully."""
        run = self._env.run
        for change in plan.actionable():
            run.track(change.address, change.action)

        self._applied = []
        with ThreadPoolExecutor(
            max_workers=self._parallelism, thread_name_prefix="apply"
        ) as pool:
            for rank, batch in enumerate(plan.batch_steps()):
                if run.canceled:
                    break
                logger.debug("Starting batch %d (%d steps)", rank, len(batch))
                self._run_batch(pool, batch)
        return self._applied
