from __future__ import annotations

import argparse
from pathlib import Path

from cloud_provisioner.config import apply, load, plan
from cloud_provisioner.engine.types import InstanceStatus, ResourceChange, RunOutcome


def _progress(change: ResourceChange, event: str) -> None:
    if event == "start":
        print(f"[apply:start] {change.action.value:8} {change.address}")
    else:
        print(f"[apply:done]  {change.action.value:8} {change.address}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Plan/apply a topology via the Python API")
    parser.add_argument(
        "--config",
        default=str(Path(__file__).parent.parent / "three_tier" / "provisioner.yaml"),
        help="Path to config file",
    )
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument("--destroy", action="store_true", help="Plan destruction instead")
    parser.add_argument("--no-refresh", action="store_true", help="Skip refresh during plan")
    args = parser.parse_args()

    config = load(Path(args.config))

    plan_obj = plan(config, destroy=args.destroy, refresh=not args.no_refresh)
    print("Plan summary:", plan_obj.summary())
    for i, batch in enumerate(plan_obj.batch_steps(), start=1):
        print(f"Batch {i}:")
        for step in batch:
            action = "destroy" if step.destroy else step.change.action.value
            print(f"  - {action:8} {step.change.address}")

    if not args.apply:
        return 0

    result = apply(plan_obj, config, progress=_progress)
    print("Apply summary:", result.summary())
    for status in (InstanceStatus.FAILED, InstanceStatus.BLOCKED):
        for address in result.with_status(status):
            print(f"{status.value}: {address} {result.outcomes[address].error or ''}")
    for name, value in sorted(result.outputs.items()):
        print(f"{name} = {value}")
    return 0 if result.outcome == RunOutcome.SUCCESS else 1


if __name__ == "__main__":
    raise SystemExit(main())
