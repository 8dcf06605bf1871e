from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from cloud_provisioner.core.state import State
from cloud_provisioner.engine.types import Action
from cloud_provisioner.resources import BucketResource, VpcResource

if TYPE_CHECKING:
    from cloud_provisioner.core.memory import InMemoryCloud
    from cloud_provisioner.engine import Engine


def _resources() -> list[VpcResource | BucketResource]:
    return [
        VpcResource(name="main", cidr_block="10.0.0.0/16"),
        BucketResource(name="logs", bucket="logs"),
    ]


def _remote_id(state_path: Path, address: str) -> str:
    return State.load(state_path).resources[address].remote_id


def test_refresh_updates_state_and_writes_backup(
    engine: Engine, cloud: InMemoryCloud, state_path: Path
) -> None:
    engine.apply(engine.plan(_resources()))
    before = State.load(state_path)
    cloud.mutate("vpc", _remote_id(state_path, "vpc.main"), enable_dns_support=False)

    old, new = engine.refresh(persist=True)

    assert old.resources["vpc.main"].attributes["enable_dns_support"] is True
    assert new.resources["vpc.main"].attributes["enable_dns_support"] is False
    saved = State.load(state_path)
    assert saved.serial == before.serial + 1
    assert saved.resources["vpc.main"].attributes["enable_dns_support"] is False
    backup = State.load(Path(str(state_path) + ".backup"))
    assert backup.serial == before.serial


def test_refresh_without_persist_leaves_file_alone(
    engine: Engine, cloud: InMemoryCloud, state_path: Path
) -> None:
    engine.apply(engine.plan(_resources()))
    raw = state_path.read_bytes()
    cloud.mutate("bucket", _remote_id(state_path, "bucket.logs"), versioning=True)

    _, new = engine.refresh()

    assert new.resources["bucket.logs"].attributes["versioning"] is True
    assert state_path.read_bytes() == raw


def test_refresh_drops_vanished_objects(
    engine: Engine, cloud: InMemoryCloud, state_path: Path
) -> None:
    engine.apply(engine.plan(_resources()))
    cloud.forget("bucket", _remote_id(state_path, "bucket.logs"))

    old, new = engine.refresh(persist=True)

    assert "bucket.logs" in old.resources
    assert "bucket.logs" not in new.resources
    assert set(State.load(state_path).resources) == {"vpc.main"}


def test_refresh_without_drift_does_not_write(engine: Engine, state_path: Path) -> None:
    engine.apply(engine.plan(_resources()))
    serial = State.load(state_path).serial

    old, new = engine.refresh(persist=True)

    assert old.resources == new.resources
    assert State.load(state_path).serial == serial


def test_refresh_of_missing_state_is_empty(engine: Engine, state_path: Path) -> None:
    old, new = engine.refresh(persist=True)

    assert old.resources == {}
    assert new.resources == {}
    assert not state_path.exists()


def test_plan_without_refresh_trusts_recorded_state(
    engine: Engine, cloud: InMemoryCloud, state_path: Path
) -> None:
    engine.apply(engine.plan(_resources()))
    cloud.mutate("vpc", _remote_id(state_path, "vpc.main"), enable_dns_support=False)

    stale = engine.plan(_resources(), refresh=False)
    fresh = engine.plan(_resources())

    assert stale.change("vpc.main").action == Action.NOOP
    assert fresh.change("vpc.main").action == Action.UPDATE
