from __future__ import annotations

import json
import threading
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from cloud_provisioner.core.state import (
    STATE_FORMAT_VERSION,
    State,
    StateEntry,
    StateStore,
    StateVersionError,
    compute_attributes_hash,
    compute_state_digest,
)

if TYPE_CHECKING:
    from pathlib import Path


def _entry(address: str = "vpc.main", **attrs: object) -> StateEntry:
    resource_type, name = address.split(".", 1)
    attributes = {"id": f"{resource_type}-1", **attrs}
    return StateEntry(
        address=address,
        resource_type=resource_type,
        name=name,
        remote_id=f"{resource_type}-1",
        attributes=attributes,
        attributes_hash=compute_attributes_hash(attributes),
    )


class TestAttributesHash:
    def test_key_order_does_not_matter(self) -> None:
        forward = compute_attributes_hash({"a": 1, "b": 2})
        assert forward == compute_attributes_hash({"b": 2, "a": 1})

    def test_values_matter(self) -> None:
        assert compute_attributes_hash({"a": 1}) != compute_attributes_hash({"a": 2})


class TestSaveLoad:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        state = State(workspace="prod", serial=3, resources={"vpc.main": _entry()})
        state.outputs = {"vpc_id": "vpc-1"}
        state.save(path)

        loaded = State.load(path)
        assert loaded.workspace == "prod"
        assert loaded.serial == 3
        assert loaded.lineage == state.lineage
        assert loaded.resources["vpc.main"].remote_id == "vpc-1"
        assert loaded.outputs == {"vpc_id": "vpc-1"}

    def test_save_creates_parent_and_backup(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        State(workspace="w", serial=1).save(path)
        assert not (tmp_path / "nested" / "state.json.backup").exists()

        State(workspace="w", serial=2).save(path)
        backup = json.loads((tmp_path / "nested" / "state.json.backup").read_text())
        assert backup["serial"] == 1
        assert json.loads(path.read_text())["serial"] == 2

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        State(workspace="w").save(path)
        assert sorted(p.name for p in tmp_path.iterdir()) == ["state.json"]

    def test_newer_format_is_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": STATE_FORMAT_VERSION + 1, "workspace": "w"}))
        with pytest.raises(StateVersionError) as exc_info:
            State.load(path)
        assert exc_info.value.version == STATE_FORMAT_VERSION + 1

    def test_load_or_create(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        fresh = State.load_or_create(path, "w")
        assert fresh.serial == 0
        assert fresh.resources == {}
        assert not path.exists()

        State(workspace="w", serial=7).save(path)
        assert State.load_or_create(path, "w").serial == 7


class TestStateDigest:
    def test_excludes_timestamps(self) -> None:
        state = State(workspace="w", resources={"vpc.main": _entry()})
        d0 = compute_state_digest(state)

        later = datetime(2020, 1, 1, tzinfo=UTC) + timedelta(days=1)
        state.resources["vpc.main"].created_at = later
        state.resources["vpc.main"].updated_at = later
        assert compute_state_digest(state) == d0

    def test_includes_serial_lineage_and_deposed(self) -> None:
        state = State(workspace="w", resources={"vpc.main": _entry()})
        d0 = compute_state_digest(state)

        state.serial += 1
        assert compute_state_digest(state) != d0
        state.serial = 0

        state.lineage = "different"
        d1 = compute_state_digest(state)
        assert d1 != d0

        state.resources["vpc.main"].deposed.append("vpc-0")
        assert compute_state_digest(state) != d1


class TestStateStore:
    def test_put_bumps_serial_and_persists(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        store = StateStore(State(workspace="w"), path)

        store.put(_entry())
        store.put(_entry("subnet.a"))

        on_disk = State.load(path)
        assert on_disk.serial == 2
        assert set(on_disk.resources) == {"vpc.main", "subnet.a"}

    def test_get_returns_a_copy(self, tmp_path: Path) -> None:
        store = StateStore(State(workspace="w"), tmp_path / "state.json")
        store.put(_entry())

        entry = store.get("vpc.main")
        assert entry is not None
        entry.deposed.append("vpc-0")
        assert store.get("vpc.main").deposed == []
        assert store.get("vpc.missing") is None

    def test_update_sees_current_entry(self, tmp_path: Path) -> None:
        store = StateStore(State(workspace="w"), tmp_path / "state.json")
        store.put(_entry())

        def _depose(current: StateEntry | None) -> StateEntry | None:
            assert current is not None
            current.deposed.append("vpc-0")
            return current

        store.update("vpc.main", _depose)
        assert store.get("vpc.main").deposed == ["vpc-0"]

    def test_update_returning_none_removes(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        store = StateStore(State(workspace="w"), path)
        store.put(_entry())
        store.remove("vpc.main")

        assert store.get("vpc.main") is None
        assert State.load(path).resources == {}

    def test_outputs_only_written_on_change(self, tmp_path: Path) -> None:
        store = StateStore(State(workspace="w"), tmp_path / "state.json")
        store.set_outputs({"a": 1})
        store.set_outputs({"a": 1})
        snapshot = store.snapshot()
        assert snapshot.outputs == {"a": 1}
        assert snapshot.serial == 1

    def test_concurrent_updates_are_serialized(self, tmp_path: Path) -> None:
        store = StateStore(State(workspace="w"), tmp_path / "state.json")
        addresses = [f"subnet.s{i}" for i in range(20)]
        threads = [threading.Thread(target=store.put, args=(_entry(a),)) for a in addresses]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snapshot = store.snapshot()
        assert snapshot.serial == len(addresses)
        assert set(snapshot.resources) == set(addresses)
        assert State.load(store.path).serial == len(addresses)
