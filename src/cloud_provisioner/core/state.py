"""State management for tracking provisioned resource instances."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


class StateVersionError(Exception):
    """Raised when a state file was written by a newer, unsupported format."""

    def __init__(self, path: Path, version: int) -> None:
        super().__init__(
            f"State file {path} has format version {version}; "
            f"this engine supports up to {STATE_FORMAT_VERSION}"
        )
        self.path = path
        self.version = version


def _canonical_json(obj: Any) -> str:
    # Stable encoding for hashes/digests. `default=str` keeps it robust for
    # datetimes/paths/etc while staying deterministic enough for our use.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable content hash for an attribute mapping."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StateEntry(BaseModel):
    """A tracked resource instance in the state file.

    Attributes:
        address: Unique instance address (e.g., ``subnet.private[0]``)
        resource_type: Type of the resource (e.g., ``subnet``)
        name: Resource name (e.g., ``private``)
        remote_id: Identifier assigned by the remote API
        attributes: Attribute snapshot last returned by the remote API
        attributes_hash: SHA256 of ``attributes``, used for drift detection
        config: Resolved desired configuration at the last successful apply
        config_hash: SHA256 of ``config``
        dependencies: Addresses of instances this one depends on
        deposed: Remote ids of replaced objects that still await destruction
        created_at: When the instance was first created
        updated_at: When the instance was last written
    """

    address: str
    resource_type: str
    name: str
    remote_id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    config: dict[str, Any] = Field(default_factory=dict)
    config_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    deposed: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class State(BaseModel):
    """Versioned state document keyed by instance address.

    Attributes:
        version: State file format version
        workspace: Workspace the state belongs to
        serial: Incremented on every write
        lineage: Identity of this state's history, fixed at creation
        resources: Mapping of instance addresses to entries
        outputs: Resolved output values from the last apply
    """

    version: int = STATE_FORMAT_VERSION
    workspace: str
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, StateEntry] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        content = json.dumps(data, indent=2, sort_keys=True) + "\n"

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> State:
        """Load state from a JSON file."""
        raw = json.loads(path.read_text(encoding="utf-8"))
        version = raw.get("version", STATE_FORMAT_VERSION)
        if version > STATE_FORMAT_VERSION:
            raise StateVersionError(path, version)
        state = cls.model_validate(raw)
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path, workspace: str) -> State:
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("Created new state for workspace %s", workspace)
        return cls(workspace=workspace)


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection; timestamps never force a re-plan.
    """
    resources = []
    for address, entry in sorted(state.resources.items(), key=lambda kv: kv[0]):
        resources.append(
            {
                "address": address,
                "resource_type": entry.resource_type,
                "remote_id": entry.remote_id,
                "attributes_hash": entry.attributes_hash,
                "config_hash": entry.config_hash,
                "dependencies": sorted(entry.dependencies),
                "deposed": sorted(entry.deposed),
            }
        )

    digestable = {
        "version": state.version,
        "workspace": state.workspace,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StateStore:
    """Thread-safe, write-through view over a :class:`State` document.

    Each entry is read-modify-written under its own lock; document writes are
    serialized under a single commit lock so concurrent completions never
    interleave. Every successful write bumps the serial and persists.
    """

    def __init__(self, state: State, path: Path) -> None:
        self._state = state
        self._path = path
        self._commit_lock = threading.Lock()
        self._guard = threading.Lock()
        self._entry_locks: dict[str, threading.Lock] = {}

    @property
    def path(self) -> Path:
        return self._path

    def _lock_for(self, address: str) -> threading.Lock:
        with self._guard:
            return self._entry_locks.setdefault(address, threading.Lock())

    def get(self, address: str) -> StateEntry | None:
        with self._commit_lock:
            entry = self._state.resources.get(address)
            return entry.model_copy(deep=True) if entry is not None else None

    def update(
        self,
        address: str,
        fn: Callable[[StateEntry | None], StateEntry | None],
    ) -> StateEntry | None:
        """Atomically replace the entry at *address* with ``fn(current)``.

        Returning ``None`` from *fn* removes the entry.
        """
        with self._lock_for(address):
            current = self.get(address)
            new = fn(current)
            with self._commit_lock:
                if new is None:
                    self._state.resources.pop(address, None)
                else:
                    new.updated_at = datetime.now(UTC)
                    self._state.resources[address] = new
                self._commit()
            return new

    def put(self, entry: StateEntry) -> None:
        self.update(entry.address, lambda _current: entry)

    def remove(self, address: str) -> None:
        self.update(address, lambda _current: None)

    def set_outputs(self, outputs: dict[str, Any]) -> None:
        with self._commit_lock:
            if outputs == self._state.outputs:
                return
            self._state.outputs = dict(outputs)
            self._commit()

    def snapshot(self) -> State:
        """Deep copy of the document, taken under the commit lock."""
        with self._commit_lock:
            return self._state.model_copy(deep=True)

    def _commit(self) -> None:
        self._state.serial += 1
        self._state.save(self._path)
