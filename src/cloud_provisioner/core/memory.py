"""In-memory simulated cloud implementing the ``CloudClient`` protocol.

Used by the test-suite and for local dry runs (``provider.kind: memory``).
Objects optionally persist to a JSON file so consecutive CLI runs see the
same "remote" infrastructure.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from cloud_provisioner.core.errors import RemoteTerminalError

logger = logging.getLogger(__name__)

Operation = Literal["create", "read", "update", "delete"]

_ID_PREFIXES: dict[str, str] = {
    "vpc": "vpc",
    "subnet": "subnet",
    "internet_gateway": "igw",
    "elastic_ip": "eipalloc",
    "nat_gateway": "nat",
    "route_table": "rtb",
    "route_table_association": "rtbassoc",
    "security_group": "sg",
    "iam_role": "role",
    "iam_role_policy_attachment": "attach",
    "k8s_cluster": "cluster",
    "node_group": "ng",
    "db_subnet_group": "dbsubnet",
    "db_cluster": "dbcluster",
    "db_instance": "db",
    "bucket": "bucket",
}


def _computed_outputs(
    resource_type: str, obj_id: str, attrs: dict[str, Any], region: str, seq: int
) -> dict[str, Any]:
    """Outputs the simulated provider assigns on create."""
    out: dict[str, Any] = {"id": obj_id, "arn": f"arn:cloud:{resource_type}:{region}:{obj_id}"}
    match resource_type:
        case "elastic_ip":
            out["public_ip"] = f"203.0.113.{seq % 254 + 1}"
        case "nat_gateway":
            out["private_ip"] = f"10.255.{seq // 254 % 254}.{seq % 254 + 1}"
        case "k8s_cluster":
            out["endpoint"] = f"https://{obj_id}.k8s.{region}.cloud.internal"
            out["certificate_authority"] = f"ca-{obj_id}"
        case "db_cluster":
            ident = attrs.get("cluster_identifier", obj_id)
            out["endpoint"] = f"{ident}.cluster.{region}.db.cloud.internal"
            out["reader_endpoint"] = f"{ident}.cluster-ro.{region}.db.cloud.internal"
            out["port"] = attrs.get("port") or 5432
        case "db_instance":
            out["endpoint"] = f"{attrs.get('identifier', obj_id)}.{region}.db.cloud.internal"
        case "bucket":
            bucket = attrs.get("bucket", obj_id)
            out["bucket_domain_name"] = f"{bucket}.storage.{region}.cloud.internal"
    return out


@dataclass
class _Fault:
    operation: Operation
    error: Exception
    resource_type: str | None
    times: int | None
    when: Callable[[dict[str, Any]], bool] | None

    def matches(self, operation: str, resource_type: str, attrs: dict[str, Any]) -> bool:
        if self.operation != operation:
            return False
        if self.resource_type is not None and self.resource_type != resource_type:
            return False
        return self.when is None or self.when(attrs)


class InMemoryCloud:
    """Thread-safe simulated cloud.

    Attributes:
        calls: Log of ``(operation, resource_type, remote_id)`` for every
            mutating call, in the order they happened.
    """

    def __init__(self, *, region: str = "local-1", path: Path | None = None) -> None:
        self._region = region
        self._path = path
        self._lock = threading.RLock()
        self._objects: dict[str, dict[str, dict[str, Any]]] = {}
        self._tokens: dict[str, str] = {}
        self._seq = 0
        self._faults: list[_Fault] = []
        self.calls: list[tuple[str, str, str]] = []
        if path is not None and path.exists():
            self._load(path)

    # ── persistence ────────────────────────────────────────────────

    def _load(self, path: Path) -> None:
        raw = json.loads(path.read_text(encoding="utf-8"))
        self._objects = raw.get("objects", {})
        self._tokens = raw.get("tokens", {})
        self._seq = raw.get("seq", 0)
        logger.debug("Loaded simulated cloud from %s", path)

    def _persist(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"objects": self._objects, "tokens": self._tokens, "seq": self._seq}
        content = json.dumps(payload, indent=2, sort_keys=True) + "\n"
        self._path.write_text(content, encoding="utf-8")

    # ── fault injection ────────────────────────────────────────────

    def inject_fault(
        self,
        operation: Operation,
        error: Exception,
        *,
        resource_type: str | None = None,
        times: int | None = 1,
        when: Callable[[dict[str, Any]], bool] | None = None,
    ) -> None:
        """Make matching calls raise *error*.

        ``times=None`` keeps the fault active forever. *when* receives the
        desired attributes (create) or the stored object (other operations).
        """
        with self._lock:
            self._faults.append(_Fault(operation, error, resource_type, times, when))

    def _check_faults(self, operation: str, resource_type: str, attrs: dict[str, Any]) -> None:
        with self._lock:
            for fault in self._faults:
                if not fault.matches(operation, resource_type, attrs):
                    continue
                if fault.times is not None:
                    fault.times -= 1
                    if fault.times <= 0:
                        self._faults.remove(fault)
                raise fault.error

    # ── inspection helpers ─────────────────────────────────────────

    def objects(self, resource_type: str) -> dict[str, dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._objects.get(resource_type, {}))

    def mutate(self, resource_type: str, remote_id: str, **changes: Any) -> None:
        """Change an object out-of-band, simulating drift."""
        with self._lock:
            self._objects[resource_type][remote_id].update(changes)
            self._persist()

    def forget(self, resource_type: str, remote_id: str) -> None:
        """Remove an object out-of-band, simulating deletion outside the engine."""
        with self._lock:
            self._objects.get(resource_type, {}).pop(remote_id, None)
            self._persist()

    # ── CloudClient ────────────────────────────────────────────────

    def create(
        self,
        resource_type: str,
        attributes: dict[str, Any],
        *,
        idempotency_token: str,
        timeout: float,
    ) -> dict[str, Any]:
        _ = timeout
        self._check_faults("create", resource_type, attributes)
        with self._lock:
            existing = self._tokens.get(idempotency_token)
            if existing is not None and existing in self._objects.get(resource_type, {}):
                logger.debug("Idempotent replay of create %s (%s)", resource_type, existing)
                return copy.deepcopy(self._objects[resource_type][existing])

            self._seq += 1
            prefix = _ID_PREFIXES.get(resource_type, resource_type.replace("_", "-"))
            obj_id = f"{prefix}-{self._seq:08x}"
            obj = copy.deepcopy(attributes)
            obj.update(_computed_outputs(resource_type, obj_id, obj, self._region, self._seq))
            self._objects.setdefault(resource_type, {})[obj_id] = obj
            self._tokens[idempotency_token] = obj_id
            self.calls.append(("create", resource_type, obj_id))
            self._persist()
            return copy.deepcopy(obj)

    def read(self, resource_type: str, remote_id: str, *, timeout: float) -> dict[str, Any] | None:
        _ = timeout
        with self._lock:
            obj = self._objects.get(resource_type, {}).get(remote_id)
        if obj is None:
            return None
        self._check_faults("read", resource_type, obj)
        return copy.deepcopy(obj)

    def update(
        self,
        resource_type: str,
        remote_id: str,
        changes: dict[str, Any],
        *,
        timeout: float,
    ) -> dict[str, Any]:
        _ = timeout
        with self._lock:
            obj = self._objects.get(resource_type, {}).get(remote_id)
        if obj is None:
            raise RemoteTerminalError(f"{resource_type} {remote_id} not found", status=404)
        self._check_faults("update", resource_type, obj)
        with self._lock:
            for key, value in changes.items():
                if value is None:
                    obj.pop(key, None)
                else:
                    obj[key] = copy.deepcopy(value)
            self.calls.append(("update", resource_type, remote_id))
            self._persist()
            return copy.deepcopy(obj)

    def delete(self, resource_type: str, remote_id: str, *, timeout: float) -> None:
        _ = timeout
        with self._lock:
            obj = self._objects.get(resource_type, {}).get(remote_id)
        if obj is None:
            return
        self._check_faults("delete", resource_type, obj)
        with self._lock:
            self._objects[resource_type].pop(remote_id, None)
            self.calls.append(("delete", resource_type, remote_id))
            self._persist()
