"""Desired-vs-recorded classification of instances."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cloud_provisioner.core.state import compute_attributes_hash
from cloud_provisioner.engine.errors import PreventDestroyError
from cloud_provisioner.engine.references import contains_unknown
from cloud_provisioner.engine.types import Action
from cloud_provisioner.resources.markers import CompareStrategy

if TYPE_CHECKING:
    from cloud_provisioner.core.state import StateEntry
    from cloud_provisioner.engine.registry import ResourceTypeRegistry

logger = logging.getLogger(__name__)


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Check whether a desired value differs from the prior (stored) value.

    A desired value containing an ``Unknown`` always differs. Otherwise the
    comparison depends on *strategy*:

    - ``strategy="set"``:
      - If both values are lists, they are compared as sets (order-insensitive).
        Elements may be dicts; they are compared by canonical JSON.
      - Other types fall back to strict equality.
    - ``strategy="exact"``:
      - Values are compared with strict equality.
    - ``strategy=None`` or ``"partial"``:
      - For dict values, only keys present in *desired* are compared.
      - Extra keys present only in *prior* (provider-added defaults) are ignored.
      - Non-dict values use strict equality.
    """
    if contains_unknown(desired):
        return True

    if strategy == "set":
        if isinstance(desired, list) and isinstance(prior, list):
            return {_canonical(v) for v in desired} != {_canonical(v) for v in prior}
        return desired != prior

    if strategy == "exact":
        return desired != prior

    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(values_differ(v, prior.get(k), strategy="partial") for k, v in desired.items())
    return desired != prior


@dataclass(frozen=True)
class DiffResult:
    action: Action
    diff: dict[str, dict[str, Any]] = field(default_factory=dict)
    provisional: bool = False
    config_hash: str | None = None


class DiffEngine:
    """Classifies instances as create / update / replace / no-op.

    Destroys are decided by the caller (an entry with no desired instance);
    :meth:`check_destroy` guards them against ``prevent_destroy``.
    """

    def __init__(self, registry: ResourceTypeRegistry) -> None:
        self._registry = registry

    def classify(
        self,
        address: str,
        resource_type: str,
        desired: dict[str, Any],
        entry: StateEntry | None,
        *,
        ignore_changes: Iterable[str] = (),
        prevent_destroy: bool = False,
    ) -> DiffResult:
        provisional = contains_unknown(desired)
        config_hash = None if provisional else compute_attributes_hash(desired)

        if entry is None:
            logger.debug("Classified %s as create", address)
            return DiffResult(Action.CREATE, provisional=provisional, config_hash=config_hash)

        registration = self._registry.get(resource_type)
        strategies = registration.compare
        ignored = set(ignore_changes)
        prior = entry.attributes

        keys = (set(desired) | set(entry.config)) - ignored
        diff: dict[str, dict[str, Any]] = {}
        force_new = registration.force_new
        for key in sorted(keys):
            to = desired.get(key)
            if values_differ(to, prior.get(key), strategy=strategies.get(key)):
                diff[key] = {
                    "from": prior.get(key),
                    "to": to,
                    "forces_replacement": key in force_new,
                }

        if not diff:
            if config_hash == entry.config_hash:
                logger.debug("Classified %s as no-op", address)
            else:
                logger.debug("Classified %s as no-op (config changed without remote effect)", address)
            return DiffResult(Action.NOOP, config_hash=config_hash)

        replace = any(d["forces_replacement"] for d in diff.values())
        action = Action.REPLACE if replace else Action.UPDATE
        if action == Action.REPLACE and prevent_destroy:
            raise PreventDestroyError(address, "replace")
        logger.debug(
            "Classified %s as %s (%s)%s",
            address,
            action.value,
            ", ".join(diff),
            " provisional" if provisional else "",
        )
        return DiffResult(action, diff=diff, provisional=provisional, config_hash=config_hash)

    @staticmethod
    def check_destroy(address: str, *, prevent_destroy: bool) -> None:
        if prevent_destroy:
            raise PreventDestroyError(address, "destroy")
