"""Engine-facing handler interfaces."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from cloud_provisioner.engine.references import (
    format_address,
    iter_expressions,
    parse_reference,
)
from cloud_provisioner.engine.retry import call_with_retry
from cloud_provisioner.engine.settings import EngineSettings
from cloud_provisioner.resources.base import Resource
from cloud_provisioner.resources.network import SubnetResource, VpcResource

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from cloud_provisioner.core import CloudProvider
    from cloud_provisioner.core.state import State, StateEntry
    from cloud_provisioner.engine.resolver import DesiredInstance

R = TypeVar("R", bound=Resource)
T = TypeVar("T")


@dataclass(frozen=True)
class EngineContext:
    """Context passed to handlers."""

    provider: CloudProvider
    workspace: str
    settings: EngineSettings = EngineSettings()

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke a client method with the run timeout under the retry policy."""
        return call_with_retry(
            self.settings.retry, fn, *args, timeout=self.settings.timeout, **kwargs
        )


class PlanContext:
    """Merged view of desired instances and recorded entries for plan-level validation.

    Lookups go by instance address; desired values take precedence over
    state. A desired value that still holds a reference expression is
    reported as ``None``, as it cannot be checked before apply.
    """

    def __init__(self, instances: Mapping[str, DesiredInstance], state: State) -> None:
        self._desired = instances
        self._state = state

    def address_exists(self, address: str) -> bool:
        return address in self._desired or address in self._state.resources

    def get_attr(self, address: str, attr: str) -> Any:
        instance = self._desired.get(address)
        if instance is not None:
            value = instance.attributes.get(attr)
            if any(True for _ in iter_expressions(value)):
                return None
            return value
        entry = self._state.resources.get(address)
        return entry.attributes.get(attr) if entry is not None else None

    def referenced_address(self, value: Any) -> str | None:
        """Target instance of a value that is exactly one non-splat reference."""
        exprs = list(iter_expressions(value))
        if len(exprs) != 1 or not isinstance(value, str):
            return None
        if not (value.startswith("${") and value.endswith("}")):
            return None
        ref = parse_reference(exprs[0][1])
        if ref is None or ref.splat:
            return None
        return format_address(ref.resource_type, ref.name, ref.key)


class ResourceHandler(Generic[R]):
    """Base class for resource handlers.

    Handlers translate planned changes into remote API calls. The default
    implementation maps each operation onto the generic CRUD endpoint of the
    resource type; subclass to add validation or type-specific behaviour.
    """

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        """Single-resource validation. No cross-resource context needed.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired
        return []

    def validate_plan(
        self,
        ctx: EngineContext,
        instance: DesiredInstance,
        plan_ctx: PlanContext,
    ) -> list[str]:
        """Cross-resource validation with access to all instances.

        Return list of error messages (empty = valid).
        """
        _ = ctx, instance, plan_ctx
        return []

    def read(self, ctx: EngineContext, prior: StateEntry) -> dict[str, Any] | None:
        """Read the object back. Return None if it no longer exists."""
        return ctx.call(ctx.provider.client.read, prior.resource_type, prior.remote_id)

    def create(
        self,
        ctx: EngineContext,
        resource_type: str,
        attributes: dict[str, Any],
        *,
        idempotency_token: str,
    ) -> dict[str, Any]:
        """Create the object. Return the attributes reported by the API."""
        return ctx.call(
            ctx.provider.client.create,
            resource_type,
            attributes,
            idempotency_token=idempotency_token,
        )

    def update(
        self, ctx: EngineContext, prior: StateEntry, changes: dict[str, Any]
    ) -> dict[str, Any]:
        """Send only the changed attributes. Return the attributes reported by the API."""
        return ctx.call(
            ctx.provider.client.update, prior.resource_type, prior.remote_id, changes
        )

    def delete(self, ctx: EngineContext, resource_type: str, remote_id: str) -> None:
        ctx.call(ctx.provider.client.delete, resource_type, remote_id)


def _network_error(value: Any, label: str) -> str | None:
    if not isinstance(value, str) or "${" in value:
        return None
    try:
        ipaddress.ip_network(value)
    except ValueError as e:
        return f"{label}: invalid CIDR block '{value}' ({e})"
    return None


class VpcHandler(ResourceHandler[VpcResource]):
    def validate(self, ctx: EngineContext, desired: VpcResource) -> list[str]:
        _ = ctx
        err = _network_error(desired.cidr_block, desired.address)
        return [err] if err else []


class SubnetHandler(ResourceHandler[SubnetResource]):
    """Subnet CIDRs must be valid and lie inside the owning VPC's CIDR."""

    def validate(self, ctx: EngineContext, desired: SubnetResource) -> list[str]:
        _ = ctx
        err = _network_error(desired.cidr_block, desired.address)
        return [err] if err else []

    def validate_plan(
        self,
        ctx: EngineContext,
        instance: DesiredInstance,
        plan_ctx: PlanContext,
    ) -> list[str]:
        _ = ctx
        cidr = instance.attributes.get("cidr_block")
        vpc_address = plan_ctx.referenced_address(instance.attributes.get("vpc_id"))
        if vpc_address is None or not isinstance(cidr, str) or "${" in cidr:
            return []
        err = _network_error(cidr, instance.address)
        if err:
            return [err]
        vpc_cidr = plan_ctx.get_attr(vpc_address, "cidr_block")
        if not isinstance(vpc_cidr, str) or _network_error(vpc_cidr, vpc_address):
            return []

        subnet_net = ipaddress.ip_network(cidr)
        vpc_net = ipaddress.ip_network(vpc_cidr)
        if subnet_net.version != vpc_net.version or not subnet_net.subnet_of(vpc_net):
            return [f"{instance.address}: CIDR {cidr} is not within {vpc_address} CIDR {vpc_cidr}"]
        return []
