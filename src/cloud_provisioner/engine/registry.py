"""Resource type registry: model, handler and static update policy per type."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cloud_provisioner.engine.errors import UnknownResourceTypeError
from cloud_provisioner.resources.markers import collect_compare_strategies

if TYPE_CHECKING:
    from collections.abc import Iterator

    from cloud_provisioner.engine.handlers import ResourceHandler
    from cloud_provisioner.resources.base import Resource
    from cloud_provisioner.resources.markers import CompareStrategy


@dataclass(frozen=True)
class ResourceTypeRegistration:
    """Everything the engine knows about one resource type.

    The policy fields are derived from the model's field markers once, at
    registration, and never change afterwards.

    Attributes:
        force_new: Attributes whose change requires replacement
        compare: Per-attribute comparison strategy (default ``partial``)
        attributes: Attribute names other instances may reference
        priority: Tie-breaker among instances with no ordering constraint
    """

    resource_type: str
    model: type[Resource]
    handler: ResourceHandler[Any]
    force_new: frozenset[str] = field(default_factory=frozenset)
    compare: dict[str, CompareStrategy] = field(default_factory=dict)
    attributes: frozenset[str] = field(default_factory=frozenset)
    priority: int = 100


class ResourceTypeRegistry:
    """Registry mapping resource_type -> registration."""

    def __init__(self) -> None:
        self._registrations: dict[str, ResourceTypeRegistration] = {}

    def register(self, model: type[Resource], handler: ResourceHandler[Any]) -> None:
        resource_type = getattr(model, "resource_type", None)
        if not isinstance(resource_type, str) or not resource_type:
            raise ValueError("Resource model must define a non-empty classvar `resource_type`")
        if resource_type in self._registrations:
            raise ValueError(f"Resource type already registered: {resource_type}")

        force_new = model.force_new_fields()
        computed_force_new = force_new & model.computed
        if computed_force_new:
            raise ValueError(
                f"{resource_type}: computed attributes cannot force replacement: "
                f"{', '.join(sorted(computed_force_new))}"
            )

        self._registrations[resource_type] = ResourceTypeRegistration(
            resource_type=resource_type,
            model=model,
            handler=handler,
            force_new=force_new,
            compare=collect_compare_strategies(model),
            attributes=model.attribute_names(),
            priority=model.plan_priority,
        )

    def get(self, resource_type: str) -> ResourceTypeRegistration:
        try:
            return self._registrations[resource_type]
        except KeyError as e:
            raise UnknownResourceTypeError(resource_type) from e

    def priority(self, resource_type: str) -> int:
        return self.get(resource_type).priority

    def resource_types(self) -> list[str]:
        return sorted(self._registrations)

    def __iter__(self) -> Iterator[ResourceTypeRegistration]:
        return iter(self._registrations[t] for t in self.resource_types())

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._registrations
