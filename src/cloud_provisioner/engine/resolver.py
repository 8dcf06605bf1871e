"""Instance expansion and reference resolution."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cloud_provisioner.engine.errors import (
    DuplicateAddressError,
    UnresolvedReferenceError,
)
from cloud_provisioner.engine.references import (
    KEEP,
    RESERVED_NAMESPACES,
    ReferenceExpr,
    Unknown,
    format_address,
    iter_expressions,
    parse_reference,
    substitute,
)

if TYPE_CHECKING:
    from cloud_provisioner.engine.registry import ResourceTypeRegistry
    from cloud_provisioner.resources.base import Resource

logger = logging.getLogger(__name__)

# (instance address, attribute path) -> value, possibly Unknown
AttributeLookup = Callable[[str, str], Any]


@dataclass(frozen=True)
class DesiredInstance:
    """One concrete occurrence of a declared resource.

    ``attributes`` has ``count``/``each``/``var`` expressions substituted;
    references to other instances are still in place.
    """

    address: str
    resource: Resource
    key: int | str | None
    attributes: dict[str, Any]
    depends_on: tuple[str, ...] = ()

    @property
    def resource_type(self) -> str:
        return self.resource.resource_type

    @property
    def name(self) -> str:
        return self.resource.name

    @property
    def resource_address(self) -> str:
        return self.resource.address


class InstanceSet(dict[str, DesiredInstance]):
    """Expanded instances keyed by address.

    Also remembers every declared resource, including ones that expanded to
    zero instances, so references to them can be told apart from typos.
    """

    def __init__(self, resources: Mapping[str, Resource]) -> None:
        super().__init__()
        self.resources: dict[str, Resource] = dict(resources)
        self._by_resource: dict[str, list[str]] = {addr: [] for addr in resources}

    def add(self, instance: DesiredInstance) -> None:
        if instance.address in self:
            raise DuplicateAddressError(instance.address)
        self[instance.address] = instance
        self._by_resource[instance.resource_address].append(instance.address)

    def instances_of(self, resource_address: str) -> list[str]:
        """Instance addresses of a resource, in expansion order."""
        return list(self._by_resource.get(resource_address, []))


@dataclass
class _Keys:
    count_index: int | None = None
    each_key: str | None = None
    each_value: Any = None
    has_each: bool = False
    variables: Mapping[str, Any] = field(default_factory=dict)


def _cardinality(resource: Resource) -> list[tuple[int | str | None, _Keys]]:
    if resource.count is not None:
        return [(i, _Keys(count_index=i)) for i in range(resource.count)]
    if isinstance(resource.for_each, dict):
        return [
            (k, _Keys(each_key=k, each_value=v, has_each=True))
            for k, v in resource.for_each.items()
        ]
    if isinstance(resource.for_each, list):
        return [(k, _Keys(each_key=k, each_value=k, has_each=True)) for k in resource.for_each]
    return [(None, _Keys())]


def _expansion_lookup(address: str, keys: _Keys) -> Callable[[str, str], Any]:
    def lookup(expression: str, path: str) -> Any:
        head, _, rest = expression.partition(".")
        if head not in RESERVED_NAMESPACES:
            if parse_reference(expression) is None:
                raise UnresolvedReferenceError(address, path, expression, "malformed expression")
            return KEEP
        if head == "var":
            if rest not in keys.variables:
                raise UnresolvedReferenceError(address, path, expression, "unknown variable")
            return keys.variables[rest]
        if head == "count":
            if rest != "index":
                raise UnresolvedReferenceError(address, path, expression, "malformed expression")
            if keys.count_index is None:
                raise UnresolvedReferenceError(
                    address, path, expression, "'count.index' used without 'count'"
                )
            return keys.count_index
        if rest not in ("key", "value"):
            raise UnresolvedReferenceError(address, path, expression, "malformed expression")
        if not keys.has_each:
            raise UnresolvedReferenceError(
                address, path, expression, f"'each.{rest}' used without 'for_each'"
            )
        return keys.each_key if rest == "key" else keys.each_value

    return lookup


def expand_instances(
    resources: Sequence[Resource],
    variables: Mapping[str, Any],
    registry: ResourceTypeRegistry,
) -> InstanceSet:
    """Expand declared resources into concrete instances.

    Validates resource types, expands ``count``/``for_each`` and substitutes
    ``count``, ``each`` and ``var`` expressions.

    Raises:
        UnknownResourceTypeError: A resource type has no registration.
        DuplicateAddressError: Two resources or instances share an address.
        UnresolvedReferenceError: An expression is malformed or names an
            unknown variable.
    """
    declared: dict[str, Resource] = {}
    for r in resources:
        registry.get(r.resource_type)
        if r.address in declared:
            raise DuplicateAddressError(r.address)
        declared[r.address] = r

    instances = InstanceSet(declared)
    for r in resources:
        attrs = r.attributes()
        for key, keys in _cardinality(r):
            keys.variables = variables
            address = format_address(r.resource_type, r.name, key)
            resolved = substitute(attrs, _expansion_lookup(address, keys))
            instances.add(
                DesiredInstance(
                    address=address,
                    resource=r,
                    key=key,
                    attributes=resolved,
                    depends_on=tuple(r.depends_on),
                )
            )
    logger.debug("Expanded %d resources into %d instances", len(declared), len(instances))
    return instances


def _reference_targets(
    ref: ReferenceExpr,
    instances: InstanceSet,
    registry: ResourceTypeRegistry,
    *,
    address: str,
    path: str,
) -> list[str]:
    def fail(reason: str) -> UnresolvedReferenceError:
        return UnresolvedReferenceError(address, path, ref.expression, reason)

    target = instances.resources.get(ref.resource_address)
    if target is None:
        raise fail(f"resource {ref.resource_address} is not declared")

    head = ref.attribute.split(".", 1)[0]
    if head not in registry.get(ref.resource_type).attributes:
        raise fail(f"type '{ref.resource_type}' has no attribute '{head}'")

    has_cardinality = target.count is not None or target.for_each is not None
    if not ref.has_index:
        if has_cardinality:
            raise fail(f"{ref.resource_address} has count/for_each; an index is required")
        return [ref.resource_address]
    if not has_cardinality:
        raise fail(f"{ref.resource_address} has no count/for_each and cannot be indexed")
    if ref.splat:
        return instances.instances_of(ref.resource_address)

    if isinstance(ref.key, int) and target.count is None:
        raise fail(f"{ref.resource_address} uses for_each; index it with a key")
    if isinstance(ref.key, str) and target.for_each is None:
        raise fail(f"{ref.resource_address} uses count; index it with a number")
    instance_address = format_address(ref.resource_type, ref.name, ref.key)
    if instance_address not in instances:
        reason = "index out of range" if isinstance(ref.key, int) else "unknown key"
        raise fail(reason)
    return [instance_address]


def collect_references(
    value: Any,
    instances: InstanceSet,
    registry: ResourceTypeRegistry,
    *,
    address: str,
) -> dict[str, list[str]]:
    """Map every reference expression in *value* to the instances it targets."""
    refs: dict[str, list[str]] = {}
    for path, expression in iter_expressions(value):
        ref = parse_reference(expression)
        if ref is None:
            raise UnresolvedReferenceError(address, path, expression, "malformed expression")
        if expression not in refs:
            refs[expression] = _reference_targets(
                ref, instances, registry, address=address, path=path
            )
    return refs


def _hint_targets(instance: DesiredInstance, instances: InstanceSet, hint: str) -> list[str]:
    if hint in instances.resources:
        return instances.instances_of(hint)
    if hint in instances:
        return [hint]
    raise UnresolvedReferenceError(instance.address, "depends_on", hint, "unknown address")


def build_dependencies(
    instances: InstanceSet,
    registry: ResourceTypeRegistry,
) -> dict[str, list[str]]:
    """Instance dependency edges from references plus ``depends_on`` hints.

    A ``depends_on`` entry may name a whole resource (every instance of it)
    or a single instance.
    """
    deps: dict[str, list[str]] = {}
    for address, instance in instances.items():
        targets: list[str] = []
        refs = collect_references(instance.attributes, instances, registry, address=address)
        for addrs in refs.values():
            targets.extend(addrs)
        for hint in instance.depends_on:
            targets.extend(_hint_targets(instance, instances, hint))
        deps[address] = sorted(set(targets))
    return deps


def dig(value: Any, path: str) -> Any:
    """Follow a dotted *path* into nested dicts; missing keys yield ``None``."""
    for part in path.split("."):
        if isinstance(value, Unknown):
            return value
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def resolve_attributes(
    attributes: Mapping[str, Any],
    lookup: AttributeLookup,
    references: Mapping[str, Sequence[str]],
    *,
    address: str = "",
) -> dict[str, Any]:
    """Substitute reference expressions in an instance's attributes.

    *references* maps each expression to its target instance addresses (see
    :func:`collect_references`). ``lookup(address, attribute_path)`` returns
    the target's value, or an :class:`Unknown` when it is not known yet. A
    single reference to an unknown value becomes ``Unknown(expression)``.
    """

    def _lookup(expression: str, path: str) -> Any:
        ref = parse_reference(expression)
        if ref is None or expression not in references:
            raise UnresolvedReferenceError(address, path, expression, "unresolved reference")
        targets = references[expression]
        if ref.splat:
            return [lookup(t, ref.attribute) for t in targets]
        value = lookup(targets[0], ref.attribute)
        return Unknown(expression) if isinstance(value, Unknown) else value

    return substitute(dict(attributes), _lookup)
