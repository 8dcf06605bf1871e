from typing import Annotated, ClassVar

import pytest

from cloud_provisioner.config.registry import default_registry
from cloud_provisioner.engine.errors import UnknownResourceTypeError
from cloud_provisioner.engine.handlers import ResourceHandler, SubnetHandler
from cloud_provisioner.engine.registry import ResourceTypeRegistry
from cloud_provisioner.resources.base import Resource
from cloud_provisioner.resources.markers import Compare, ForceNew


class DummyResource(Resource):
    resource_type: ClassVar[str] = "dummy"
    plan_priority: ClassVar[int] = 5

    zone: Annotated[str, ForceNew()]
    members: Annotated[list[str], Compare("set")] = []
    size: int = 1


class BrokenResource(Resource):
    resource_type: ClassVar[str] = "broken"

    id: Annotated[str, ForceNew()]


class DummyHandler(ResourceHandler["DummyResource"]):
    pass


def test_registry_register_and_get() -> None:
    registry = ResourceTypeRegistry()
    handler = DummyHandler()

    registry.register(DummyResource, handler)
    reg = registry.get("dummy")

    assert reg.resource_type == "dummy"
    assert reg.model is DummyResource
    assert reg.handler is handler


def test_registration_derives_update_policy() -> None:
    registry = ResourceTypeRegistry()
    registry.register(DummyResource, DummyHandler())
    reg = registry.get("dummy")

    assert reg.force_new == {"zone"}
    assert reg.compare == {"members": "set", "tags": "exact"}
    assert {"zone", "members", "size", "id", "arn"} <= reg.attributes
    assert registry.priority("dummy") == 5


def test_registry_duplicate_registration() -> None:
    registry = ResourceTypeRegistry()
    registry.register(DummyResource, DummyHandler())
    with pytest.raises(ValueError, match="already registered"):
        registry.register(DummyResource, DummyHandler())


def test_computed_attribute_cannot_force_new() -> None:
    with pytest.raises(ValueError, match="computed attributes cannot force replacement"):
        ResourceTypeRegistry().register(BrokenResource, DummyHandler())


def test_registry_unknown_type() -> None:
    registry = ResourceTypeRegistry()
    with pytest.raises(UnknownResourceTypeError):
        registry.get("missing")
    assert "missing" not in registry


def test_default_registry_covers_every_type() -> None:
    registry = default_registry()
    assert registry.resource_types() == [
        "bucket",
        "db_cluster",
        "db_instance",
        "db_subnet_group",
        "elastic_ip",
        "iam_role",
        "iam_role_policy_attachment",
        "internet_gateway",
        "k8s_cluster",
        "nat_gateway",
        "node_group",
        "route_table",
        "route_table_association",
        "security_group",
        "subnet",
        "vpc",
    ]
    assert isinstance(registry.get("subnet").handler, SubnetHandler)
    assert [r.resource_type for r in registry] == registry.resource_types()


def test_db_cluster_port_is_configurable_and_forces_new() -> None:
    reg = default_registry().get("db_cluster")

    assert "port" in reg.force_new
    assert "port" not in reg.model.computed
    assert "port" in reg.attributes
