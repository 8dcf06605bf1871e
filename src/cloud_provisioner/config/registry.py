"""Default resource type registry factory."""

from __future__ import annotations

from typing import Any

from cloud_provisioner.engine.handlers import ResourceHandler, SubnetHandler, VpcHandler
from cloud_provisioner.engine.registry import ResourceTypeRegistry
from cloud_provisioner.resources.cluster import K8sClusterResource, NodeGroupResource
from cloud_provisioner.resources.database import (
    DbClusterResource,
    DbInstanceResource,
    DbSubnetGroupResource,
)
from cloud_provisioner.resources.iam import IamRolePolicyAttachmentResource, IamRoleResource
from cloud_provisioner.resources.network import (
    ElasticIpResource,
    InternetGatewayResource,
    NatGatewayResource,
    RouteTableAssociationResource,
    RouteTableResource,
    SecurityGroupResource,
    SubnetResource,
    VpcResource,
)
from cloud_provisioner.resources.storage import BucketResource


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource types and handlers."""
    registry = ResourceTypeRegistry()

    registry.register(VpcResource, VpcHandler())
    registry.register(SubnetResource, SubnetHandler())

    generic: ResourceHandler[Any] = ResourceHandler()
    for model in (
        InternetGatewayResource,
        ElasticIpResource,
        NatGatewayResource,
        RouteTableResource,
        RouteTableAssociationResource,
        SecurityGroupResource,
        IamRoleResource,
        IamRolePolicyAttachmentResource,
        K8sClusterResource,
        NodeGroupResource,
        DbSubnetGroupResource,
        DbClusterResource,
        DbInstanceResource,
        BucketResource,
    ):
        registry.register(model, generic)

    return registry
