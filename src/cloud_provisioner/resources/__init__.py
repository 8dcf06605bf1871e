"""Cloud resource definitions."""

from cloud_provisioner.resources.base import Lifecycle, Resource
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
    Route,
    RouteTableAssociationResource,
    RouteTableResource,
    SecurityGroupResource,
    SecurityGroupRule,
    SubnetResource,
    VpcResource,
)
from cloud_provisioner.resources.storage import BucketResource

__all__ = [
    "BucketResource",
    "DbClusterResource",
    "DbInstanceResource",
    "DbSubnetGroupResource",
    "ElasticIpResource",
    "IamRolePolicyAttachmentResource",
    "IamRoleResource",
    "InternetGatewayResource",
    "K8sClusterResource",
    "Lifecycle",
    "NatGatewayResource",
    "NodeGroupResource",
    "Resource",
    "Route",
    "RouteTableAssociationResource",
    "RouteTableResource",
    "SecurityGroupResource",
    "SecurityGroupRule",
    "SubnetResource",
    "VpcResource",
]
