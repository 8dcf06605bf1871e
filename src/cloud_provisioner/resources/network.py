"""Networking resource models: VPC, subnets, gateways, routing, security groups."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cloud_provisioner.resources.base import RefList, ReplacementPolicy, Resource
from cloud_provisioner.resources.markers import Compare, ForceNew


class VpcResource(Resource):
    """A virtual private cloud: the network boundary everything else lives in."""

    resource_type: ClassVar[str] = "vpc"
    plan_priority: ClassVar[int] = 10

    type: Literal["vpc"] = "vpc"
    cidr_block: Annotated[str, ForceNew()]
    instance_tenancy: Annotated[Literal["default", "dedicated"], ForceNew()] = "default"
    enable_dns_support: bool = True
    enable_dns_hostnames: bool = False


class SubnetResource(Resource):
    """A subnet carved out of a VPC's address space."""

    resource_type: ClassVar[str] = "subnet"
    plan_priority: ClassVar[int] = 20

    type: Literal["subnet"] = "subnet"
    vpc_id: Annotated[str, ForceNew()]
    cidr_block: Annotated[str, ForceNew()]
    availability_zone: Annotated[str | None, ForceNew()] = None
    map_public_ip_on_launch: bool = False


class InternetGatewayResource(Resource):
    """Internet gateway attached to a VPC. Re-attaching is done in place."""

    resource_type: ClassVar[str] = "internet_gateway"
    plan_priority: ClassVar[int] = 20

    type: Literal["internet_gateway"] = "internet_gateway"
    vpc_id: str


class ElasticIpResource(Resource):
    """A static public address, typically allocated for a NAT gateway."""

    resource_type: ClassVar[str] = "elastic_ip"
    computed: ClassVar[frozenset[str]] = frozenset({"id", "arn", "public_ip"})

    type: Literal["elastic_ip"] = "elastic_ip"
    domain: Annotated[Literal["vpc", "standard"], ForceNew()] = "vpc"


class NatGatewayResource(Resource):
    """NAT gateway giving private subnets outbound connectivity."""

    resource_type: ClassVar[str] = "nat_gateway"
    computed: ClassVar[frozenset[str]] = frozenset({"id", "arn", "private_ip"})

    type: Literal["nat_gateway"] = "nat_gateway"
    subnet_id: Annotated[str, ForceNew()]
    allocation_id: Annotated[str | None, ForceNew()] = None
    connectivity_type: Annotated[Literal["public", "private"], ForceNew()] = "public"

    @model_validator(mode="after")
    def _check_allocation(self) -> Self:
        if self.connectivity_type == "public" and self.allocation_id is None:
            raise ValueError("'allocation_id' is required for a public NAT gateway")
        if self.connectivity_type == "private" and self.allocation_id is not None:
            raise ValueError("'allocation_id' cannot be used with a private NAT gateway")
        return self


class Route(BaseModel):
    """A single route. Exactly one target must be set."""

    model_config = ConfigDict(extra="forbid")

    cidr_block: str
    gateway_id: str | None = None
    nat_gateway_id: str | None = None

    @model_validator(mode="after")
    def _check_target(self) -> Self:
        if (self.gateway_id is None) == (self.nat_gateway_id is None):
            raise ValueError("a route needs exactly one of 'gateway_id' or 'nat_gateway_id'")
        return self


class RouteTableResource(Resource):
    """Route table; routes are compared as an unordered set."""

    resource_type: ClassVar[str] = "route_table"

    type: Literal["route_table"] = "route_table"
    vpc_id: Annotated[str, ForceNew()]
    routes: Annotated[list[Route], Compare("set")] = Field(default_factory=list)


class RouteTableAssociationResource(Resource):
    """Associates a subnet with a route table."""

    resource_type: ClassVar[str] = "route_table_association"

    type: Literal["route_table_association"] = "route_table_association"
    subnet_id: Annotated[str, ForceNew()]
    route_table_id: str


class SecurityGroupRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    protocol: Literal["tcp", "udp", "icmp", "-1"] = "tcp"
    from_port: int = Field(ge=-1, le=65535)
    to_port: int = Field(ge=-1, le=65535)
    cidr_blocks: RefList = Field(default_factory=list)
    security_groups: RefList = Field(default_factory=list)
    description: str = ""


class SecurityGroupResource(Resource):
    """Stateful firewall attached to network interfaces.

    Group names are unique per VPC, so a replacement must destroy the old
    group before creating the new one.
    """

    resource_type: ClassVar[str] = "security_group"
    replacement_policy: ClassVar[ReplacementPolicy] = "destroy_before_create"

    type: Literal["security_group"] = "security_group"
    group_name: Annotated[str, ForceNew()]
    description: Annotated[str, ForceNew()] = "Managed by cloud-provisioner"
    vpc_id: Annotated[str, ForceNew()]
    ingress: Annotated[list[SecurityGroupRule], Compare("set")] = Field(default_factory=list)
    egress: Annotated[list[SecurityGroupRule], Compare("set")] = Field(default_factory=list)
