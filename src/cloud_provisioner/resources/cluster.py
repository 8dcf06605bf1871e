"""Managed Kubernetes cluster resource models."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import Field, model_validator

from cloud_provisioner.resources.base import RefList, ReplacementPolicy, Resource
from cloud_provisioner.resources.markers import ForceNew


class K8sClusterResource(Resource):
    """Managed Kubernetes control plane.

    The cluster name is unique per region: replacement destroys first.
    """

    resource_type: ClassVar[str] = "k8s_cluster"
    computed: ClassVar[frozenset[str]] = frozenset(
        {"id", "arn", "endpoint", "certificate_authority"}
    )
    replacement_policy: ClassVar[ReplacementPolicy] = "destroy_before_create"

    type: Literal["k8s_cluster"] = "k8s_cluster"
    cluster_name: Annotated[str, ForceNew()]
    role_arn: Annotated[str, ForceNew()]
    version: str = "1.29"
    subnet_ids: Annotated[RefList, ForceNew()]
    security_group_ids: RefList = Field(default_factory=list)
    endpoint_public_access: bool = True
    endpoint_private_access: bool = True


class NodeGroupResource(Resource):
    """A pool of worker nodes. Scaling is updated in place."""

    resource_type: ClassVar[str] = "node_group"

    type: Literal["node_group"] = "node_group"
    cluster_name: Annotated[str, ForceNew()]
    node_group_name: Annotated[str, ForceNew()]
    node_role_arn: Annotated[str, ForceNew()]
    subnet_ids: Annotated[RefList, ForceNew()]
    instance_types: Annotated[list[str], ForceNew()] = Field(default_factory=lambda: ["m5.large"])
    capacity_type: Annotated[Literal["ON_DEMAND", "SPOT"], ForceNew()] = "ON_DEMAND"
    disk_size: Annotated[int, ForceNew()] = Field(default=20, ge=1)
    desired_size: int = Field(default=2, ge=0)
    min_size: int = Field(default=1, ge=0)
    max_size: int = Field(default=3, ge=1)
    labels: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_scaling(self) -> Self:
        if not self.min_size <= self.desired_size <= self.max_size:
            raise ValueError("node group sizes must satisfy min_size <= desired_size <= max_size")
        return self
