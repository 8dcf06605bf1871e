"""Managed relational database resource models."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal

from pydantic import Field

from cloud_provisioner.resources.base import RefList, ReplacementPolicy, Resource
from cloud_provisioner.resources.markers import ForceNew


class DbSubnetGroupResource(Resource):
    """Subnets a database cluster may place instances in."""

    resource_type: ClassVar[str] = "db_subnet_group"
    replacement_policy: ClassVar[ReplacementPolicy] = "destroy_before_create"

    type: Literal["db_subnet_group"] = "db_subnet_group"
    group_name: Annotated[str, ForceNew()]
    description: str = "Managed by cloud-provisioner"
    subnet_ids: RefList


class DbClusterResource(Resource):
    """A managed database cluster (storage + writer/reader endpoints)."""

    resource_type: ClassVar[str] = "db_cluster"
    computed: ClassVar[frozenset[str]] = frozenset({"id", "arn", "endpoint", "reader_endpoint"})
    replacement_policy: ClassVar[ReplacementPolicy] = "destroy_before_create"

    type: Literal["db_cluster"] = "db_cluster"
    cluster_identifier: Annotated[str, ForceNew()]
    engine: Annotated[Literal["postgres", "mysql"], ForceNew()] = "postgres"
    engine_version: str
    database_name: Annotated[str | None, ForceNew()] = None
    master_username: Annotated[str, ForceNew()]
    master_password: str | None = None
    port: Annotated[int | None, ForceNew()] = None
    db_subnet_group_name: Annotated[str, ForceNew()]
    vpc_security_group_ids: RefList = Field(default_factory=list)
    storage_encrypted: Annotated[bool, ForceNew()] = True
    backup_retention_period: int = Field(default=7, ge=1, le=35)
    preferred_backup_window: str | None = None
    skip_final_snapshot: bool = False
    deletion_protection: bool = False


class DbInstanceResource(Resource):
    """A compute instance serving a database cluster (writer or reader)."""

    resource_type: ClassVar[str] = "db_instance"
    computed: ClassVar[frozenset[str]] = frozenset({"id", "arn", "endpoint"})
    replacement_policy: ClassVar[ReplacementPolicy] = "destroy_before_create"

    type: Literal["db_instance"] = "db_instance"
    identifier: Annotated[str, ForceNew()]
    cluster_identifier: Annotated[str, ForceNew()]
    engine: Annotated[Literal["postgres", "mysql"], ForceNew()] = "postgres"
    instance_class: str
    publicly_accessible: bool = False
    promotion_tier: int = Field(default=1, ge=0, le=15)
