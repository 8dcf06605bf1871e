"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Discriminator, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from cloud_provisioner.engine.settings import EngineSettings
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


class ProviderConfig(BaseSettings):
    """Cloud API connection settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``CLOUD_`` prefix.  Constructor kwargs take precedence.

    ``api_key`` is typically provided via the ``CLOUD_API_KEY`` environment
    variable rather than YAML to avoid committing secrets to version control.
    """

    model_config = SettingsConfigDict(env_prefix="CLOUD_")

    kind: Literal["http", "memory"] = "memory"
    endpoint: str | None = None
    region: str = "local-1"
    api_key: SecretStr | None = None
    memory_path: Path | None = None


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


_ResourceEntry = Annotated[
    VpcResource
    | SubnetResource
    | InternetGatewayResource
    | ElasticIpResource
    | NatGatewayResource
    | RouteTableResource
    | RouteTableAssociationResource
    | SecurityGroupResource
    | IamRoleResource
    | IamRolePolicyAttachmentResource
    | K8sClusterResource
    | NodeGroupResource
    | DbSubnetGroupResource
    | DbClusterResource
    | DbInstanceResource
    | BucketResource,
    Discriminator("type"),
]


class Config(BaseModel):
    """Provisioning configuration: validates YAML structure directly."""

    model_config = ConfigDict(extra="forbid")

    provider: ProviderConfig
    workspace: str = Field(default="default", pattern=r"^[A-Za-z0-9_.-]+$")
    state_path: Path = Path(".cloud-state.json")
    settings: EngineSettings = Field(default_factory=EngineSettings)
    variables: Annotated[dict[str, Any], BeforeValidator(_none_to_dict)] = {}
    resources: Annotated[list[_ResourceEntry], BeforeValidator(_none_to_list)] = []
    outputs: Annotated[dict[str, Any], BeforeValidator(_none_to_dict)] = {}
    config_dir: Path = Path()
