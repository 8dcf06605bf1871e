"""IAM resource models."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal

from pydantic import Field

from cloud_provisioner.resources.base import ReplacementPolicy, Resource
from cloud_provisioner.resources.markers import Compare, ForceNew


class IamRoleResource(Resource):
    """An IAM role assumed by a service (cluster control plane, worker nodes)."""

    resource_type: ClassVar[str] = "iam_role"
    plan_priority: ClassVar[int] = 10
    replacement_policy: ClassVar[ReplacementPolicy] = "destroy_before_create"

    type: Literal["iam_role"] = "iam_role"
    role_name: Annotated[str, ForceNew()]
    path: Annotated[str, ForceNew()] = "/"
    assume_role_policy: Annotated[dict[str, Any], Compare("exact")]
    description: str = ""
    max_session_duration: int = Field(default=3600, ge=3600, le=43200)


class IamRolePolicyAttachmentResource(Resource):
    """Attaches a managed policy to a role."""

    resource_type: ClassVar[str] = "iam_role_policy_attachment"

    type: Literal["iam_role_policy_attachment"] = "iam_role_policy_attachment"
    role: Annotated[str, ForceNew()]
    policy_arn: Annotated[str, ForceNew()]
