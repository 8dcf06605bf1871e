"""Object storage resource models."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal

from cloud_provisioner.resources.base import ReplacementPolicy, Resource
from cloud_provisioner.resources.markers import ForceNew


class BucketResource(Resource):
    """An object storage bucket. Bucket names are globally unique."""

    resource_type: ClassVar[str] = "bucket"
    computed: ClassVar[frozenset[str]] = frozenset({"id", "arn", "bucket_domain_name"})
    replacement_policy: ClassVar[ReplacementPolicy] = "destroy_before_create"

    type: Literal["bucket"] = "bucket"
    bucket: Annotated[str, ForceNew()]
    acl: Literal["private", "public-read"] = "private"
    versioning: bool = False
    server_side_encryption: Literal["AES256", "kms"] = "AES256"
    force_destroy: bool = False
