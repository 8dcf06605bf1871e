"""Base resource class for cloud resources."""

from typing import Annotated, Any, ClassVar, Literal, Self, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from cloud_provisioner.resources.markers import Compare, collect_force_new

ReplacementPolicy: TypeAlias = Literal["create_before_destroy", "destroy_before_create"]

# A literal list, or a single reference expression that resolves to one
# (e.g. ``${subnet.private[*].id}``).
RefList: TypeAlias = list[str] | str

META_FIELDS: frozenset[str] = frozenset(
    {"type", "name", "count", "for_each", "depends_on", "lifecycle", "address"}
)


class Lifecycle(BaseModel):
    """Per-resource lifecycle customizations."""

    model_config = ConfigDict(extra="forbid")

    create_before_destroy: bool | None = None
    prevent_destroy: bool = False
    ignore_changes: list[str] = Field(default_factory=list)


class Resource(BaseModel):
    """Base class for all cloud resources.

    Resources are pure data - they define the desired state.
    Handlers know how to CRUD resources.
    """

    model_config = ConfigDict(extra="forbid")

    resource_type: ClassVar[str]
    plan_priority: ClassVar[int] = 100
    computed: ClassVar[frozenset[str]] = frozenset({"id", "arn"})
    replacement_policy: ClassVar[ReplacementPolicy] = "create_before_destroy"

    type: str
    name: str = Field(pattern=r"^[a-zA-Z0-9_]+$")
    tags: Annotated[dict[str, str], Compare("exact")] = Field(default_factory=dict)

    # Cardinality
    count: int | None = Field(default=None, ge=0)
    for_each: list[str] | dict[str, Any] | None = None

    # Lifecycle
    depends_on: list[str] = []
    lifecycle: Lifecycle = Field(default_factory=Lifecycle)

    @model_validator(mode="after")
    def _check_cardinality(self) -> Self:
        if self.count is not None and self.for_each is not None:
            raise ValueError("'count' and 'for_each' cannot be used together")
        if isinstance(self.for_each, list) and len(set(self.for_each)) != len(self.for_each):
            raise ValueError("'for_each' list values must be unique")
        return self

    @computed_field
    @property
    def address(self) -> str:
        """Unique address for this resource (e.g., 'vpc.main')."""
        return f"{self.resource_type}.{self.name}"

    def attributes(self) -> dict[str, Any]:
        """Desired remote attributes (schema fields, excluding meta-arguments)."""
        return self.model_dump(mode="json", exclude_none=True, exclude=set(META_FIELDS))

    @classmethod
    def attribute_names(cls) -> frozenset[str]:
        """Every attribute another instance may reference."""
        return frozenset(cls.model_fields) - META_FIELDS | cls.computed

    @classmethod
    def force_new_fields(cls) -> frozenset[str]:
        return collect_force_new(cls)

    def effective_replacement_policy(self) -> ReplacementPolicy:
        cbd = self.lifecycle.create_before_destroy
        if cbd is None:
            return self.replacement_policy
        return "create_before_destroy" if cbd else "destroy_before_create"
