"""Plan and apply engine for cloud resources."""

from cloud_provisioner.engine.context import RunContext
from cloud_provisioner.engine.engine import Engine
from cloud_provisioner.engine.errors import (
    ConfigurationError,
    DependencyCycleError,
    DiffConflictError,
    DuplicateAddressError,
    EngineError,
    InstanceFailedError,
    PreventDestroyError,
    StateLockError,
    StateWorkspaceMismatchError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
    ValidationError,
)
from cloud_provisioner.engine.executor import ProgressCallback
from cloud_provisioner.engine.graph import DependencyGraph
from cloud_provisioner.engine.handlers import EngineContext, PlanContext, ResourceHandler
from cloud_provisioner.engine.references import Unknown
from cloud_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from cloud_provisioner.engine.settings import EngineSettings, RetryPolicy
from cloud_provisioner.engine.types import (
    Action,
    ApplyResult,
    InstanceOutcome,
    InstanceStatus,
    Plan,
    PlanMetadata,
    ResourceChange,
    RunOutcome,
)

__all__ = [
    "Action",
    "ApplyResult",
    "ConfigurationError",
    "DependencyCycleError",
    "DependencyGraph",
    "DiffConflictError",
    "DuplicateAddressError",
    "Engine",
    "EngineContext",
    "EngineError",
    "EngineSettings",
    "InstanceFailedError",
    "InstanceOutcome",
    "InstanceStatus",
    "Plan",
    "PlanContext",
    "PlanMetadata",
    "PreventDestroyError",
    "ProgressCallback",
    "ResourceChange",
    "ResourceHandler",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "RetryPolicy",
    "RunContext",
    "RunOutcome",
    "StateLockError",
    "StateWorkspaceMismatchError",
    "Unknown",
    "UnknownResourceTypeError",
    "UnresolvedReferenceError",
    "ValidationError",
]
