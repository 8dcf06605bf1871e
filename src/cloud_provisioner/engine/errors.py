"""Engine error types."""

from __future__ import annotations


class EngineError(Exception):
    """Base exception for engine errors."""


class ConfigurationError(EngineError):
    """Fatal configuration problem, detected before any remote call."""


class UnknownResourceTypeError(ConfigurationError):
    """Raised when a resource type has no registration/handler."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateAddressError(ConfigurationError):
    """Raised when multiple desired instances share the same address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Duplicate resource address: {address}")
        self.address = address


class UnresolvedReferenceError(ConfigurationError):
    """Raised when an expression points at something that does not exist."""

    def __init__(self, address: str, attribute_path: str, expression: str, reason: str) -> None:
        location = f"{address}.{attribute_path}" if attribute_path else address
        super().__init__(f"{location}: cannot resolve '${{{expression}}}': {reason}")
        self.address = address
        self.attribute_path = attribute_path
        self.expression = expression
        self.reason = reason


class DependencyCycleError(ConfigurationError):
    """Raised when dependencies contain a cycle.

    ``cycle`` lists the participating addresses with the first repeated at
    the end, each element depending on the next.
    """

    def __init__(self, cycle: list[str]) -> None:
        msg = "Dependency cycle detected"
        if cycle:
            msg += f": {' -> '.join(cycle)}"
        super().__init__(msg)
        self.cycle = cycle


class ValidationError(ConfigurationError):
    """One or more resources failed plan validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class PreventDestroyError(ConfigurationError):
    """Raised when a plan would destroy an instance with ``prevent_destroy``."""

    def __init__(self, address: str, action: str) -> None:
        super().__init__(
            f"Instance {address} has lifecycle.prevent_destroy set but the plan would {action} it"
        )
        self.address = address
        self.action = action


class DiffConflictError(EngineError):
    """Raised when state or remote objects drifted between plan and apply."""


class StateWorkspaceMismatchError(EngineError):
    """Raised when the on-disk state belongs to a different workspace."""

    def __init__(self, expected: str, got: str) -> None:
        super().__init__(f"State workspace mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class InstanceFailedError(EngineError):
    """An instance could not be applied. Recorded on its outcome; dependents get blocked."""

    def __init__(self, address: str, message: str) -> None:
        super().__init__(f"{address}: {message}")
        self.address = address
