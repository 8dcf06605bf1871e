"""Core infrastructure components for cloud-provisioner."""

from cloud_provisioner.core.client import CloudClient, HttpCloudClient
from cloud_provisioner.core.errors import RemoteError, RemoteTerminalError, RemoteTransientError
from cloud_provisioner.core.memory import InMemoryCloud
from cloud_provisioner.core.provider import ApiKeyAuth, CloudProvider
from cloud_provisioner.core.state import State, StateEntry, StateStore

__all__ = [
    "ApiKeyAuth",
    "CloudClient",
    "CloudProvider",
    "HttpCloudClient",
    "InMemoryCloud",
    "RemoteError",
    "RemoteTerminalError",
    "RemoteTransientError",
    "State",
    "StateEntry",
    "StateStore",
]
