"""Cloud provider - connection configuration for the remote API."""

from functools import cached_property
from pathlib import Path
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, SecretStr

from cloud_provisioner.core.client import CloudClient, HttpCloudClient
from cloud_provisioner.core.memory import InMemoryCloud


class ApiKeyAuth(BaseModel):
    """API key authentication for the cloud control plane."""

    api_key: SecretStr


class CloudProvider(BaseModel):
    """Connection configuration for a cloud API.

    For a real control plane, provide ``kind="http"``, an endpoint and auth.
    ``kind="memory"`` runs against a simulated cloud, optionally persisted to
    ``memory_path``. Use :meth:`from_client` to inject any client.

    Examples:
        # HTTP control plane with an API key
        provider = CloudProvider(
            kind="http",
            endpoint="https://cloud.example.com",
            auth=ApiKeyAuth(api_key="my-api-key"),
        )

        # Tests
        provider = CloudProvider.from_client(InMemoryCloud())
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: Literal["http", "memory"] = "memory"
    endpoint: str | None = None
    region: str = "local-1"
    auth: ApiKeyAuth | None = None
    memory_path: Path | None = None

    # Injected client (for testing / embedding)
    _injected_client: CloudClient | None = None

    @classmethod
    def from_client(cls, client: CloudClient) -> Self:
        """Create a provider with an injected client.

        Args:
            client: A pre-configured ``CloudClient`` implementation
        """
        provider = cls.model_construct()
        provider._injected_client = client
        return provider

    @cached_property
    def client(self) -> CloudClient:
        """Get the cloud client."""
        if self._injected_client is not None:
            return self._injected_client

        if self.kind == "memory":
            return InMemoryCloud(region=self.region, path=self.memory_path)

        if self.endpoint is None:
            raise ValueError(
                "Either provide an endpoint for kind 'http', or use "
                "CloudProvider.from_client() to inject a client"
            )

        return HttpCloudClient(
            self.endpoint,
            api_key=self.auth.api_key.get_secret_value() if self.auth else None,
            region=self.region,
        )
