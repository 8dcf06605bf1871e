"""Remote cloud API clients."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests

from cloud_provisioner.core.errors import RemoteTerminalError, RemoteTransientError

logger = logging.getLogger(__name__)

_TRANSIENT_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


class CloudClient(Protocol):
    """CRUD operations the engine needs from a cloud API, per resource type.

    ``create`` is idempotent for a given ``idempotency_token``. ``read``
    returns ``None`` when the object no longer exists. All methods return the
    object's full current attributes, including the ``id`` key.
    """

    def create(
        self,
        resource_type: str,
        attributes: dict[str, Any],
        *,
        idempotency_token: str,
        timeout: float,
    ) -> dict[str, Any]: ...

    def read(self, resource_type: str, remote_id: str, *, timeout: float) -> dict[str, Any] | None:
        ...

    def update(
        self,
        resource_type: str,
        remote_id: str,
        changes: dict[str, Any],
        *,
        timeout: float,
    ) -> dict[str, Any]: ...

    def delete(self, resource_type: str, remote_id: str, *, timeout: float) -> None: ...


class HttpCloudClient:
    """JSON-over-HTTP client for a cloud control-plane API.

    Endpoints: ``POST/GET/PATCH/DELETE {endpoint}/v1/{resource_type}[/{id}]``.
    Request bodies are ``{"attributes": {...}}``; responses are the object's
    attribute mapping.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        api_key: str | None = None,
        region: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._session = session or requests.Session()
        self._session.headers["Accept"] = "application/json"
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"
        if region:
            self._session.headers["X-Cloud-Region"] = region

    def _url(self, resource_type: str, remote_id: str | None = None) -> str:
        url = f"{self._endpoint}/v1/{resource_type}"
        return f"{url}/{remote_id}" if remote_id is not None else url

    def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        try:
            resp = self._session.request(
                method, url, json=json_body, headers=headers, timeout=timeout
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise RemoteTransientError(f"{method} {url}: {exc}") from exc
        logger.debug("%s %s -> %d", method, url, resp.status_code)
        return resp

    @staticmethod
    def _raise_for_status(resp: requests.Response) -> None:
        if resp.ok:
            return
        try:
            detail = resp.json().get("message", resp.text)
        except ValueError:
            detail = resp.text
        msg = f"{resp.request.method} {resp.url} failed ({resp.status_code}): {detail}"
        if resp.status_code in _TRANSIENT_STATUSES:
            raise RemoteTransientError(msg, status=resp.status_code)
        raise RemoteTerminalError(msg, status=resp.status_code)

    def create(
        self,
        resource_type: str,
        attributes: dict[str, Any],
        *,
        idempotency_token: str,
        timeout: float,
    ) -> dict[str, Any]:
        resp = self._request(
            "POST",
            self._url(resource_type),
            timeout=timeout,
            json_body={"attributes": attributes},
            headers={"Idempotency-Key": idempotency_token},
        )
        self._raise_for_status(resp)
        return resp.json()

    def read(self, resource_type: str, remote_id: str, *, timeout: float) -> dict[str, Any] | None:
        resp = self._request("GET", self._url(resource_type, remote_id), timeout=timeout)
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp)
        return resp.json()

    def update(
        self,
        resource_type: str,
        remote_id: str,
        changes: dict[str, Any],
        *,
        timeout: float,
    ) -> dict[str, Any]:
        resp = self._request(
            "PATCH",
            self._url(resource_type, remote_id),
            timeout=timeout,
            json_body={"attributes": changes},
        )
        self._raise_for_status(resp)
        return resp.json()

    def delete(self, resource_type: str, remote_id: str, *, timeout: float) -> None:
        resp = self._request("DELETE", self._url(resource_type, remote_id), timeout=timeout)
        if resp.status_code == 404:
            # Already gone.
            return
        self._raise_for_status(resp)
