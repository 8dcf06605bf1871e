from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from cloud_provisioner.core.client import HttpCloudClient
from cloud_provisioner.core.errors import RemoteTerminalError, RemoteTransientError


def _response(status: int, body: Any = None, *, method: str = "GET") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.json.return_value = body if body is not None else {}
    resp.text = str(body)
    resp.url = "https://cloud.test/v1/vpc"
    resp.request.method = method
    return resp


@pytest.fixture
def session() -> MagicMock:
    s = MagicMock()
    s.headers = {}
    return s


@pytest.fixture
def client(session: MagicMock) -> HttpCloudClient:
    return HttpCloudClient(
        "https://cloud.test/", api_key="secret", region="eu-west-1", session=session
    )


def test_session_headers(client: HttpCloudClient, session: MagicMock) -> None:
    assert session.headers["Authorization"] == "Bearer secret"
    assert session.headers["X-Cloud-Region"] == "eu-west-1"
    assert session.headers["Accept"] == "application/json"


def test_create_sends_idempotency_key(client: HttpCloudClient, session: MagicMock) -> None:
    session.request.return_value = _response(201, {"id": "vpc-1"}, method="POST")

    result = client.create("vpc", {"cidr_block": "10.0.0.0/16"}, idempotency_token="tok", timeout=3)

    assert result == {"id": "vpc-1"}
    session.request.assert_called_once_with(
        "POST",
        "https://cloud.test/v1/vpc",
        json={"attributes": {"cidr_block": "10.0.0.0/16"}},
        headers={"Idempotency-Key": "tok"},
        timeout=3,
    )


def test_update_sends_changes_only(client: HttpCloudClient, session: MagicMock) -> None:
    session.request.return_value = _response(200, {"id": "vpc-1", "tags": {}}, method="PATCH")

    client.update("vpc", "vpc-1", {"tags": {}}, timeout=3)

    args, kwargs = session.request.call_args
    assert args == ("PATCH", "https://cloud.test/v1/vpc/vpc-1")
    assert kwargs["json"] == {"attributes": {"tags": {}}}


def test_read_missing_returns_none(client: HttpCloudClient, session: MagicMock) -> None:
    session.request.return_value = _response(404, {"message": "not found"})
    assert client.read("vpc", "vpc-1", timeout=3) is None


def test_delete_missing_is_ignored(client: HttpCloudClient, session: MagicMock) -> None:
    session.request.return_value = _response(404, method="DELETE")
    client.delete("vpc", "vpc-1", timeout=3)


@pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
def test_transient_statuses(client: HttpCloudClient, session: MagicMock, status: int) -> None:
    session.request.return_value = _response(status, {"message": "slow down"})
    with pytest.raises(RemoteTransientError, match="slow down") as exc_info:
        client.read("vpc", "vpc-1", timeout=3)
    assert exc_info.value.status == status


@pytest.mark.parametrize("status", [400, 403, 409, 422])
def test_terminal_statuses(client: HttpCloudClient, session: MagicMock, status: int) -> None:
    session.request.return_value = _response(status, {"message": "denied"}, method="POST")
    with pytest.raises(RemoteTerminalError, match=f"failed \\({status}\\)"):
        client.create("vpc", {}, idempotency_token="tok", timeout=3)


@pytest.mark.parametrize("exc", [requests.Timeout("timed out"), requests.ConnectionError("reset")])
def test_network_errors_are_transient(
    client: HttpCloudClient, session: MagicMock, exc: Exception
) -> None:
    session.request.side_effect = exc
    with pytest.raises(RemoteTransientError):
        client.read("vpc", "vpc-1", timeout=3)


def test_non_json_error_body(client: HttpCloudClient, session: MagicMock) -> None:
    resp = _response(400)
    resp.json.side_effect = ValueError("no json")
    resp.text = "bad gateway html"
    session.request.return_value = resp
    with pytest.raises(RemoteTerminalError, match="bad gateway html"):
        client.read("vpc", "vpc-1", timeout=3)
