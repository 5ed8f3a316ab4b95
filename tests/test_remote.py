"""Tests for the HTTP platform client."""

from __future__ import annotations

from email.message import Message
import io
import json
from typing import Any, List, Optional

import pytest
from urllib.error import HTTPError, URLError

from cinder.errors import RemoteError
from cinder.remote import HTTPPlatformClient, Partition, RemoteCommand, RemoteSettings


class _Response(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class _Opener:
    def __init__(self, body: Any = None, error: Optional[Exception] = None) -> None:
        self.body = body
        self.error = error
        self.requests: List[Any] = []

    def __call__(self, request, timeout=None):
        self.requests.append((request, timeout))
        if self.error is not None:
            raise self.error
        raw = b"" if self.body is None else json.dumps(self.body).encode("utf-8")
        return _Response(raw)


def _settings(**overrides) -> RemoteSettings:
    values = dict(
        application_id="123",
        token="secret",
        restricted_guild_id="456",
        api_base="https://api.example.test/v10/",
        timeout=3.0,
    )
    values.update(overrides)
    return RemoteSettings(**values)


def _http_error(code: int, payload: dict, headers: Optional[dict] = None) -> HTTPError:
    message = Message()
    for key, value in (headers or {}).items():
        message[key] = value
    return HTTPError(
        "https://api.example.test",
        code,
        "error",
        message,
        io.BytesIO(json.dumps(payload).encode("utf-8")),
    )


def test_settings_read_token_from_configured_env():
    config = {"remote": {"application_id": "42", "token_env": "MY_TOKEN", "restricted_guild_id": ""}}

    settings = RemoteSettings.from_config(config, env={"MY_TOKEN": "abc"})

    assert settings.token == "abc"
    assert settings.application_id == "42"
    assert settings.restricted_enabled is False


def test_list_commands_uses_partition_routes():
    opener = _Opener(body=[{"id": "1", "name": "ping", "description": "Ping"}])
    client = HTTPPlatformClient(_settings(), opener=opener)

    global_commands = client.list_commands(Partition.GLOBAL)
    client.list_commands(Partition.RESTRICTED)

    assert global_commands == [
        RemoteCommand(name="ping", schema={"id": "1", "name": "ping", "description": "Ping"}, id="1")
    ]
    urls = [request.full_url for request, _timeout in opener.requests]
    assert urls == [
        "https://api.example.test/v10/applications/123/commands",
        "https://api.example.test/v10/applications/123/guilds/456/commands",
    ]
    request, timeout = opener.requests[0]
    assert request.get_header("Authorization") == "Bot secret"
    assert timeout == 3.0


def test_replace_commands_puts_full_payload():
    opener = _Opener(body=[])
    client = HTTPPlatformClient(_settings(), opener=opener)

    client.replace_commands(Partition.GLOBAL, [{"name": "ping"}, {"name": "latency"}])

    request, _timeout = opener.requests[0]
    assert request.get_method() == "PUT"
    assert json.loads(request.data) == [{"name": "ping"}, {"name": "latency"}]


def test_delete_command_targets_remote_id():
    opener = _Opener()
    client = HTTPPlatformClient(_settings(), opener=opener)

    client.delete_command(Partition.RESTRICTED, RemoteCommand(name="ban", id="99"))

    request, _timeout = opener.requests[0]
    assert request.get_method() == "DELETE"
    assert request.full_url.endswith("/guilds/456/commands/99")


def test_delete_without_id_is_an_identifier_error():
    client = HTTPPlatformClient(_settings(), opener=_Opener())

    with pytest.raises(RemoteError) as excinfo:
        client.delete_command(Partition.GLOBAL, RemoteCommand(name="ping"))

    assert excinfo.value.kind == "identifier"


@pytest.mark.parametrize(
    "overrides, partition",
    [
        ({"application_id": ""}, Partition.GLOBAL),
        ({"token": ""}, Partition.GLOBAL),
        ({"restricted_guild_id": ""}, Partition.RESTRICTED),
    ],
)
def test_missing_settings_are_config_errors(overrides, partition):
    opener = _Opener()
    client = HTTPPlatformClient(_settings(**overrides), opener=opener)

    with pytest.raises(RemoteError) as excinfo:
        client.list_commands(partition)

    assert excinfo.value.kind == "config"
    assert opener.requests == []


def test_unauthorized_maps_to_auth_error():
    client = HTTPPlatformClient(_settings(), opener=_Opener(error=_http_error(401, {"message": "401: Unauthorized"})))

    with pytest.raises(RemoteError) as excinfo:
        client.list_commands(Partition.GLOBAL)

    assert excinfo.value.kind == "auth"
    assert excinfo.value.status == 401
    assert excinfo.value.partition == "global"


def test_rate_limit_carries_retry_after():
    error = _http_error(429, {"message": "You are being rate limited.", "retry_after": 1.5})
    client = HTTPPlatformClient(_settings(), opener=_Opener(error=error))

    with pytest.raises(RemoteError) as excinfo:
        client.replace_commands(Partition.GLOBAL, [])

    assert excinfo.value.kind == "rate_limited"
    assert excinfo.value.retry_after == 1.5
    assert "retry after 1.5s" in excinfo.value.describe()


def test_snowflake_error_maps_to_identifier():
    error = _http_error(400, {"message": "Invalid Form Body", "errors": {"guild_id": "Value is not snowflake."}})
    client = HTTPPlatformClient(_settings(), opener=_Opener(error=error))

    with pytest.raises(RemoteError) as excinfo:
        client.list_commands(Partition.RESTRICTED)

    assert excinfo.value.kind == "identifier"
    assert excinfo.value.status == 400


def test_connection_failure_maps_to_network():
    client = HTTPPlatformClient(_settings(), opener=_Opener(error=URLError("refused")))

    with pytest.raises(RemoteError) as excinfo:
        client.list_commands(Partition.GLOBAL)

    assert excinfo.value.kind == "network"


def test_unexpected_list_payload_is_rejected():
    client = HTTPPlatformClient(_settings(), opener=_Opener(body={"message": "nope"}))

    with pytest.raises(RemoteError, match="Unexpected response"):
        client.list_commands(Partition.GLOBAL)
