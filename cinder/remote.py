"""Client for the remote platform's application-command catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
import logging
import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .configuration import DEFAULT_API_BASE
from .errors import RemoteError

logger = logging.getLogger("cinder.remote")

USER_AGENT = "Cinder/1.0"


class Partition(str, Enum):
    """The two remote namespaces commands are published into."""

    GLOBAL = "global"
    RESTRICTED = "restricted"


@dataclass
class RemoteCommand:
    """A command as currently registered on the platform."""

    name: str
    schema: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RemoteCommand":
        return cls(
            name=str(payload["name"]),
            schema=dict(payload),
            id=str(payload["id"]) if payload.get("id") is not None else None,
        )


class PlatformClient(Protocol):
    """Minimal catalog API: list, bulk replace and delete per partition."""

    def list_commands(self, partition: Partition) -> List[RemoteCommand]: ...

    def replace_commands(self, partition: Partition, schemas: Sequence[Dict[str, Any]]) -> None: ...

    def delete_command(self, partition: Partition, command: RemoteCommand) -> None: ...


@dataclass
class RemoteSettings:
    """Settings for talking to the platform API."""

    enabled: bool = True
    api_base: str = DEFAULT_API_BASE
    application_id: str = ""
    token: str = ""
    restricted_guild_id: str = ""
    timeout: float = 10.0

    @property
    def restricted_enabled(self) -> bool:
        return bool(self.restricted_guild_id)

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        env: Optional[Mapping[str, str]] = None,
    ) -> "RemoteSettings":
        raw = config.get("remote", {}) if config else {}
        env_source = env if env is not None else os.environ
        token_env = str(raw.get("token_env", "CINDER_BOT_TOKEN"))
        return cls(
            enabled=bool(raw.get("enabled", True)),
            api_base=str(raw.get("api_base", DEFAULT_API_BASE)),
            application_id=str(raw.get("application_id", "") or ""),
            token=str(env_source.get(token_env, "")),
            restricted_guild_id=str(raw.get("restricted_guild_id", "") or ""),
            timeout=float(raw.get("timeout", 10.0)),
        )


class HTTPPlatformClient:
    """REST implementation of :class:`PlatformClient`."""

    def __init__(
        self,
        settings: RemoteSettings,
        opener: Callable[..., Any] = urlopen,
    ) -> None:
        self.settings = settings
        self._opener = opener

    def list_commands(self, partition: Partition) -> List[RemoteCommand]:
        payload = self._request("GET", self._route(partition), partition)
        if not isinstance(payload, list):
            raise RemoteError(
                "Unexpected response listing commands",
                partition=partition.value,
            )
        return [RemoteCommand.from_payload(item) for item in payload]

    def replace_commands(self, partition: Partition, schemas: Sequence[Dict[str, Any]]) -> None:
        self._request("PUT", self._route(partition), partition, body=list(schemas))
        logger.debug("Replaced %d %s command(s).", len(schemas), partition.value)

    def delete_command(self, partition: Partition, command: RemoteCommand) -> None:
        if not command.id:
            raise RemoteError(
                f"Cannot delete '{command.name}' without a remote id",
                partition=partition.value,
                kind="identifier",
            )
        self._request("DELETE", f"{self._route(partition)}/{command.id}", partition)
        logger.debug("Deleted %s command %s.", partition.value, command.name)

    def _route(self, partition: Partition) -> str:
        settings = self.settings
        if not settings.application_id:
            raise RemoteError(
                "Cannot register commands: missing application id",
                partition=partition.value,
                kind="config",
            )
        base = f"{settings.api_base.rstrip('/')}/applications/{settings.application_id}"
        if partition is Partition.RESTRICTED:
            if not settings.restricted_guild_id:
                raise RemoteError(
                    "No restricted guild configured",
                    partition=partition.value,
                    kind="config",
                )
            return f"{base}/guilds/{settings.restricted_guild_id}/commands"
        return f"{base}/commands"

    def _request(
        self,
        method: str,
        url: str,
        partition: Partition,
        body: Any = None,
    ) -> Any:
        if not self.settings.token:
            raise RemoteError(
                "Cannot register commands: missing bot token",
                partition=partition.value,
                kind="config",
            )
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = Request(
            url,
            data=data,
            headers={
                "Authorization": f"Bot {self.settings.token}",
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
            method=method,
        )
        try:
            with self._opener(req, timeout=self.settings.timeout) as resp:
                raw = resp.read()
        except HTTPError as e:
            raise _translate_http_error(e, partition) from e
        except URLError as e:
            raise RemoteError(
                f"Connection error: {e.reason}",
                partition=partition.value,
                kind="network",
            ) from e
        except TimeoutError as e:
            raise RemoteError(
                f"Request timed out after {self.settings.timeout:g}s",
                partition=partition.value,
                kind="timeout",
            ) from e

        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise RemoteError(
                f"Malformed response body: {e}",
                partition=partition.value,
            ) from e


def _translate_http_error(error: HTTPError, partition: Partition) -> RemoteError:
    detail: Dict[str, Any] = {}
    try:
        parsed = json.loads(error.read().decode("utf-8") or "{}")
        if isinstance(parsed, dict):
            detail = parsed
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        pass
    message = str(detail.get("message") or error.reason or "request failed")

    if error.code == 401:
        return RemoteError(
            "Authentication error - please verify your token has proper permissions",
            partition=partition.value,
            status=401,
            kind="auth",
        )
    if error.code == 429:
        retry_after = detail.get("retry_after") or (error.headers or {}).get("Retry-After")
        try:
            retry = float(retry_after) if retry_after is not None else None
        except (TypeError, ValueError):
            retry = None
        return RemoteError(
            f"Rate limited: {message}",
            partition=partition.value,
            status=429,
            kind="rate_limited",
            retry_after=retry,
        )
    if "snowflake" in json.dumps(detail).lower() or "snowflake" in message.lower():
        return RemoteError(
            f"Invalid identifier: {message}",
            partition=partition.value,
            status=error.code,
            kind="identifier",
        )
    return RemoteError(
        f"API error: {message}",
        partition=partition.value,
        status=error.code,
    )


__all__ = [
    "HTTPPlatformClient",
    "Partition",
    "PlatformClient",
    "RemoteCommand",
    "RemoteSettings",
]
