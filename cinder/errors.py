"""Exception types shared across the synchronization engine."""

from __future__ import annotations

from typing import Optional


class CinderError(Exception):
    """Base class for every error raised by Cinder."""


class ValidationError(CinderError):
    """A command file does not describe a usable command."""


class CollisionError(CinderError):
    """Two commands or aliases claim the same name."""

    def __init__(self, name: str, owner: str) -> None:
        super().__init__(f"'{name}' is already registered by '{owner}'")
        self.name = name
        self.owner = owner


class StoreUnavailableError(CinderError):
    """The persistent hash/alias store could not be read or written."""


class RemoteError(CinderError):
    """A call against the remote command catalog failed."""

    def __init__(
        self,
        message: str,
        *,
        partition: Optional[str] = None,
        status: Optional[int] = None,
        kind: str = "api",
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.partition = partition
        self.status = status
        self.kind = kind
        self.retry_after = retry_after

    def describe(self) -> str:
        parts = [self.kind]
        if self.status is not None:
            parts.append(f"HTTP {self.status}")
        if self.retry_after is not None:
            parts.append(f"retry after {self.retry_after:g}s")
        return f"{', '.join(parts)}: {self}"


__all__ = [
    "CinderError",
    "CollisionError",
    "RemoteError",
    "StoreUnavailableError",
    "ValidationError",
]
