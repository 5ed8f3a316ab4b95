"""Converge the remote command catalog to the in-memory registry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, List, Literal, Optional

from .errors import RemoteError
from .events import EventHub, EventKind, SyncEvent
from .registry import CommandRegistry
from .remote import Partition, PlatformClient
from .slash_commands import CommandScope

logger = logging.getLogger("cinder.reconciler")

PartitionStatus = Literal["ok", "degraded", "error", "skipped"]

SCOPE_PARTITIONS = {
    CommandScope.GLOBAL: Partition.GLOBAL,
    CommandScope.RESTRICTED: Partition.RESTRICTED,
}


@dataclass
class DesiredState:
    """Name -> schema maps for each remote partition."""

    global_: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    restricted: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def for_partition(self, partition: Partition) -> Dict[str, Dict[str, Any]]:
        return self.global_ if partition is Partition.GLOBAL else self.restricted


@dataclass
class PartitionResult:
    partition: Partition
    status: PartitionStatus = "ok"
    desired: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed_deletes: Dict[str, str] = field(default_factory=dict)
    replaced: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "partition": self.partition.value,
            "status": self.status,
            "desired": self.desired,
            "deleted": self.deleted,
            "failed_deletes": self.failed_deletes,
            "replaced": self.replaced,
            "error": self.error,
        }


@dataclass
class ReconcileReport:
    started_at: str
    finished_at: str = ""
    partitions: Dict[Partition, PartitionResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(result.status in ("ok", "skipped") for result in self.partitions.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "ok": self.ok,
            "partitions": {p.value: r.to_dict() for p, r in self.partitions.items()},
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RemoteReconciler:
    """Two-way diff between the registry and the platform catalog.

    The remote catalog is treated as fully owned by this process: anything
    registered remotely that the registry does not want is deleted.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        client: PlatformClient,
        *,
        timeout: float = 10.0,
        enabled: bool = True,
        restricted_enabled: bool = True,
        events: Optional[EventHub] = None,
    ) -> None:
        self.registry = registry
        self.client = client
        self.timeout = timeout
        self.enabled = enabled
        self.restricted_enabled = restricted_enabled
        self.events = events or EventHub()
        self.last_report: Optional[ReconcileReport] = None

    def desired_state(self) -> DesiredState:
        """Route every registry entry by its owner's scope."""
        state = DesiredState()
        for descriptor in self.registry.values():
            partition = SCOPE_PARTITIONS[descriptor.scope]
            state.for_partition(partition)[descriptor.name] = descriptor.schema
        return state

    async def reconcile(self) -> ReconcileReport:
        report = ReconcileReport(started_at=_now())
        desired = self.desired_state()
        if not self.enabled:
            logger.info("Remote registration disabled; skipping reconciliation.")
            for partition in Partition:
                report.partitions[partition] = PartitionResult(
                    partition=partition,
                    status="skipped",
                    desired=sorted(desired.for_partition(partition)),
                )
            report.finished_at = _now()
            self.last_report = report
            return report

        self.events.emit(
            SyncEvent(
                kind=EventKind.RECONCILE_STARTED,
                detail=f"global={len(desired.global_)} restricted={len(desired.restricted)}",
            )
        )
        logger.info(
            "Reconciling remote commands (global=%d, restricted=%d).",
            len(desired.global_),
            len(desired.restricted),
        )

        partitions = [Partition.GLOBAL, Partition.RESTRICTED]
        results = await asyncio.gather(
            *(self._reconcile_partition(p, desired.for_partition(p)) for p in partitions)
        )
        for result in results:
            report.partitions[result.partition] = result
        report.finished_at = _now()
        self.last_report = report

        self.events.emit(
            SyncEvent(
                kind=EventKind.RECONCILE_COMPLETED,
                detail=", ".join(f"{r.partition.value}={r.status}" for r in results),
            )
        )
        logger.info(
            "Reconciliation finished: %s",
            ", ".join(f"{r.partition.value}={r.status}" for r in results),
        )
        return report

    async def _reconcile_partition(
        self,
        partition: Partition,
        desired: Dict[str, Dict[str, Any]],
    ) -> PartitionResult:
        result = PartitionResult(partition=partition, desired=sorted(desired))

        if partition is Partition.RESTRICTED and not self.restricted_enabled:
            result.status = "skipped"
            if desired:
                logger.warning(
                    "%d restricted command(s) not published: no restricted guild configured.",
                    len(desired),
                )
            return result

        try:
            registered = await self._call(self.client.list_commands, partition)
            stale = [cmd for cmd in registered if cmd.name not in desired]
            if stale:
                outcomes = await asyncio.gather(
                    *(self._call(self.client.delete_command, partition, cmd) for cmd in stale),
                    return_exceptions=True,
                )
                for cmd, outcome in zip(stale, outcomes):
                    if isinstance(outcome, BaseException):
                        reason = _describe(outcome)
                        result.failed_deletes[cmd.name] = reason
                        logger.error(
                            "Failed to delete %s command '%s': %s",
                            partition.value,
                            cmd.name,
                            reason,
                        )
                    else:
                        result.deleted.append(cmd.name)
            if desired:
                await self._call(self.client.replace_commands, partition, list(desired.values()))
                result.replaced = True
        except Exception as exc:
            reason = _describe(exc)
            result.status = "error"
            result.error = reason
            logger.error("Command registration failed for %s partition: %s", partition.value, reason)
            self.events.emit(
                SyncEvent(
                    kind=EventKind.PARTITION_FAILED,
                    partition=partition.value,
                    detail=reason,
                )
            )
            return result

        if result.failed_deletes:
            result.status = "degraded"
        return result

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, RemoteError):
        return exc.describe()
    if isinstance(exc, asyncio.TimeoutError):
        return "timeout: remote call did not finish in time"
    return f"{type(exc).__name__}: {exc}"


__all__ = [
    "DesiredState",
    "PartitionResult",
    "ReconcileReport",
    "RemoteReconciler",
]
