"""Top-level sequencing of scans, hot reloads and remote reconciliation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from .errors import StoreUnavailableError
from .events import EventHub, EventKind, SyncEvent
from .loader import CommandLoader, LoadResult, LoadStatus, RetireResult
from .reconciler import ReconcileReport, RemoteReconciler
from .watcher import iter_command_files

logger = logging.getLogger("cinder.driver")


class DriverState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    LOADING = "loading"
    RETIRING = "retiring"
    RECONCILING = "reconciling"


@dataclass
class ScanReport:
    """Outcome of one full scan."""

    loaded: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    validated: List[str] = field(default_factory=list)
    rejected: Dict[str, str] = field(default_factory=dict)
    retired: List[str] = field(default_factory=list)
    reconcile: Optional[ReconcileReport] = None
    degraded: bool = False

    def summary(self) -> str:
        text = (
            f"Commands: {len(self.loaded)} updated, {len(self.unchanged)} unchanged, "
            f"{len(self.rejected)} rejected, {len(self.retired)} retired"
        )
        if self.degraded:
            text += f" ({len(self.validated)} validated without commit; store unavailable)"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loaded": self.loaded,
            "unchanged": self.unchanged,
            "validated": self.validated,
            "rejected": self.rejected,
            "retired": self.retired,
            "degraded": self.degraded,
            "reconcile": self.reconcile.to_dict() if self.reconcile else None,
        }


class SyncDriver:
    """Owns startup scans and incremental hot-reload passes.

    A full scan loads every new or changed file, retires files that vanished
    and reconciles once. After startup, ``handle_change`` is the watcher's
    reload target; successful changes request a reconciliation that is
    coalesced over ``batch_window`` seconds. Changes seen while the store is
    unavailable are remembered and applied once it recovers.
    """

    def __init__(
        self,
        roots: Sequence[Path],
        loader: CommandLoader,
        reconciler: RemoteReconciler,
        *,
        events: Optional[EventHub] = None,
        batch_window: float = 0.2,
        suffixes: Sequence[str] = (".py",),
    ) -> None:
        self.roots = [Path(root).resolve() for root in roots]
        self.loader = loader
        self.reconciler = reconciler
        self.store = loader.store
        self.events = events or loader.events
        self.batch_window = batch_window
        self.suffixes = tuple(suffixes)
        self.degraded = False
        self.last_scan: Optional[ScanReport] = None
        self._state = DriverState.IDLE
        self._scan_lock = asyncio.Lock()
        self._reconcile_lock = asyncio.Lock()
        self._reconcile_timer: Optional[asyncio.TimerHandle] = None
        self._reconcile_task: Optional[asyncio.Task] = None
        self._rerun_requested = False
        self._deferred: Set[Path] = set()
        self._rescan_on_recovery = False

    @property
    def state(self) -> DriverState:
        return self._state

    async def full_scan(self) -> ScanReport:
        async with self._scan_lock:
            if self._check_store():
                # This scan covers everything deferred during the outage.
                self._deferred.clear()
                self._rescan_on_recovery = False
            report = ScanReport()
            self._state = DriverState.SCANNING
            try:
                files = list(iter_command_files(self.roots, self.suffixes))
                logger.info("Scanning %d command file(s).", len(files))

                self._state = DriverState.LOADING
                for path in files:
                    result = self.loader.load(path, commit=not self.degraded)
                    self._record_load(result, report)
                    await asyncio.sleep(0)

                self._state = DriverState.RETIRING
                if self.degraded:
                    logger.warning("Skipping retirement of removed files; store unavailable.")
                else:
                    self._retire_missing(set(files), report)

                # This pass reconciles the whole registry; drop any batched request.
                self._cancel_pending_reconcile()
                report.reconcile = await self._reconcile()
            finally:
                self._state = DriverState.IDLE

            report.degraded = self.degraded
            if self.degraded:
                self._rescan_on_recovery = True
            else:
                self._deferred.clear()
                self._rescan_on_recovery = False
            self.last_scan = report
            logger.info(report.summary())
            return report

    async def force_full_scan(self) -> ScanReport:
        """Manual resynchronization trigger for administrative tooling."""
        logger.info("Full resynchronization requested.")
        return await self.full_scan()

    async def handle_change(self, path: Path) -> Union[LoadResult, RetireResult]:
        """Apply one debounced file change, then request a reconciliation."""
        path = Path(path).resolve()
        changed = await self._recover(skip=path)
        result = self._apply(path)
        changed = self._settle(path, result) or changed
        if changed:
            self.request_reconcile()
        return result

    def _apply(self, path: Path) -> Union[LoadResult, RetireResult]:
        self._state = DriverState.LOADING
        try:
            if path.exists():
                return self.loader.load(path, commit=not self.degraded)
            if self.degraded:
                logger.warning("Not retiring %s while the store is unavailable.", path)
                return RetireResult(path=path, ok=False, reason="store unavailable", error_kind="store")
            self._state = DriverState.RETIRING
            return self.loader.retire(path)
        finally:
            self._state = DriverState.IDLE

    def _settle(self, path: Path, result: Union[LoadResult, RetireResult]) -> bool:
        """Record the outcome of ``_apply``; True if the registry changed."""
        if result.error_kind == "store":
            self._enter_degraded(result.reason)
        if self.degraded:
            if result.error_kind == "store" or getattr(result, "status", None) is LoadStatus.VALIDATED:
                self._deferred.add(path)
            return False
        if isinstance(result, LoadResult):
            return result.changed
        return result.ok

    async def _recover(self, skip: Optional[Path] = None) -> bool:
        """Replay changes deferred during a store outage once it answers again."""
        if not self._check_store():
            return False
        if self._rescan_on_recovery:
            logger.info("Store recovered after a degraded scan; rescanning.")
            await self.full_scan()
            return False
        pending = sorted(self._deferred - {skip})
        self._deferred.clear()
        if pending:
            logger.info("Applying %d change(s) deferred while the store was unavailable.", len(pending))
        changed = False
        for path in pending:
            changed = self._settle(path, self._apply(path)) or changed
        return changed

    def request_reconcile(self) -> None:
        """Schedule a reconciliation, restarting the batch window."""
        loop = asyncio.get_running_loop()
        if self._reconcile_timer is not None:
            self._reconcile_timer.cancel()
        self._reconcile_timer = loop.call_later(self.batch_window, self._start_batched_reconcile)

    def _start_batched_reconcile(self) -> None:
        self._reconcile_timer = None
        if self._reconcile_task is not None and not self._reconcile_task.done():
            self._rerun_requested = True
            return
        self._reconcile_task = asyncio.ensure_future(self._run_batched_reconcile())

    async def _run_batched_reconcile(self) -> None:
        while True:
            self._rerun_requested = False
            try:
                await self._reconcile()
            except Exception:
                logger.exception("Batched reconciliation failed")
            if not self._rerun_requested:
                break

    async def _reconcile(self) -> ReconcileReport:
        async with self._reconcile_lock:
            previous = self._state
            self._state = DriverState.RECONCILING
            try:
                return await self.reconciler.reconcile()
            finally:
                self._state = previous

    def _cancel_pending_reconcile(self) -> None:
        if self._reconcile_timer is not None:
            self._reconcile_timer.cancel()
            self._reconcile_timer = None

    async def wait_idle(self) -> None:
        """Wait for any batched reconciliation to be scheduled and finish."""
        while True:
            if self._reconcile_timer is not None:
                await asyncio.sleep(max(self.batch_window / 2, 0.01))
                continue
            task = self._reconcile_task
            if task is not None and not task.done():
                await asyncio.gather(task, return_exceptions=True)
                continue
            return

    async def shutdown(self) -> None:
        self._cancel_pending_reconcile()
        task = self._reconcile_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    def _record_load(self, result: LoadResult, report: ScanReport) -> None:
        label = str(result.path)
        if result.status is LoadStatus.LOADED:
            report.loaded.append(label)
        elif result.status is LoadStatus.UNCHANGED:
            report.unchanged.append(label)
        elif result.status is LoadStatus.VALIDATED:
            report.validated.append(label)
        else:
            report.rejected[label] = result.reason
            if result.error_kind == "store":
                self._enter_degraded(result.reason)

    def _retire_missing(self, existing: set, report: ScanReport) -> None:
        try:
            stored = self.store.list_all_hashes()
        except StoreUnavailableError as exc:
            self._enter_degraded(str(exc))
            return
        for raw_path in sorted(stored):
            path = Path(raw_path)
            if path in existing:
                continue
            result = self.loader.retire(path)
            if result.ok:
                report.retired.append(raw_path)
            elif result.error_kind == "store":
                self._enter_degraded(result.reason)
                return

    def _check_store(self) -> bool:
        """Leave degraded mode if the store answers; True on recovery."""
        if not self.degraded:
            return False
        try:
            self.store.ping()
        except StoreUnavailableError:
            return False
        self.degraded = False
        logger.warning("Persistent store is reachable again; resuming commits.")
        self.events.emit(SyncEvent(kind=EventKind.STORE_RECOVERED))
        return True

    def _enter_degraded(self, reason: str) -> None:
        if self.degraded:
            return
        self.degraded = True
        logger.error(
            "Persistent store unavailable (%s); scanning continues but no changes "
            "will be committed until it recovers.",
            reason,
        )
        self.events.emit(SyncEvent(kind=EventKind.STORE_DEGRADED, detail=reason))


__all__ = ["DriverState", "ScanReport", "SyncDriver"]
