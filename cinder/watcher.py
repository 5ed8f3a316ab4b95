"""Recursive command-file watcher with debounced, per-path serialized reloads."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
import os
from pathlib import Path
import time
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger("cinder.watcher")

DEFAULT_DEBOUNCE = 0.2
DEFAULT_COOLDOWN = 0.1
DEFAULT_POLL_INTERVAL = 0.25
IGNORED_DIRS = {"__pycache__", "node_modules"}

ReloadHandler = Callable[[Path], Awaitable[Any]]
Snapshot = Dict[Path, Tuple[int, int]]


def is_command_file(path: Path, suffixes: Sequence[str]) -> bool:
    name = path.name
    if name.startswith(("_", ".")):
        return False
    return any(name.endswith(suffix) for suffix in suffixes)


def _skip_dir(name: str) -> bool:
    return name in IGNORED_DIRS or name.startswith(".")


def iter_command_files(roots: Sequence[Path], suffixes: Sequence[str] = (".py",)) -> Iterator[Path]:
    """Yield every command file below ``roots`` in a stable order."""
    for root in roots:
        if not root.is_dir():
            logger.warning("Directory not found: %s", root)
            continue
        for dirpath, dirnames, filenames in os.walk(root, onerror=_log_walk_error):
            dirnames[:] = sorted(d for d in dirnames if not _skip_dir(d))
            for filename in sorted(filenames):
                candidate = Path(dirpath) / filename
                if is_command_file(candidate, suffixes):
                    yield candidate.resolve()


def _log_walk_error(exc: OSError) -> None:
    logger.error("Failed to scan %s: %s", exc.filename, exc.strerror or exc)


def _default_mtime(path: Path) -> Optional[int]:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None


class PathState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    LOCKED = "locked"


class ReloadScheduler:
    """Per-path state machine: Idle -> Pending(timer) -> Locked -> Idle.

    ``notify`` (re)starts a debounce timer for a path. When it fires, the
    reload runs under that path's lock, after a staleness check against the
    last modification time processed for the path. Notifications that arrive
    within ``cooldown`` of a reload starting are rejected, and the path is
    re-notified once the cooldown has elapsed so the write is not lost.
    """

    def __init__(
        self,
        handler: ReloadHandler,
        *,
        debounce: float = DEFAULT_DEBOUNCE,
        cooldown: float = DEFAULT_COOLDOWN,
        mtime_of: Callable[[Path], Optional[int]] = _default_mtime,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.handler = handler
        self.debounce = debounce
        self.cooldown = cooldown
        self._mtime_of = mtime_of
        self._clock = clock
        self._timers: Dict[Path, asyncio.TimerHandle] = {}
        self._deferred: Dict[Path, asyncio.TimerHandle] = {}
        self._locks: Dict[Path, asyncio.Lock] = {}
        self._started: Dict[Path, float] = {}
        self._running: Set[Path] = set()
        self._last_mtime: Dict[Path, int] = {}
        self._tasks: Set[asyncio.Task] = set()

    def prime(self, path: Path, mtime: Optional[int] = None) -> None:
        """Record ``path`` as already processed at its current mtime."""
        value = mtime if mtime is not None else self._mtime_of(path)
        if value is not None:
            self._last_mtime[path] = value

    def state(self, path: Path) -> PathState:
        if path in self._running:
            return PathState.LOCKED
        if path in self._timers or path in self._deferred:
            return PathState.PENDING
        return PathState.IDLE

    def notify(self, path: Path) -> bool:
        """Schedule a debounced reload of ``path``; False if rejected."""
        started = self._started.get(path)
        if started is not None:
            elapsed = self._clock() - started
            if elapsed < self.cooldown:
                logger.debug("Deferring change to %s until reload cooldown ends.", path)
                if path not in self._deferred:
                    loop = asyncio.get_running_loop()
                    self._deferred[path] = loop.call_later(self.cooldown - elapsed, self._retry, path)
                return False
            del self._started[path]

        loop = asyncio.get_running_loop()
        deferred = self._deferred.pop(path, None)
        if deferred is not None:
            deferred.cancel()
        timer = self._timers.pop(path, None)
        if timer is not None:
            timer.cancel()
        self._timers[path] = loop.call_later(self.debounce, self._fire, path)
        return True

    def _retry(self, path: Path) -> None:
        self._deferred.pop(path, None)
        self.notify(path)

    def _fire(self, path: Path) -> None:
        self._timers.pop(path, None)
        task = asyncio.ensure_future(self._run(path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, path: Path) -> None:
        lock = self._locks.setdefault(path, asyncio.Lock())
        async with lock:
            self._started[path] = self._clock()
            self._running.add(path)
            try:
                mtime = self._mtime_of(path)
                if mtime is None:
                    self._last_mtime.pop(path, None)
                else:
                    last = self._last_mtime.get(path)
                    if last is not None and mtime <= last:
                        logger.debug("Skipping reload of %s; already processed.", path)
                        return
                    self._last_mtime[path] = mtime
                logger.info("Updating: %s", path.name)
                await self.handler(path)
            except Exception as exc:
                logger.error("Failed to reload %s: %s", path.name, exc, exc_info=True)
            finally:
                self._running.discard(path)

    @property
    def pending(self) -> List[Path]:
        return sorted(set(self._timers) | set(self._deferred))

    @property
    def locked(self) -> List[Path]:
        return sorted(self._running)

    async def drain(self) -> None:
        """Wait until no timers are pending and no reloads are running."""
        while self._timers or self._deferred or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(max(self.debounce / 4, 0.01))

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for timer in self._deferred.values():
            timer.cancel()
        self._deferred.clear()
        for task in list(self._tasks):
            task.cancel()


@dataclass
class WatcherStatus:
    enabled: bool
    watching: List[str] = field(default_factory=list)
    pending_reloads: int = 0
    locked_files: int = 0
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "watching": self.watching,
            "pending_reloads": self.pending_reloads,
            "locked_files": self.locked_files,
            "failed": self.failed,
        }


class FileWatcher:
    """Polls a set of root directories recursively and feeds the scheduler.

    Each poll snapshots ``(mtime_ns, size)`` for every command file below the
    roots, picking up new subdirectories as they appear. Created, modified and
    deleted files are reported to the scheduler as raw change notifications.
    """

    def __init__(
        self,
        roots: Sequence[Path],
        scheduler: ReloadScheduler,
        *,
        suffixes: Sequence[str] = (".py",),
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        enabled: bool = True,
    ) -> None:
        self.roots = [Path(root).resolve() for root in roots]
        self.scheduler = scheduler
        self.suffixes = tuple(suffixes)
        self.poll_interval = poll_interval
        self.enabled = enabled
        self._snapshot: Snapshot = {}
        self._dirs: Set[Path] = set()
        self._failed: Dict[Path, str] = {}
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def prime(self) -> None:
        """Take the baseline snapshot without emitting notifications."""
        self._snapshot = self._scan()
        for path, (mtime_ns, _size) in self._snapshot.items():
            self.scheduler.prime(path, mtime_ns)
        logger.debug("Watching %d file(s) in %d director(ies).", len(self._snapshot), len(self._dirs))

    def poll_once(self) -> List[Path]:
        """Scan once and notify the scheduler about every changed path."""
        current = self._scan()
        previous = self._snapshot
        changed: List[Path] = []
        for path, signature in current.items():
            if previous.get(path) != signature:
                changed.append(path)
        for path in previous:
            if path not in current:
                changed.append(path)
        self._snapshot = current
        for path in changed:
            self.scheduler.notify(path)
        return changed

    def _scan(self) -> Snapshot:
        snapshot: Snapshot = {}
        dirs: Set[Path] = set()
        for root in self.roots:
            if not root.is_dir():
                if root not in self._failed:
                    logger.warning("Directory not found: %s", root)
                    self._failed[root] = "not found"
                continue
            if self._failed.get(root) == "not found":
                del self._failed[root]
            self._scan_dir(root, snapshot, dirs)
        if self._dirs:
            for new_dir in sorted(dirs - self._dirs):
                logger.info("Watching new directory %s", new_dir)
        self._dirs = dirs
        return snapshot

    def _scan_dir(self, directory: Path, snapshot: Snapshot, dirs: Set[Path]) -> None:
        try:
            with os.scandir(directory) as entries:
                items = list(entries)
        except FileNotFoundError:
            # Vanished between listing and scanning; its files count as deleted.
            self._failed.pop(directory, None)
            return
        except OSError as exc:
            if directory not in self._failed:
                logger.error("Watch error for directory %s: %s", directory, exc.strerror or exc)
            self._failed[directory] = exc.strerror or str(exc)
            self._carry_over(directory, snapshot)
            return

        if self._failed.pop(directory, None) is not None:
            logger.info("Directory %s is readable again", directory)
        dirs.add(directory)
        for entry in items:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if not _skip_dir(entry.name):
                        self._scan_dir(Path(entry.path), snapshot, dirs)
                    continue
                path = Path(entry.path)
                if not entry.is_file() or not is_command_file(path, self.suffixes):
                    continue
                stat = entry.stat()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.error("Watch error for %s: %s", entry.path, exc.strerror or exc)
                continue
            snapshot[path.resolve()] = (stat.st_mtime_ns, stat.st_size)

    def _carry_over(self, directory: Path, snapshot: Snapshot) -> None:
        # Files under an unreadable subtree keep their last known state.
        for path, signature in self._snapshot.items():
            if directory in path.parents:
                snapshot[path] = signature

    async def start(self) -> None:
        if not self.enabled:
            logger.warning("Hot reload is disabled in configuration")
            return
        if self.running:
            return
        self.prime()
        self._task = asyncio.create_task(self._loop(), name="cinder-watcher")
        logger.info("Hot reload system initialized")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                self.poll_once()
            except Exception:
                logger.exception("Watcher poll failed")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.scheduler.cancel_all()

    def status(self) -> WatcherStatus:
        return WatcherStatus(
            enabled=self.enabled,
            watching=[str(path) for path in sorted(self._dirs)],
            pending_reloads=len(self.scheduler.pending),
            locked_files=len(self.scheduler.locked),
            failed={str(path): reason for path, reason in self._failed.items()},
        )


__all__ = [
    "FileWatcher",
    "PathState",
    "ReloadScheduler",
    "WatcherStatus",
    "is_command_file",
    "iter_command_files",
]
