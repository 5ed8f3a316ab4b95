# cinder/app.py
"""
Runtime entry point wiring the command registry, hot reloader and remote
reconciliation together.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from io import StringIO
import logging
import os
from pathlib import Path
import shutil
from typing import Callable, List, Optional

from rich.console import Console
from rich.table import Table

from .configuration import (
    ConfigurationBundle,
    Diagnostic,
    load_runtime_configuration,
    resolve_home_dir,
)
from .driver import SyncDriver
from .errors import StoreUnavailableError
from .events import EventHub, SyncEvent
from .loader import CommandLoader
from .logging_utils import setup_logging
from .reconciler import RemoteReconciler
from .registry import CommandRegistry
from .remote import HTTPPlatformClient, PlatformClient, RemoteSettings
from .store import CommandStore
from .watcher import FileWatcher, ReloadScheduler

logger = logging.getLogger("cinder")


@dataclass
class Runtime:
    """Every long-lived collaborator, constructed once per process."""

    config: ConfigurationBundle
    store: CommandStore
    registry: CommandRegistry
    events: EventHub
    loader: CommandLoader
    reconciler: RemoteReconciler
    driver: SyncDriver
    scheduler: ReloadScheduler
    watcher: FileWatcher
    roots: List[Path]


def command_roots(config: ConfigurationBundle) -> List[Path]:
    directories = config.section("commands").get("directories") or ["commands"]
    roots = [config.resolve_path(str(entry).strip()) for entry in directories if str(entry).strip()]
    return list(dict.fromkeys(roots))  # preserve order, drop duplicates


def build_runtime(
    config: ConfigurationBundle,
    client: Optional[PlatformClient] = None,
) -> Runtime:
    """Construct the store, registry, loader, reconciler, driver and watcher."""

    commands_cfg = config.section("commands")
    watcher_cfg = config.section("watcher")
    reconcile_cfg = config.section("reconcile")
    store_cfg = config.section("store")

    settings = RemoteSettings.from_config(config.merged)
    roots = command_roots(config)
    suffixes = tuple(commands_cfg.get("suffixes") or [".py"])

    store = CommandStore(config.resolve_path(store_cfg.get("path", "state/commands.db")))
    store.initialize()

    registry = CommandRegistry()
    events = EventHub()
    loader = CommandLoader(registry, store, events)
    reconciler = RemoteReconciler(
        registry,
        client or HTTPPlatformClient(settings),
        timeout=settings.timeout,
        enabled=settings.enabled,
        restricted_enabled=settings.restricted_enabled,
        events=events,
    )
    driver = SyncDriver(
        roots,
        loader,
        reconciler,
        events=events,
        batch_window=float(reconcile_cfg.get("batch_window_ms", 200)) / 1000.0,
        suffixes=suffixes,
    )
    scheduler = ReloadScheduler(
        driver.handle_change,
        debounce=float(watcher_cfg.get("debounce_ms", 200)) / 1000.0,
        cooldown=float(watcher_cfg.get("cooldown_ms", 100)) / 1000.0,
    )
    watcher = FileWatcher(
        roots,
        scheduler,
        suffixes=suffixes,
        poll_interval=float(watcher_cfg.get("poll_interval", 0.25)),
        enabled=bool(watcher_cfg.get("enabled", True)),
    )
    return Runtime(
        config=config,
        store=store,
        registry=registry,
        events=events,
        loader=loader,
        reconciler=reconciler,
        driver=driver,
        scheduler=scheduler,
        watcher=watcher,
        roots=roots,
    )


async def run(runtime: Runtime, stop: Optional[asyncio.Event] = None) -> None:
    """Initial scan, then hot reload until ``stop`` is set or the task is cancelled."""

    stop = stop or asyncio.Event()
    report = await runtime.driver.full_scan()
    if report.rejected:
        for path, reason in report.rejected.items():
            logger.warning("Rejected %s: %s", path, reason)
    await runtime.watcher.start()
    try:
        await stop.wait()
    finally:
        await runtime.watcher.stop()
        await runtime.driver.shutdown()
        runtime.store.close()


def render_status(runtime: Runtime) -> str:
    """Render watcher, registry and reconciliation state as a Rich table."""

    status = runtime.watcher.status()
    registry = runtime.registry
    report = runtime.reconciler.last_report

    def _render(console: Console) -> None:
        table = Table(title="Command Sync Status", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("Hot reload", "enabled" if status.enabled else "disabled")
        table.add_row("Roots", "\n".join(str(root) for root in runtime.roots) or "(none)")
        table.add_row("Watching", f"{len(status.watching)} director(ies)")
        table.add_row("Pending reloads", str(status.pending_reloads))
        table.add_row("Locked files", str(status.locked_files))
        primaries = registry.primaries()
        table.add_row("Commands", str(len(primaries)))
        table.add_row("Aliases", str(registry.size() - len(primaries)))
        table.add_row("Store", "degraded" if runtime.driver.degraded else "ok")
        if report is not None:
            for partition, result in report.partitions.items():
                detail = result.status
                if result.error:
                    detail += f" ({result.error})"
                table.add_row(f"Remote {partition.value}", detail)
        for path, reason in status.failed.items():
            table.add_row("Watch error", f"{path}: {reason}")
        console.print(table)

    return render_rich(_render)


def render_rich(render_fn: Callable[[Console], None]) -> str:
    """Render a Rich layout to an ANSI string without printing live."""

    terminal_size = shutil.get_terminal_size(fallback=(80, 24))
    # Clamp to a reasonable minimum so Rich does not choke on ultra-small widths.
    width = max(20, terminal_size.columns)
    height = max(10, terminal_size.lines)

    console = Console(
        record=True,
        force_terminal=True,
        color_system="auto",
        width=width,
        height=height,
        file=StringIO(),
    )
    render_fn(console)
    return console.export_text(clear=False, styles=True)


def emit_configuration_report(config: ConfigurationBundle) -> None:
    """Print diagnostics so operators can correct issues quickly."""

    if not config.diagnostics:
        print(
            f"[config] Loaded {len(config.files_loaded)} file(s) "
            f"from repo and home config directories."
        )
        return

    print("[config] Diagnostics:")
    for diag in config.diagnostics:
        prefix = diag.source or config.home_dir
        print(f"  - ({diag.level.upper()}) {diag.message} [{prefix}]")


def _log_event(event: SyncEvent) -> None:
    logger.debug("event %s", event.kind.value, extra={"event": event.to_dict()})


def _log_path_within_home(log_path: Path, home_dir: Path) -> bool:
    try:
        log_path.relative_to(home_dir)
        return True
    except ValueError:
        return False


def main() -> None:
    """Entry point for `python -m cinder`."""

    config_bundle = load_runtime_configuration(resolve_home_dir())
    emit_configuration_report(config_bundle)

    logging_cfg = config_bundle.section("logging")
    env_level = os.environ.get("CINDER_LOG_LEVEL")
    log_level_name = (env_level or logging_cfg.get("level") or "INFO").upper()
    log_path = setup_logging(
        config_bundle.home_dir,
        log_level_name,
        structured=bool(logging_cfg.get("structured", True)),
    )
    config_bundle.log_path = log_path
    if not _log_path_within_home(log_path, config_bundle.home_dir):
        config_bundle.diagnostics.append(
            Diagnostic(
                level="warning",
                message=(
                    "Home log directory is not writable; "
                    f"logging to fallback path '{log_path}'."
                ),
                source=log_path,
            )
        )
    logger.info("Logging initialized at %s", log_path)

    try:
        runtime = build_runtime(config_bundle)
    except StoreUnavailableError as exc:
        logger.error("Cannot start: %s", exc)
        raise SystemExit(1) from exc
    runtime.events.subscribe(_log_event)

    async def _main() -> None:
        task = asyncio.create_task(run(runtime))
        # Let the initial scan finish before printing the overview.
        while runtime.driver.last_scan is None and not task.done():
            await asyncio.sleep(0.05)
        print(render_status(runtime))
        await task

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        print("\n[Exiting Cinder]")


__all__ = [
    "Runtime",
    "build_runtime",
    "command_roots",
    "main",
    "render_rich",
    "render_status",
    "run",
]
