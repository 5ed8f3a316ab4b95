"""Load command files from disk into the registry.

A command file is a Python module exporting ``COMMAND``, a
:class:`~cinder.slash_commands.SlashCommand`. Each load evaluates the file's
current bytes into a brand-new module object, validates the export and only
then swaps the result into the registry. Store writes happen before registry
mutations so nothing becomes live without a durable record.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
import importlib.util
from itertools import count
import logging
from pathlib import Path
import sys
from types import ModuleType
from typing import Dict, List, Optional, Set

from .errors import CollisionError, StoreUnavailableError, ValidationError
from .events import EventHub, EventKind, SyncEvent
from .hashing import content_hash
from .registry import CommandRegistry
from .slash_commands import (
    CommandDescriptor,
    validate_command,
    validate_command_name,
)
from .store import CommandStore

logger = logging.getLogger("cinder.loader")

MODULE_PREFIX = "cinder_commands"
_module_counter = count(1)


class LoadStatus(str, Enum):
    LOADED = "loaded"
    UNCHANGED = "unchanged"
    VALIDATED = "validated"  # dry run while the store is unavailable
    REJECTED = "rejected"


@dataclass
class LoadResult:
    path: Path
    status: LoadStatus
    descriptor: Optional[CommandDescriptor] = None
    reason: str = ""
    error_kind: Optional[str] = None  # validation, collision, io, store
    aliases_added: List[str] = field(default_factory=list)
    aliases_removed: List[str] = field(default_factory=list)
    aliases_rejected: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is not LoadStatus.REJECTED

    @property
    def changed(self) -> bool:
        return self.status is LoadStatus.LOADED


@dataclass
class RetireResult:
    path: Path
    name: Optional[str] = None
    aliases_removed: List[str] = field(default_factory=list)
    ok: bool = True
    reason: str = ""
    error_kind: Optional[str] = None


def path_key(path: Path) -> str:
    return str(path)


class CommandLoader:
    """Installs, replaces and retires registry entries for command files."""

    def __init__(
        self,
        registry: CommandRegistry,
        store: CommandStore,
        events: Optional[EventHub] = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.events = events or EventHub()
        self._alias_history: Optional[Dict[str, Set[str]]] = None
        self._shadowed: Dict[Path, str] = {}

    def load(self, path: Path, *, commit: bool = True) -> LoadResult:
        """Load ``path`` and install its command; never raises.

        With ``commit=False`` the file is evaluated and validated but neither
        the store nor the registry is touched.
        """
        path = Path(path).resolve()
        key = path_key(path)

        try:
            data = path.read_bytes()
        except OSError as exc:
            return self._reject(path, f"unable to read file: {exc}", "io")

        checksum = content_hash(data)
        live = self.registry.find_by_path(path)
        try:
            stored_hash = self.store.get_hash(key) if commit else None
        except StoreUnavailableError as exc:
            return self._reject(path, str(exc), "store")

        if commit and stored_hash == checksum and live is not None:
            logger.debug("Command file %s unchanged.", path)
            self._emit(EventKind.FILE_UNCHANGED, path, live.name)
            return LoadResult(path=path, status=LoadStatus.UNCHANGED, descriptor=live)

        if commit and stored_hash == checksum and self._is_shadowed(path):
            self._emit(EventKind.FILE_UNCHANGED, path, self._shadowed[path])
            return LoadResult(path=path, status=LoadStatus.UNCHANGED)

        try:
            module = self._evaluate(path, data)
            command = getattr(module, "COMMAND", None)
            if command is None:
                raise ValidationError("module does not export COMMAND")
            validate_command(command)
        except ValidationError as exc:
            return self._reject(path, str(exc), "validation")
        except Exception as exc:
            return self._reject(path, f"{type(exc).__name__}: {exc}", "validation")

        descriptor = CommandDescriptor.from_command(command, path)
        name = descriptor.name

        owner = self.registry.get(name)
        if owner is not None and owner.is_alias and owner.source_path != path:
            error = CollisionError(name, owner.owner)
            return self._reject(path, f"command name {error}", "collision")

        if not commit:
            logger.info("Validated %s as '%s' (store unavailable, not committed).", path, name)
            return LoadResult(path=path, status=LoadStatus.VALIDATED, descriptor=descriptor)

        try:
            old_name = live.name if live else self.store.get_command_name(key)
            previous_aliases = set(self._recorded_aliases().get(name, ()))
        except StoreUnavailableError as exc:
            return self._reject(path, str(exc), "store")
        renamed = old_name if old_name and old_name != name else None
        previous_aliases |= set(self.registry.aliases_of(name))

        accepted, rejected = self._accept_aliases(descriptor, renamed)
        descriptor = replace(descriptor, aliases=tuple(accepted))
        removed = sorted(previous_aliases - set(accepted))
        added = [alias for alias in accepted if alias not in previous_aliases]

        try:
            with self.store.transaction():
                if renamed and self._owned_by(renamed, path):
                    self.store.delete_all_aliases(renamed)
                for alias in removed:
                    self.store.delete_alias(name, alias)
                for alias in accepted:
                    self.store.set_alias(name, alias)
                self.store.set_hash(key, checksum, name)
        except StoreUnavailableError as exc:
            return self._reject(path, str(exc), "store")

        history = self._recorded_aliases()
        if renamed and self._owned_by(renamed, path):
            history.pop(renamed, None)
        if accepted:
            history[name] = set(accepted)
        else:
            history.pop(name, None)
        self._shadowed.pop(path, None)

        # Durable; apply to the registry without yielding to the event loop.
        if renamed and self._owned_by(renamed, path):
            dropped = self.registry.remove_aliases_of(renamed)
            self.registry.remove(renamed)
            logger.info("Command in %s renamed from '%s' to '%s'; dropped %s.", path, renamed, name, dropped or "no aliases")

        if owner is not None and not owner.is_alias and owner.source_path != path:
            logger.warning(
                "Command name collision: '%s' from %s replaces the one from %s.",
                name,
                path,
                owner.source_path,
            )
            self._shadowed[owner.source_path] = name

        for alias in removed:
            entry = self.registry.get(alias)
            if entry is not None and entry.alias_of == name:
                self.registry.remove(alias)
                logger.info("Removed old alias %s from %s", alias, name)

        self.registry.install(descriptor)
        for alias in accepted:
            self.registry.add_alias(descriptor.alias(alias))

        logger.info(
            "Loaded command %s (%s)%s",
            name,
            descriptor.scope.value,
            f" with aliases {', '.join(accepted)}" if accepted else "",
        )
        self._emit(EventKind.FILE_LOADED, path, name)
        return LoadResult(
            path=path,
            status=LoadStatus.LOADED,
            descriptor=descriptor,
            aliases_added=added,
            aliases_removed=removed,
            aliases_rejected=rejected,
        )

    def retire(self, path: Path) -> RetireResult:
        """Forget a command file that no longer exists; never raises."""
        path = Path(path).resolve()
        key = path_key(path)
        live = self.registry.find_by_path(path)

        try:
            name = live.name if live else self.store.get_command_name(key)
            owns_name = name is not None and self._owned_by(name, path)
            with self.store.transaction():
                self.store.delete_hash(key)
                if owns_name:
                    self.store.delete_all_aliases(name)
        except StoreUnavailableError as exc:
            logger.error("Unable to retire %s: %s", path, exc)
            return RetireResult(path=path, ok=False, reason=str(exc), error_kind="store")

        if owns_name and self._alias_history is not None:
            self._alias_history.pop(name, None)
        self._shadowed.pop(path, None)

        removed: List[str] = []
        if live is not None:
            removed = self.registry.remove_aliases_of(live.name)
            self.registry.remove(live.name)

        logger.info("Removed hash for deleted command: %s", name or path.name)
        self._emit(EventKind.FILE_RETIRED, path, name)
        return RetireResult(path=path, name=name, aliases_removed=removed)

    def _accept_aliases(self, descriptor: CommandDescriptor, renamed: Optional[str]):
        accepted: List[str] = []
        rejected: List[str] = []
        ours = {descriptor.name}
        if renamed:
            ours.add(renamed)
        for alias in descriptor.aliases:
            reason = None
            if alias == descriptor.name:
                reason = "alias repeats the command name"
            else:
                try:
                    validate_command_name(alias)
                except ValidationError as exc:
                    reason = str(exc)
            if reason is None:
                owner = self.registry.owner_of(alias)
                if owner is not None and owner not in ours:
                    reason = str(CollisionError(alias, owner))
            if reason:
                logger.warning("Skipping alias '%s' for '%s': %s", alias, descriptor.name, reason)
                rejected.append(alias)
                continue
            accepted.append(alias)
        return accepted, rejected

    def _owned_by(self, name: str, path: Path) -> bool:
        """True unless ``name`` is live and belongs to a different file."""
        entry = self.registry.get(name)
        return entry is None or entry.source_path == path

    def _is_shadowed(self, path: Path) -> bool:
        """True while another file still serves the name ``path`` lost."""
        name = self._shadowed.get(path)
        if name is None:
            return False
        owner = self.registry.get(name)
        if owner is None or owner.is_alias or owner.source_path == path:
            del self._shadowed[path]
            return False
        logger.info(
            "Command '%s' from %s is shadowed by %s; skipping unchanged file.",
            name,
            path,
            owner.source_path,
        )
        return True

    def _recorded_aliases(self) -> Dict[str, Set[str]]:
        # Read from the store once, then kept in step with every commit.
        if self._alias_history is None:
            self._alias_history = self.store.list_all_aliases()
            logger.debug("Restored alias history for %d command(s).", len(self._alias_history))
        return self._alias_history

    def _evaluate(self, path: Path, data: bytes) -> ModuleType:
        module_name = f"{MODULE_PREFIX}.{path.stem}_{next(_module_counter)}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None:
            raise ValidationError(f"unable to build an import spec for {path}")
        module = importlib.util.module_from_spec(spec)
        code = compile(data, str(path), "exec")
        sys.modules[module_name] = module
        try:
            exec(code, module.__dict__)
        finally:
            sys.modules.pop(module_name, None)
        return module

    def _reject(self, path: Path, reason: str, kind: str) -> LoadResult:
        if kind == "store":
            logger.error("Failed to load command %s: %s", path, reason)
        else:
            logger.error("Failed to load command %s: %s", path.name, reason)
        live = self.registry.find_by_path(path)
        self._emit(EventKind.FILE_REJECTED, path, live.name if live else None, reason)
        return LoadResult(
            path=path,
            status=LoadStatus.REJECTED,
            descriptor=live,
            reason=reason,
            error_kind=kind,
        )

    def _emit(self, kind: EventKind, path: Path, name: Optional[str], detail: str = "") -> None:
        self.events.emit(SyncEvent(kind=kind, path=str(path), name=name, detail=detail))


__all__ = ["CommandLoader", "LoadResult", "LoadStatus", "RetireResult", "path_key"]
