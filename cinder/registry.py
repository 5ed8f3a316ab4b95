"""In-memory command registry shared by the loader, reconciler and runtime."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .slash_commands import CommandDescriptor

logger = logging.getLogger("cinder.registry")


class CommandRegistry:
    """Name -> descriptor map holding primaries and aliases side by side.

    Readers may call ``get``/``has``/``values`` at any time; mutation is
    reserved for ``CommandLoader``. Every mutation is a single dict operation
    keyed by name, so a reader never observes a half-applied descriptor.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, CommandDescriptor] = {}

    # Read view

    def get(self, name: str) -> Optional[CommandDescriptor]:
        return self._entries.get(name)

    def has(self, name: str) -> bool:
        return name in self._entries

    def size(self) -> int:
        return len(self._entries)

    def values(self) -> List[CommandDescriptor]:
        return list(self._entries.values())

    def names(self) -> List[str]:
        return sorted(self._entries.keys())

    def primaries(self) -> List[CommandDescriptor]:
        return [entry for entry in self._entries.values() if not entry.is_alias]

    def aliases_of(self, name: str) -> List[str]:
        return sorted(
            entry.name for entry in self._entries.values() if entry.alias_of == name
        )

    def find_by_path(self, path: Path) -> Optional[CommandDescriptor]:
        """Return the live primary loaded from ``path``."""
        for entry in self._entries.values():
            if not entry.is_alias and entry.source_path == path:
                return entry
        return None

    def owner_of(self, name: str) -> Optional[str]:
        """Name of the primary that currently owns ``name``, if any."""
        entry = self._entries.get(name)
        return entry.owner if entry else None

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CommandDescriptor]:
        return iter(self.values())

    # Mutations

    def install(self, descriptor: CommandDescriptor) -> Optional[CommandDescriptor]:
        """Insert or atomically replace a primary entry."""
        if descriptor.is_alias:
            raise ValueError("install() expects a primary descriptor; use add_alias().")
        previous = self._entries.get(descriptor.name)
        self._entries[descriptor.name] = descriptor
        logger.debug("Installed command '%s' from %s.", descriptor.name, descriptor.source_path)
        return previous

    def add_alias(self, descriptor: CommandDescriptor) -> None:
        if not descriptor.is_alias:
            raise ValueError("add_alias() expects an alias descriptor.")
        self._entries[descriptor.name] = descriptor
        logger.debug("Installed alias '%s' for '%s'.", descriptor.name, descriptor.alias_of)

    def remove(self, name: str) -> Optional[CommandDescriptor]:
        return self._entries.pop(name, None)

    def remove_aliases_of(self, name: str) -> List[str]:
        removed = self.aliases_of(name)
        for alias in removed:
            self._entries.pop(alias, None)
        return removed


__all__ = ["CommandRegistry"]
