"""Slash command definitions and the descriptors registered from them."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from pathlib import Path
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import ValidationError

SlashCommandHandler = Callable[..., Any]

COMMAND_NAME_PATTERN = re.compile(r"^[-_a-z0-9]{1,32}$")
MAX_DESCRIPTION_LENGTH = 100


class CommandScope(str, Enum):
    """Remote namespace a command is published into."""

    GLOBAL = "global"
    RESTRICTED = "restricted"


class OptionType(IntEnum):
    STRING = 3
    INTEGER = 4
    BOOLEAN = 5
    USER = 6
    CHANNEL = 7
    ROLE = 8
    NUMBER = 10


@dataclass
class CommandOption:
    """A single argument accepted by a slash command."""

    name: str
    description: str
    type: OptionType = OptionType.STRING
    required: bool = False
    choices: Sequence[Tuple[str, Any]] = ()

    def to_schema(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "type": int(self.type),
            "required": self.required,
        }
        if self.choices:
            payload["choices"] = [
                {"name": label, "value": value} for label, value in self.choices
            ]
        return payload


@dataclass
class SlashCommand:
    """Metadata about a slash command, exported by a command file as ``COMMAND``."""

    name: str
    description: str
    handler: SlashCommandHandler
    options: Sequence[CommandOption] = ()
    aliases: Sequence[str] = ()
    scope: CommandScope = CommandScope.GLOBAL

    def to_schema(self, name: Optional[str] = None) -> Dict[str, Any]:
        """Render the payload the remote platform needs to expose the command."""
        return {
            "name": name or self.name,
            "description": self.description,
            "type": 1,
            "options": [option.to_schema() for option in self.options],
        }


@dataclass(frozen=True)
class CommandDescriptor:
    """A registry entry: either a primary command or one of its aliases."""

    name: str
    schema: Dict[str, Any] = field(compare=False)
    scope: CommandScope
    source_path: Path
    command: SlashCommand = field(compare=False, repr=False)
    aliases: Tuple[str, ...] = ()
    alias_of: Optional[str] = None

    @property
    def is_alias(self) -> bool:
        return self.alias_of is not None

    @property
    def owner(self) -> str:
        """Name of the primary command this entry belongs to."""
        return self.alias_of or self.name

    def alias(self, alias_name: str) -> "CommandDescriptor":
        """Build the registry entry for one of this primary's aliases."""
        return replace(
            self,
            name=alias_name,
            schema=self.command.to_schema(alias_name),
            aliases=(),
            alias_of=self.name,
        )

    @classmethod
    def from_command(cls, command: SlashCommand, source_path: Path) -> "CommandDescriptor":
        return cls(
            name=command.name,
            schema=command.to_schema(),
            scope=CommandScope(command.scope),
            source_path=source_path,
            command=command,
            aliases=tuple(dict.fromkeys(a.strip() for a in command.aliases if a and a.strip())),
        )


def validate_command_name(name: Any) -> str:
    """Return ``name`` if it satisfies the platform's naming rules."""

    if not isinstance(name, str) or not name.strip():
        raise ValidationError("command name is missing")
    if not COMMAND_NAME_PATTERN.match(name):
        raise ValidationError(
            f"command name '{name}' must be 1-32 lowercase letters, digits, '-' or '_'"
        )
    return name


def validate_command(command: Any) -> SlashCommand:
    """Check that an exported object describes a registrable command."""

    if not isinstance(command, SlashCommand):
        raise ValidationError(
            f"COMMAND must be a SlashCommand, got {type(command).__name__}"
        )
    validate_command_name(command.name)
    if not callable(command.handler):
        raise ValidationError(f"command '{command.name}' has no callable handler")
    if not isinstance(command.description, str) or not command.description.strip():
        raise ValidationError(f"command '{command.name}' is missing a description")
    if len(command.description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"command '{command.name}' description exceeds {MAX_DESCRIPTION_LENGTH} characters"
        )
    try:
        CommandScope(command.scope)
    except ValueError as exc:
        raise ValidationError(f"command '{command.name}' has unknown scope {command.scope!r}") from exc
    if isinstance(command.aliases, str):
        raise ValidationError(f"command '{command.name}' aliases must be a sequence of names")
    return command


__all__ = [
    "CommandDescriptor",
    "CommandOption",
    "CommandScope",
    "OptionType",
    "SlashCommand",
    "SlashCommandHandler",
    "validate_command",
    "validate_command_name",
]
