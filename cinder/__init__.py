"""Command registry synchronization and hot reload for slash-command bots."""

from .registry import CommandRegistry
from .slash_commands import CommandOption, CommandScope, OptionType, SlashCommand

__all__ = [
    "CommandOption",
    "CommandRegistry",
    "CommandScope",
    "OptionType",
    "SlashCommand",
]
