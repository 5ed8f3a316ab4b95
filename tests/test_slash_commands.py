"""Unit tests for slash command definitions and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from cinder.errors import ValidationError
from cinder.slash_commands import (
    CommandDescriptor,
    CommandOption,
    CommandScope,
    OptionType,
    SlashCommand,
    validate_command,
    validate_command_name,
)


def _noop(*_args):
    return None


def test_schema_includes_options_and_choices():
    command = SlashCommand(
        name="roll",
        description="Roll dice",
        handler=_noop,
        options=[
            CommandOption(
                name="sides",
                description="Number of sides",
                type=OptionType.INTEGER,
                required=True,
                choices=[("six", 6), ("twenty", 20)],
            )
        ],
    )

    schema = command.to_schema()

    assert schema["name"] == "roll"
    assert schema["type"] == 1
    assert schema["options"] == [
        {
            "name": "sides",
            "description": "Number of sides",
            "type": 4,
            "required": True,
            "choices": [{"name": "six", "value": 6}, {"name": "twenty", "value": 20}],
        }
    ]


def test_descriptor_dedupes_aliases_and_builds_alias_entries(tmp_path: Path):
    command = SlashCommand(
        name="ping",
        description="Check latency",
        handler=_noop,
        aliases=["latency", " latency ", "", "pong"],
    )

    descriptor = CommandDescriptor.from_command(command, tmp_path / "ping.py")
    alias = descriptor.alias("pong")

    assert descriptor.aliases == ("latency", "pong")
    assert descriptor.owner == "ping"
    assert not descriptor.is_alias
    assert alias.is_alias
    assert alias.owner == "ping"
    assert alias.schema["name"] == "pong"
    assert alias.scope is CommandScope.GLOBAL
    assert alias.source_path == descriptor.source_path


@pytest.mark.parametrize("name", ["ping", "a", "x" * 32, "snake_case", "kebab-case", "v2"])
def test_validate_command_name_accepts_platform_names(name: str):
    assert validate_command_name(name) == name


@pytest.mark.parametrize("name", ["", "Ping", "x" * 33, "has space", "emoji!", None])
def test_validate_command_name_rejects_bad_names(name):
    with pytest.raises(ValidationError):
        validate_command_name(name)


def test_validate_command_requires_slash_command():
    with pytest.raises(ValidationError, match="SlashCommand"):
        validate_command({"name": "ping"})


def test_validate_command_rejects_long_description():
    command = SlashCommand(name="ping", description="x" * 101, handler=_noop)

    with pytest.raises(ValidationError, match="100"):
        validate_command(command)


def test_validate_command_rejects_missing_handler():
    command = SlashCommand(name="ping", description="Ping", handler=None)

    with pytest.raises(ValidationError, match="handler"):
        validate_command(command)


def test_validate_command_rejects_unknown_scope():
    command = SlashCommand(name="ping", description="Ping", handler=_noop, scope="guild")

    with pytest.raises(ValidationError, match="scope"):
        validate_command(command)


def test_validate_command_rejects_string_aliases():
    command = SlashCommand(name="ping", description="Ping", handler=_noop, aliases="pong")

    with pytest.raises(ValidationError, match="aliases"):
        validate_command(command)


def test_validate_command_accepts_scope_value_string():
    command = SlashCommand(name="ban", description="Ban a user", handler=_noop, scope="restricted")

    assert validate_command(command) is command
