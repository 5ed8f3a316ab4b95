from pathlib import Path

import pytest

from cinder.registry import CommandRegistry
from cinder.slash_commands import CommandDescriptor, SlashCommand


def _descriptor(name: str, path: Path, aliases=()) -> CommandDescriptor:
    command = SlashCommand(name=name, description=f"{name} command", handler=lambda: None, aliases=aliases)
    return CommandDescriptor.from_command(command, path)


def test_install_and_aliases(tmp_path: Path):
    registry = CommandRegistry()
    ping = _descriptor("ping", tmp_path / "ping.py", aliases=["latency"])

    assert registry.install(ping) is None
    registry.add_alias(ping.alias("latency"))

    assert "ping" in registry
    assert registry.has("latency")
    assert len(registry) == 2
    assert registry.names() == ["latency", "ping"]
    assert [entry.name for entry in registry.primaries()] == ["ping"]
    assert registry.aliases_of("ping") == ["latency"]
    assert registry.owner_of("latency") == "ping"
    assert registry.find_by_path(tmp_path / "ping.py") is ping


def test_install_returns_replaced_entry(tmp_path: Path):
    registry = CommandRegistry()
    first = _descriptor("ping", tmp_path / "ping.py")
    second = _descriptor("ping", tmp_path / "ping.py")

    registry.install(first)

    assert registry.install(second) is first
    assert registry.get("ping") is second
    assert registry.size() == 1


def test_values_is_a_snapshot(tmp_path: Path):
    registry = CommandRegistry()
    registry.install(_descriptor("ping", tmp_path / "ping.py"))

    snapshot = registry.values()
    registry.remove("ping")

    assert [entry.name for entry in snapshot] == ["ping"]
    assert registry.get("ping") is None


def test_remove_aliases_of_only_touches_owner(tmp_path: Path):
    registry = CommandRegistry()
    ping = _descriptor("ping", tmp_path / "ping.py")
    ban = _descriptor("ban", tmp_path / "ban.py")
    registry.install(ping)
    registry.install(ban)
    registry.add_alias(ping.alias("latency"))
    registry.add_alias(ban.alias("kick"))

    assert registry.remove_aliases_of("ping") == ["latency"]
    assert registry.names() == ["ban", "kick", "ping"]


def test_install_rejects_alias_descriptor(tmp_path: Path):
    registry = CommandRegistry()
    ping = _descriptor("ping", tmp_path / "ping.py")

    with pytest.raises(ValueError):
        registry.install(ping.alias("latency"))
    with pytest.raises(ValueError):
        registry.add_alias(ping)
