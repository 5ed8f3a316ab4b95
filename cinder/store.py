"""SQLite persistence for command content hashes and alias history."""

from __future__ import annotations

from contextlib import contextmanager
import logging
import sqlite3
from pathlib import Path
from typing import Dict, Iterator, Optional, Set

from .errors import StoreUnavailableError

logger = logging.getLogger("cinder.store")


class CommandStore:
    """Durable record of what has already been synchronized.

    Maps a command file path to the checksum of the content last loaded from
    it, and a command name to the alias names registered for it. Every write
    is committed before the call returns; ``transaction()`` groups several
    writes into a single commit.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._depth = 0

    def initialize(self) -> None:
        """Open the database and create tables."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._create_tables()
        except (OSError, sqlite3.Error) as exc:
            raise StoreUnavailableError(f"Unable to open store at {self.db_path}: {exc}") from exc
        logger.debug("Command store ready at %s", self.db_path)

    def _create_tables(self) -> None:
        cursor = self._conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS command_hashes (
                command_path TEXT PRIMARY KEY,
                hash INTEGER NOT NULL,
                command_name TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS command_aliases (
                command_name TEXT NOT NULL,
                alias TEXT NOT NULL,
                PRIMARY KEY (command_name, alias)
            )
        """)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def connection(self) -> sqlite3.Connection:
        if not self._conn:
            raise StoreUnavailableError("Store not initialized")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator["CommandStore"]:
        """Group writes so they become durable together or not at all."""
        conn = self.connection
        outermost = self._depth == 0
        try:
            if outermost:
                conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            if outermost:
                conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if outermost and conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreUnavailableError(f"Store transaction failed: {exc}") from exc
        except BaseException:
            if outermost and conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self.connection.execute(sql, params)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Store query failed: {exc}") from exc

    def ping(self) -> None:
        """Raise ``StoreUnavailableError`` unless the store answers queries."""
        self._execute("SELECT 1").fetchone()

    # Hashes

    def get_hash(self, path: str) -> Optional[int]:
        row = self._execute(
            "SELECT hash FROM command_hashes WHERE command_path = ?", (path,)
        ).fetchone()
        return int(row["hash"]) if row else None

    def get_command_name(self, path: str) -> Optional[str]:
        row = self._execute(
            "SELECT command_name FROM command_hashes WHERE command_path = ?", (path,)
        ).fetchone()
        return row["command_name"] if row else None

    def set_hash(self, path: str, value: int, command_name: Optional[str] = None) -> None:
        self._execute(
            "INSERT OR REPLACE INTO command_hashes (command_path, hash, command_name) VALUES (?, ?, ?)",
            (path, int(value), command_name),
        )

    def delete_hash(self, path: str) -> None:
        self._execute("DELETE FROM command_hashes WHERE command_path = ?", (path,))

    def list_all_hashes(self) -> Dict[str, int]:
        rows = self._execute("SELECT command_path, hash FROM command_hashes").fetchall()
        return {row["command_path"]: int(row["hash"]) for row in rows}

    # Aliases

    def get_aliases(self, command_name: str) -> Set[str]:
        rows = self._execute(
            "SELECT alias FROM command_aliases WHERE command_name = ?", (command_name,)
        ).fetchall()
        return {row["alias"] for row in rows}

    def set_alias(self, command_name: str, alias: str) -> None:
        self._execute(
            "INSERT OR REPLACE INTO command_aliases (command_name, alias) VALUES (?, ?)",
            (command_name, alias),
        )

    def delete_alias(self, command_name: str, alias: str) -> None:
        self._execute(
            "DELETE FROM command_aliases WHERE command_name = ? AND alias = ?",
            (command_name, alias),
        )

    def delete_all_aliases(self, command_name: str) -> None:
        self._execute("DELETE FROM command_aliases WHERE command_name = ?", (command_name,))

    def list_all_aliases(self) -> Dict[str, Set[str]]:
        rows = self._execute("SELECT command_name, alias FROM command_aliases").fetchall()
        aliases: Dict[str, Set[str]] = {}
        for row in rows:
            aliases.setdefault(row["command_name"], set()).add(row["alias"])
        return aliases


__all__ = ["CommandStore"]
