"""Async SQLite database layer for Sona Wallet.

Uses ``aiosqlite`` for non-blocking database access with WAL mode and
dictionary-style row results.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite

from sona_wallet.storage.models import ChatMessage, TransactionRow


class Database:
    """Thin async wrapper around an SQLite database.

    Parameters
    ----------
    db_path:
        Filesystem path to the SQLite database file, or ``":memory:"``.
        Parent directories are created on :meth:`connect`.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database connection, enable WAL mode, and run migrations."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.row_factory = sqlite3.Row
        await self._conn.execute("PRAGMA foreign_keys=ON;")
        await self._migrate()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement and commit."""
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def create_conversation(self, conversation_id: str, wallet: str | None = None) -> None:
        await self.execute(
            "INSERT OR IGNORE INTO conversations (id, wallet) VALUES (?, ?)",
            (conversation_id, wallet),
        )

    async def add_message(self, message: ChatMessage) -> int:
        """Persist *message* and return its row id."""
        cursor = await self.execute(
            "INSERT INTO messages (conversation_id, role, content, timestamp) VALUES (?, ?, ?, ?)",
            (
                message.conversation_id,
                message.role.value,
                message.content,
                message.timestamp.isoformat(),
            ),
        )
        return cursor.lastrowid

    async def get_messages(self, conversation_id: str, limit: int = 200) -> list[ChatMessage]:
        rows = await self.fetch_all(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY id DESC LIMIT ?",
            (conversation_id, limit),
        )
        return [ChatMessage.model_validate(r) for r in reversed(rows)]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def upsert_transaction(self, row: TransactionRow) -> None:
        """Insert a transaction or move an existing one to its new state."""
        await self.execute(
            """\
            INSERT INTO transactions (signature, wallet, asset, amount, direction, state, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(signature) DO UPDATE SET
                state = excluded.state,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                row.signature,
                row.wallet,
                row.asset,
                row.amount,
                row.direction,
                row.state,
                row.timestamp.isoformat(),
            ),
        )

    async def get_transactions(self, wallet: str, limit: int = 50) -> list[TransactionRow]:
        rows = await self.fetch_all(
            "SELECT * FROM transactions WHERE wallet = ? ORDER BY timestamp DESC LIMIT ?",
            (wallet, limit),
        )
        return [TransactionRow.model_validate(r) for r in rows]

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    async def _migrate(self) -> None:
        """Create all required tables if they do not already exist."""
        assert self._conn is not None

        await self._conn.executescript(
            """\
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                wallet TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (conversation_id) REFERENCES conversations(id)
            );

            CREATE TABLE IF NOT EXISTS transactions (
                signature TEXT PRIMARY KEY,
                wallet TEXT NOT NULL,
                asset TEXT NOT NULL,
                amount TEXT NOT NULL,
                direction TEXT NOT NULL,
                state TEXT NOT NULL,
                timestamp TIMESTAMP NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON messages (conversation_id, id);
            CREATE INDEX IF NOT EXISTS idx_transactions_wallet
                ON transactions (wallet, timestamp);
            """
        )
        await self._conn.commit()


# ------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------

def get_database(root_dir: Path) -> Database:
    """Return a :class:`Database` pointing at ``root_dir/sona.db``.

    The caller is responsible for calling :meth:`Database.connect`.
    """
    return Database(Path(root_dir) / "sona.db")
