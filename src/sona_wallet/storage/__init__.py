"""Sona Wallet storage layer -- async SQLite database and Pydantic models."""

from sona_wallet.storage.database import Database, get_database
from sona_wallet.storage.models import (
    ChatMessage,
    ChatRole,
    ConversationRecord,
    TransactionRow,
)

__all__ = [
    "Database",
    "get_database",
    "ChatMessage",
    "ChatRole",
    "ConversationRecord",
    "TransactionRow",
]
