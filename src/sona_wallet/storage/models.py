"""Pydantic models mapping to the Sona Wallet database tables."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _new_id() -> str:
    """Generate a short hex ID (12 characters)."""
    return uuid.uuid4().hex[:12]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------

class ConversationRecord(BaseModel):
    """Maps to the ``conversations`` table. One per chat session."""

    id: str = Field(default_factory=_new_id)
    wallet: Optional[str] = None  # identity connected when the conversation began
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def new_id(cls) -> str:
        return _new_id()


class ChatMessage(BaseModel):
    """Maps to the ``messages`` table; also the transcript entry type.

    The ``id`` is an auto-incrementing integer managed by SQLite, so it
    is ``None`` for messages that have not been persisted.
    """

    id: Optional[int] = None
    conversation_id: Optional[str] = None
    role: ChatRole
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


class TransactionRow(BaseModel):
    """Maps to the ``transactions`` table."""

    signature: str
    wallet: str
    asset: str
    amount: str  # stored as string to preserve decimal precision
    direction: str
    state: str
    timestamp: datetime
