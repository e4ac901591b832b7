"""The visible chat transcript, optionally persisted to the database."""

from __future__ import annotations

import logging

from sona_wallet.core.events import CHAT_MESSAGE, EventBus
from sona_wallet.storage.database import Database
from sona_wallet.storage.models import ChatMessage, ChatRole, ConversationRecord

logger = logging.getLogger("sona_wallet.chat.transcript")


class Transcript:
    """Append-only list of chat messages for one conversation."""

    def __init__(
        self,
        db: Database | None = None,
        bus: EventBus | None = None,
        conversation_id: str | None = None,
    ):
        self.db = db
        self.bus = bus
        self.conversation_id = conversation_id or ConversationRecord.new_id()
        self._messages: list[ChatMessage] = []

    async def load(self, wallet: str | None = None) -> None:
        """Create the conversation row, or reload its messages if it exists."""
        if self.db is None:
            return
        await self.db.create_conversation(self.conversation_id, wallet)
        self._messages = await self.db.get_messages(self.conversation_id)
        logger.info(f"Loaded {len(self._messages)} message(s) for conversation {self.conversation_id}")

    async def append(self, role: ChatRole, content: str) -> ChatMessage:
        message = ChatMessage(conversation_id=self.conversation_id, role=role, content=content)
        self._messages.append(message)
        if self.db is not None:
            message.id = await self.db.add_message(message)
        if self.bus is not None:
            await self.bus.publish(CHAT_MESSAGE, message=message.to_dict())
        return message

    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def history(self, limit: int = 20) -> list[ChatMessage]:
        """The last *limit* user and assistant messages, oldest first."""
        turns = [m for m in self._messages if m.role is not ChatRole.SYSTEM]
        return turns[-limit:]

    def __len__(self) -> int:
        return len(self._messages)
