"""In-process async event bus for wallet state and pipeline updates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable


logger = logging.getLogger("sona_wallet.events")

# Topics published by the wallet core.
SESSION_CONNECTED = "session.connected"
SESSION_DISCONNECTED = "session.disconnected"
WALLET_BALANCES = "wallet.balances"
WALLET_TRANSACTION = "wallet.transaction"
TRANSFER_STAGE = "transfer.stage"
CHAT_MESSAGE = "chat.message"


@dataclass
class Event:
    topic: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Callback = Callable[[Event], Awaitable[None]]


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`. Cancelling is idempotent."""

    def __init__(self, bus: EventBus, topic: str, callback: Callback):
        self._bus = bus
        self.topic = topic
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._bus._remove(self)


class EventBus:
    """Async pub/sub bus. ``"*"`` subscribers receive every topic."""

    def __init__(self):
        self._subscribers: dict[str, list[Subscription]] = {}  # topic -> subs
        self._history: list[Event] = []
        self._history_limit = 200

    def subscribe(self, topic: str, callback: Callback) -> Subscription:
        sub = Subscription(self, topic, callback)
        self._subscribers.setdefault(topic, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.topic)
        if not subs:
            return
        try:
            subs.remove(sub)
        except ValueError:
            pass
        if not subs:
            del self._subscribers[sub.topic]

    def subscriber_count(self, topic: str | None = None) -> int:
        if topic is not None:
            return len(self._subscribers.get(topic, []))
        return sum(len(s) for s in self._subscribers.values())

    async def publish(self, topic: str, **data: Any) -> Event:
        event = Event(topic=topic, data=data)
        self._history.append(event)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]

        # Snapshot the list: callbacks may cancel their own subscription
        targets = list(self._subscribers.get(topic, [])) + list(self._subscribers.get("*", []))
        for sub in targets:
            if not sub.active:
                continue
            try:
                await sub.callback(event)
            except Exception as e:
                logger.error(f"Subscriber callback error on topic '{topic}': {e}")
        return event

    def get_history(self, limit: int = 50, topic: str | None = None) -> list[Event]:
        events = list(self._history)
        if topic:
            events = [e for e in events if e.topic == topic]
        return events[-limit:]
