"""
Outbound events for collaborators outside the store.

The store publishes a 'MessageCommittedEvent' once a message is durably in the
live store. Turning it into a push notification (and retrying delivery) is the
subscriber's job. 'InMemoryEventPublisher' keeps published events and fans
them out to registered async handlers.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from pydantic import BaseModel


class MessageCommittedEvent(BaseModel):
    conversation_id: str
    message_id: str
    sender_id: str
    sender_name: str
    text: str
    is_group_chat: bool
    recipient_ids: list[str]


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, event: MessageCommittedEvent) -> None:
        pass


class InMemoryEventPublisher(EventPublisher):
    def __init__(self) -> None:
        self.events: list[MessageCommittedEvent] = []
        self._handlers: list[Callable[[MessageCommittedEvent], Awaitable[None]]] = []

    def subscribe(self, handler: Callable[[MessageCommittedEvent], Awaitable[None]]) -> None:
        self._handlers.append(handler)

    async def publish(self, event: MessageCommittedEvent) -> None:
        self.events.append(event)
        for handler in self._handlers:
            await handler(event)
