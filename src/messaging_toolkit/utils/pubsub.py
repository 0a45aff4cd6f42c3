"""
In-process push subscriptions.

A 'Subscription' is a cancellable async iterator that always yields the most
recent value pushed to it. Intermediate values that were never read are
replaced, never queued: an observer of a message window only cares about the
current window, and a slow observer must not accumulate unbounded backlog.

'SubscriptionRegistry' tracks subscriptions per topic (one topic per
conversation). Multi-process deployments swap this class for a pub/sub
backend; the store only relies on 'subscribe', 'subscribers' and 'cancel'.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class Subscription(Generic[T]):
    def __init__(self, topic: str, viewer_id: str | None, on_cancel: Callable[["Subscription[T]"], None]) -> None:
        self.topic = topic
        self.viewer_id = viewer_id
        self._on_cancel = on_cancel
        self._latest: T | None = None
        self._has_value = False
        self._cancelled = False
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def push(self, value: T) -> None:
        if self._cancelled:
            return
        self._latest = value
        self._has_value = True
        self._event.set()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._event.set()
        self._on_cancel(self)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        while True:
            if self._cancelled:
                raise StopAsyncIteration
            if self._has_value:
                value = self._latest
                self._latest = None
                self._has_value = False
                self._event.clear()
                return value  # type: ignore[return-value]
            await self._event.wait()


class SubscriptionRegistry(Generic[T]):
    def __init__(self) -> None:
        self._topics: dict[str, set[Subscription[T]]] = defaultdict(set)

    def subscribe(self, topic: str, viewer_id: str | None = None) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(topic, viewer_id, self._remove)
        self._topics[topic].add(subscription)
        return subscription

    def subscribers(self, topic: str) -> list[Subscription[T]]:
        return list(self._topics.get(topic, ()))

    def _remove(self, subscription: Subscription[T]) -> None:
        subscribers = self._topics.get(subscription.topic)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._topics[subscription.topic]
