"""
memory.py — In-process store backend.

Plain dicts behind one asyncio.Lock per store. Used by the test suite and
when STORE_BACKEND=memory; state is lost on restart.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from hazardwatch.alerts.models import Notification, Subscriber
from hazardwatch.core.errors import DuplicateNotificationError
from hazardwatch.hazards.models import HazardEvent
from hazardwatch.spatial.severity import HazardKind


class InMemoryHazardStore:
    def __init__(self):
        self._events: Dict[str, HazardEvent] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, event: HazardEvent) -> None:
        async with self._lock:
            self._events[event.identity_key] = event

    async def get(self, identity_key: str) -> Optional[HazardEvent]:
        return self._events.get(identity_key)

    async def query_since(
        self, since: datetime, kind: Optional[HazardKind] = None,
    ) -> List[HazardEvent]:
        events = [
            e for e in self._events.values()
            if e.observed_at >= since and (kind is None or e.kind == kind)
        ]
        return sorted(events, key=lambda e: e.observed_at, reverse=True)

    async def list_synthetic(self) -> List[HazardEvent]:
        return [e for e in self._events.values() if e.is_synthetic]

    async def delete(self, identity_key: str) -> bool:
        async with self._lock:
            return self._events.pop(identity_key, None) is not None

    async def delete_synthetic(self) -> int:
        async with self._lock:
            keys = [k for k, e in self._events.items() if e.is_synthetic]
            for key in keys:
                del self._events[key]
            return len(keys)


class InMemorySubscriberStore:
    def __init__(self):
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()

    async def get(self, subscriber_id: str) -> Optional[Subscriber]:
        return self._subscribers.get(subscriber_id)

    async def upsert(self, subscriber: Subscriber) -> Subscriber:
        async with self._lock:
            existing = self._subscribers.get(subscriber.id)
            if existing is not None:
                subscriber = replace(subscriber, created_at=existing.created_at)
            self._subscribers[subscriber.id] = subscriber
            return subscriber

    async def list_all(self) -> List[Subscriber]:
        return list(self._subscribers.values())

    async def list_enabled(self) -> List[Subscriber]:
        return [s for s in self._subscribers.values() if s.enabled]


class InMemoryNotificationStore:
    def __init__(self):
        self._by_id: Dict[str, Notification] = {}
        self._by_pair: Dict[Tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    async def insert_if_absent(self, notification: Notification) -> Notification:
        async with self._lock:
            if notification.dedup_key in self._by_pair:
                raise DuplicateNotificationError(
                    notification.subscriber_id, notification.identity_key,
                )
            self._by_pair[notification.dedup_key] = notification.id
            self._by_id[notification.id] = notification
            return notification

    async def exists(self, subscriber_id: str, identity_key: str) -> bool:
        return (subscriber_id, identity_key) in self._by_pair

    async def get(self, notification_id: str) -> Optional[Notification]:
        return self._by_id.get(notification_id)

    async def list_for_subscriber(
        self, subscriber_id: str, limit: int = 50,
    ) -> List[Notification]:
        items = [n for n in self._by_id.values() if n.subscriber_id == subscriber_id]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items[:limit]

    async def unread_count(self, subscriber_id: str) -> int:
        return sum(
            1 for n in self._by_id.values()
            if n.subscriber_id == subscriber_id and not n.read
        )

    async def mark_read(self, notification_id: str) -> bool:
        async with self._lock:
            notification = self._by_id.get(notification_id)
            if notification is None:
                return False
            notification.read = True
            return True

    async def mark_all_read(self, subscriber_id: str) -> int:
        async with self._lock:
            count = 0
            for n in self._by_id.values():
                if n.subscriber_id == subscriber_id and not n.read:
                    n.read = True
                    count += 1
            return count

    async def delete(self, notification_id: str) -> bool:
        async with self._lock:
            notification = self._by_id.pop(notification_id, None)
            if notification is None:
                return False
            self._by_pair.pop(notification.dedup_key, None)
            return True

    async def count_for_pair(self, subscriber_id: str, identity_key: str) -> int:
        return sum(
            1 for n in self._by_id.values()
            if n.subscriber_id == subscriber_id and n.identity_key == identity_key
        )
