"""
base.py — Repository interfaces consumed by the orchestrator, matcher and API.

Stores are passed into constructors explicitly; nothing reaches for a
global connection. Two backends implement these protocols:

    memory.py — dicts guarded by an asyncio.Lock (tests, STORE_BACKEND=memory)
    sql.py    — SQLAlchemy async ORM (STORE_BACKEND=sql)

NotificationStore.insert_if_absent is the only cross-cycle mutual
exclusion point in the service: it must either insert the notification or
raise DuplicateNotificationError, atomically per (subscriber, event) pair.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

from hazardwatch.alerts.models import Notification, Subscriber
from hazardwatch.hazards.models import HazardEvent
from hazardwatch.spatial.severity import HazardKind


@runtime_checkable
class HazardStore(Protocol):
    async def upsert(self, event: HazardEvent) -> None: ...

    async def get(self, identity_key: str) -> Optional[HazardEvent]: ...

    async def query_since(
        self, since: datetime, kind: Optional[HazardKind] = None,
    ) -> List[HazardEvent]:
        """Events observed at or after since, most recent first."""
        ...

    async def list_synthetic(self) -> List[HazardEvent]: ...

    async def delete(self, identity_key: str) -> bool: ...

    async def delete_synthetic(self) -> int: ...


@runtime_checkable
class SubscriberStore(Protocol):
    async def get(self, subscriber_id: str) -> Optional[Subscriber]: ...

    async def upsert(self, subscriber: Subscriber) -> Subscriber: ...

    async def list_all(self) -> List[Subscriber]: ...

    async def list_enabled(self) -> List[Subscriber]: ...


@runtime_checkable
class NotificationStore(Protocol):
    async def insert_if_absent(self, notification: Notification) -> Notification:
        """Insert, or raise DuplicateNotificationError if the pair exists."""
        ...

    async def exists(self, subscriber_id: str, identity_key: str) -> bool: ...

    async def get(self, notification_id: str) -> Optional[Notification]: ...

    async def list_for_subscriber(
        self, subscriber_id: str, limit: int = 50,
    ) -> List[Notification]:
        """Newest first."""
        ...

    async def unread_count(self, subscriber_id: str) -> int: ...

    async def mark_read(self, notification_id: str) -> bool: ...

    async def mark_all_read(self, subscriber_id: str) -> int: ...

    async def delete(self, notification_id: str) -> bool: ...

    async def count_for_pair(self, subscriber_id: str, identity_key: str) -> int: ...
