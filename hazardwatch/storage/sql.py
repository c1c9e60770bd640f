"""
sql.py — SQLAlchemy async store backend.

Three tables:

    hazard_events   — one row per identity_key (upserted each cycle)
    subscribers     — alert settings
    notifications   — UNIQUE (subscriber_id, identity_key)

The unique constraint is what makes insert_if_absent atomic across
concurrent matcher runs: the losing INSERT fails with IntegrityError,
which surfaces as DuplicateNotificationError. Any other database failure
surfaces as PersistenceError.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from hazardwatch.alerts.models import Geofence, Notification, Subscriber
from hazardwatch.core.database import Base
from hazardwatch.core.errors import DuplicateNotificationError, PersistenceError
from hazardwatch.hazards.models import HazardEvent, Location
from hazardwatch.spatial.severity import HazardKind

logger = logging.getLogger(__name__)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# ═══════════════════════════════════════════════════════════════════════════
# ORM rows
# ═══════════════════════════════════════════════════════════════════════════

class HazardEventRow(Base):
    __tablename__ = "hazard_events"

    identity_key: Mapped[str] = mapped_column(String(200), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), index=True)
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    ingested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    depth_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    magnitude_or_intensity: Mapped[float] = mapped_column(Float)
    severity_tier: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    source_provenance: Mapped[list] = mapped_column(JSON, default=list)
    is_synthetic: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    title: Mapped[str] = mapped_column(String(300), default="")
    place: Mapped[str] = mapped_column(String(300), default="")
    url: Mapped[str] = mapped_column(Text, default="")
    details: Mapped[dict] = mapped_column(JSON, default=dict)

    @classmethod
    def from_event(cls, event: HazardEvent) -> "HazardEventRow":
        tier = event.severity_tier
        return cls(
            identity_key=event.identity_key,
            kind=event.kind.value,
            observed_at=event.observed_at,
            ingested_at=event.ingested_at,
            latitude=event.location.latitude,
            longitude=event.location.longitude,
            depth_km=event.location.depth_km,
            magnitude_or_intensity=event.magnitude_or_intensity,
            severity_tier=tier.label if tier else None,
            source_provenance=list(event.source_provenance),
            is_synthetic=event.is_synthetic,
            title=event.title,
            place=event.place,
            url=event.url,
            details=dict(event.details),
        )

    def to_event(self) -> HazardEvent:
        return HazardEvent(
            identity_key=self.identity_key,
            kind=HazardKind(self.kind),
            observed_at=_aware(self.observed_at),
            ingested_at=_aware(self.ingested_at),
            location=Location(self.latitude, self.longitude, self.depth_km),
            magnitude_or_intensity=self.magnitude_or_intensity,
            source_provenance=tuple(self.source_provenance or ()),
            is_synthetic=self.is_synthetic,
            title=self.title or "",
            place=self.place or "",
            url=self.url or "",
            details=dict(self.details or {}),
        )


class SubscriberRow(Base):
    __tablename__ = "subscribers"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    min_magnitude: Mapped[float] = mapped_column(Float)
    geofence_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    geofence_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    geofence_radius_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def to_subscriber(self) -> Subscriber:
        geofence = None
        if self.geofence_radius_km is not None:
            geofence = Geofence(
                self.geofence_latitude, self.geofence_longitude, self.geofence_radius_km,
            )
        return Subscriber(
            id=self.id,
            min_magnitude=self.min_magnitude,
            geofence=geofence,
            enabled=self.enabled,
            created_at=_aware(self.created_at),
            updated_at=_aware(self.updated_at),
        )


class NotificationRow(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("subscriber_id", "identity_key", name="uq_notification_pair"),
    )

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    subscriber_id: Mapped[str] = mapped_column(String(100), index=True)
    identity_key: Mapped[str] = mapped_column(String(200))
    kind: Mapped[str] = mapped_column(String(20))
    title: Mapped[str] = mapped_column(String(300))
    message: Mapped[str] = mapped_column(Text)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    is_synthetic: Mapped[bool] = mapped_column(Boolean, default=False)
    distance_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    signal_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    @classmethod
    def from_notification(cls, n: Notification) -> "NotificationRow":
        return cls(
            id=n.id,
            subscriber_id=n.subscriber_id,
            identity_key=n.identity_key,
            kind=n.kind.value,
            title=n.title,
            message=n.message,
            read=n.read,
            is_synthetic=n.is_synthetic,
            distance_km=n.distance_km,
            signal_number=n.signal_number,
            created_at=n.created_at,
        )

    def to_notification(self) -> Notification:
        return Notification(
            id=self.id,
            subscriber_id=self.subscriber_id,
            identity_key=self.identity_key,
            kind=HazardKind(self.kind),
            title=self.title,
            message=self.message,
            read=self.read,
            is_synthetic=self.is_synthetic,
            distance_km=self.distance_km,
            signal_number=self.signal_number,
            created_at=_aware(self.created_at),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Stores
# ═══════════════════════════════════════════════════════════════════════════

class _SqlStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(operation, str(exc)) from exc


class SqlHazardStore(_SqlStore):
    async def upsert(self, event: HazardEvent) -> None:
        async with self._session("hazard.upsert") as session:
            await session.merge(HazardEventRow.from_event(event))

    async def get(self, identity_key: str) -> Optional[HazardEvent]:
        async with self._session("hazard.get") as session:
            row = await session.get(HazardEventRow, identity_key)
            return row.to_event() if row else None

    async def query_since(
        self, since: datetime, kind: Optional[HazardKind] = None,
    ) -> List[HazardEvent]:
        stmt = select(HazardEventRow).where(HazardEventRow.observed_at >= since)
        if kind is not None:
            stmt = stmt.where(HazardEventRow.kind == HazardKind(kind).value)
        stmt = stmt.order_by(HazardEventRow.observed_at.desc())
        async with self._session("hazard.query_since") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [r.to_event() for r in rows]

    async def list_synthetic(self) -> List[HazardEvent]:
        stmt = select(HazardEventRow).where(HazardEventRow.is_synthetic.is_(True))
        async with self._session("hazard.list_synthetic") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [r.to_event() for r in rows]

    async def delete(self, identity_key: str) -> bool:
        stmt = delete(HazardEventRow).where(HazardEventRow.identity_key == identity_key)
        async with self._session("hazard.delete") as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def delete_synthetic(self) -> int:
        stmt = delete(HazardEventRow).where(HazardEventRow.is_synthetic.is_(True))
        async with self._session("hazard.delete_synthetic") as session:
            result = await session.execute(stmt)
            return result.rowcount


class SqlSubscriberStore(_SqlStore):
    async def get(self, subscriber_id: str) -> Optional[Subscriber]:
        async with self._session("subscriber.get") as session:
            row = await session.get(SubscriberRow, subscriber_id)
            return row.to_subscriber() if row else None

    async def upsert(self, subscriber: Subscriber) -> Subscriber:
        async with self._session("subscriber.upsert") as session:
            row = await session.get(SubscriberRow, subscriber.id)
            if row is None:
                row = SubscriberRow(id=subscriber.id, created_at=subscriber.created_at)
                session.add(row)
            geofence = subscriber.geofence
            row.enabled = subscriber.enabled
            row.min_magnitude = subscriber.min_magnitude
            row.geofence_latitude = geofence.latitude if geofence else None
            row.geofence_longitude = geofence.longitude if geofence else None
            row.geofence_radius_km = geofence.radius_km if geofence else None
            row.updated_at = subscriber.updated_at
            await session.flush()
            return row.to_subscriber()

    async def list_all(self) -> List[Subscriber]:
        async with self._session("subscriber.list_all") as session:
            rows = (await session.execute(select(SubscriberRow))).scalars().all()
            return [r.to_subscriber() for r in rows]

    async def list_enabled(self) -> List[Subscriber]:
        stmt = select(SubscriberRow).where(SubscriberRow.enabled.is_(True))
        async with self._session("subscriber.list_enabled") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [r.to_subscriber() for r in rows]


class SqlNotificationStore(_SqlStore):
    async def insert_if_absent(self, notification: Notification) -> Notification:
        async with self._session_factory() as session:
            session.add(NotificationRow.from_notification(notification))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateNotificationError(
                    notification.subscriber_id, notification.identity_key,
                ) from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError("notification.insert", str(exc)) from exc
        return notification

    async def exists(self, subscriber_id: str, identity_key: str) -> bool:
        return await self.count_for_pair(subscriber_id, identity_key) > 0

    async def get(self, notification_id: str) -> Optional[Notification]:
        async with self._session("notification.get") as session:
            row = await session.get(NotificationRow, notification_id)
            return row.to_notification() if row else None

    async def list_for_subscriber(
        self, subscriber_id: str, limit: int = 50,
    ) -> List[Notification]:
        stmt = (
            select(NotificationRow)
            .where(NotificationRow.subscriber_id == subscriber_id)
            .order_by(NotificationRow.created_at.desc())
            .limit(limit)
        )
        async with self._session("notification.list") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [r.to_notification() for r in rows]

    async def unread_count(self, subscriber_id: str) -> int:
        stmt = select(func.count()).select_from(NotificationRow).where(
            NotificationRow.subscriber_id == subscriber_id,
            NotificationRow.read.is_(False),
        )
        async with self._session("notification.unread_count") as session:
            return (await session.execute(stmt)).scalar_one()

    async def mark_read(self, notification_id: str) -> bool:
        stmt = (
            update(NotificationRow)
            .where(NotificationRow.id == notification_id)
            .values(read=True)
        )
        async with self._session("notification.mark_read") as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def mark_all_read(self, subscriber_id: str) -> int:
        stmt = (
            update(NotificationRow)
            .where(
                NotificationRow.subscriber_id == subscriber_id,
                NotificationRow.read.is_(False),
            )
            .values(read=True)
        )
        async with self._session("notification.mark_all_read") as session:
            result = await session.execute(stmt)
            return result.rowcount

    async def delete(self, notification_id: str) -> bool:
        stmt = delete(NotificationRow).where(NotificationRow.id == notification_id)
        async with self._session("notification.delete") as session:
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def count_for_pair(self, subscriber_id: str, identity_key: str) -> int:
        stmt = select(func.count()).select_from(NotificationRow).where(
            NotificationRow.subscriber_id == subscriber_id,
            NotificationRow.identity_key == identity_key,
        )
        async with self._session("notification.count_for_pair") as session:
            return (await session.execute(stmt)).scalar_one()
