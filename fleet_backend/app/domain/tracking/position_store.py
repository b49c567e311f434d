"""
Position Store (Domain Logic).

Owns the two durable structures per vehicle:
- the single-row live snapshot (upsert, arrival order wins)
- the scoped, append-only route history

Writes for one vehicle are serialized through a per-vehicle lock so that a
snapshot upsert and its history append land together. Different vehicles
never wait on each other.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet_backend.app.core.exceptions import StoreUnavailableError
from fleet_backend.app.models.live_location import LiveLocation
from fleet_backend.app.models.route_history import RouteHistory, RouteHistoryPoint
from fleet_backend.app.domain.tracking.types import (
    HistoryScope, LiveSnapshot, PositionSample, TimeRange, to_utc_naive, utcnow
)

logger = logging.getLogger(__name__)


class VehicleLockRegistry:
    """Lazily created asyncio.Lock per vehicle id."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def lock_for(self, vehicle_id: int) -> asyncio.Lock:
        lock = self._locks.get(vehicle_id)
        if lock is None:
            lock = self._locks.setdefault(vehicle_id, asyncio.Lock())
        return lock

    def __len__(self) -> int:
        return len(self._locks)


def _dialect_insert(db: AsyncSession):
    """Return the dialect-specific insert() that supports ON CONFLICT, if any."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


def _snapshot_from_row(row: LiveLocation) -> LiveSnapshot:
    return LiveSnapshot(
        vehicle_id=row.vehicle_id,
        latitude=row.latitude,
        longitude=row.longitude,
        speed=row.speed,
        timestamp=to_utc_naive(row.recorded_at),
        reporting_driver_id=row.reporting_driver_id,
    )


def _sample_from_point(point: RouteHistoryPoint, vehicle_id: int, trip_id: Optional[int]) -> PositionSample:
    return PositionSample(
        vehicle_id=vehicle_id,
        latitude=point.latitude,
        longitude=point.longitude,
        speed=point.speed,
        timestamp=to_utc_naive(point.recorded_at),
        driver_id=point.driver_id,
        trip_id=trip_id,
    )


class PositionStore:
    """
    Durable position state backed by SQLAlchemy.

    Args:
        session_factory: async_sessionmaker bound to the tracking database
        clock: returns "now" as naive UTC (used for received/touched times)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._locks = VehicleLockRegistry()

    @asynccontextmanager
    async def _session(self, operation: str, write: bool = False):
        """Open a session and map persistence failures to StoreUnavailableError."""
        try:
            async with self._session_factory() as db:
                try:
                    yield db
                    if write:
                        await db.commit()
                except BaseException:
                    if write:
                        await db.rollback()
                    raise
        except (SQLAlchemyError, OSError) as e:
            logger.error("Position store failure during %s: %s", operation, e)
            raise StoreUnavailableError(operation, reason=type(e).__name__) from e

    # Write paths

    async def upsert_snapshot(self, vehicle_id: int, sample: PositionSample) -> LiveSnapshot:
        """Replace the vehicle's snapshot unconditionally (arrival order wins)."""
        async with self._locks.lock_for(vehicle_id):
            async with self._session("upsert_snapshot", write=True) as db:
                await self._write_snapshot(db, vehicle_id, sample)
        return LiveSnapshot.from_sample(sample)

    async def append_history(self, scope: HistoryScope, sample: PositionSample) -> None:
        """Append the sample to the scope, creating the scope on first use."""
        async with self._locks.lock_for(scope.vehicle_id):
            async with self._session("append_history", write=True) as db:
                await self._write_history(db, scope, sample)

    async def record(self, scope: HistoryScope, sample: PositionSample) -> LiveSnapshot:
        """
        Upsert the snapshot and append to history in one transaction.

        Both writes happen under the vehicle's lock, so another writer for the
        same vehicle can never observe (or produce) a snapshot whose sample is
        missing from history.
        """
        async with self._locks.lock_for(scope.vehicle_id):
            async with self._session("record", write=True) as db:
                await self._write_snapshot(db, scope.vehicle_id, sample)
                await self._write_history(db, scope, sample)
        return LiveSnapshot.from_sample(sample)

    async def _write_snapshot(self, db: AsyncSession, vehicle_id: int, sample: PositionSample) -> None:
        now = self._clock()
        values = {
            "reporting_driver_id": sample.driver_id,
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "speed": sample.speed,
            "recorded_at": sample.timestamp,
            "updated_at": now,
        }

        insert = _dialect_insert(db)
        if insert is not None:
            stmt = insert(LiveLocation).values(vehicle_id=vehicle_id, **values)
            stmt = stmt.on_conflict_do_update(index_elements=[LiveLocation.vehicle_id], set_=values)
            await db.execute(stmt)
            return

        result = await db.execute(select(LiveLocation).where(LiveLocation.vehicle_id == vehicle_id))
        row = result.scalar_one_or_none()
        if row is None:
            db.add(LiveLocation(vehicle_id=vehicle_id, **values))
        else:
            for field, value in values.items():
                setattr(row, field, value)
        await db.flush()

    async def _write_history(self, db: AsyncSession, scope: HistoryScope, sample: PositionSample) -> None:
        now = self._clock()
        history = await self._get_or_create_history(db, scope, now)
        history.last_touched_at = now

        db.add(RouteHistoryPoint(
            history_id=history.id,
            driver_id=sample.driver_id,
            latitude=sample.latitude,
            longitude=sample.longitude,
            speed=sample.speed,
            recorded_at=sample.timestamp,
            received_at=now,
        ))
        await db.flush()

    async def _get_or_create_history(self, db: AsyncSession, scope: HistoryScope, now: datetime) -> RouteHistory:
        result = await db.execute(select(RouteHistory).where(RouteHistory.scope_key == scope.key))
        history = result.scalar_one_or_none()
        if history is not None:
            return history

        values = {
            "scope_key": scope.key,
            "vehicle_id": scope.vehicle_id,
            "trip_id": scope.trip_id,
            "scope_day": scope.day,
            "created_at": now,
            "last_touched_at": now,
        }
        insert = _dialect_insert(db)
        if insert is not None:
            # Another process may open the same scope concurrently
            stmt = insert(RouteHistory).values(**values).on_conflict_do_nothing(
                index_elements=[RouteHistory.scope_key]
            )
            await db.execute(stmt)
            result = await db.execute(select(RouteHistory).where(RouteHistory.scope_key == scope.key))
            return result.scalar_one()

        history = RouteHistory(**values)
        db.add(history)
        await db.flush()
        return history

    # Read paths

    async def get_snapshot(self, vehicle_id: int) -> Optional[LiveSnapshot]:
        async with self._session("get_snapshot") as db:
            result = await db.execute(select(LiveLocation).where(LiveLocation.vehicle_id == vehicle_id))
            row = result.scalar_one_or_none()
            return _snapshot_from_row(row) if row else None

    async def get_snapshots(self, vehicle_ids: Iterable[int]) -> Dict[int, LiveSnapshot]:
        """Bulk snapshot lookup for dashboards."""
        ids = list(vehicle_ids)
        if not ids:
            return {}
        async with self._session("get_snapshots") as db:
            result = await db.execute(select(LiveLocation).where(LiveLocation.vehicle_id.in_(ids)))
            return {row.vehicle_id: _snapshot_from_row(row) for row in result.scalars().all()}

    async def get_history(self, scope_key: str, time_range: Optional[TimeRange] = None) -> List[PositionSample]:
        """
        Points of one scope.

        Without a range the points come back in arrival order. With a range
        they are filtered on timestamp (inclusive) and sorted chronologically.
        """
        async with self._session("get_history") as db:
            history = await self._find_history(db, scope_key)
            if history is None:
                return []

            query = select(RouteHistoryPoint).where(RouteHistoryPoint.history_id == history.id)
            if time_range is not None:
                query = query.where(
                    RouteHistoryPoint.recorded_at >= time_range.start,
                    RouteHistoryPoint.recorded_at <= time_range.end,
                ).order_by(RouteHistoryPoint.recorded_at, RouteHistoryPoint.id)
            else:
                query = query.order_by(RouteHistoryPoint.id)

            result = await db.execute(query)
            return [
                _sample_from_point(point, history.vehicle_id, history.trip_id)
                for point in result.scalars().all()
            ]

    async def get_recent_history(self, scope_key: str, limit: int) -> List[PositionSample]:
        """Most recent `limit` points of a scope, oldest first (arrival order)."""
        async with self._session("get_recent_history") as db:
            history = await self._find_history(db, scope_key)
            if history is None or limit <= 0:
                return []

            result = await db.execute(
                select(RouteHistoryPoint)
                .where(RouteHistoryPoint.history_id == history.id)
                .order_by(RouteHistoryPoint.id.desc())
                .limit(limit)
            )
            points = list(result.scalars().all())
            points.reverse()
            return [_sample_from_point(p, history.vehicle_id, history.trip_id) for p in points]

    async def count_history(self, scope_key: str) -> int:
        async with self._session("count_history") as db:
            result = await db.execute(
                select(func.count(RouteHistoryPoint.id))
                .join(RouteHistory, RouteHistory.id == RouteHistoryPoint.history_id)
                .where(RouteHistory.scope_key == scope_key)
            )
            return result.scalar() or 0

    async def get_history_across_scopes(self, vehicle_id: int, time_range: TimeRange) -> List[PositionSample]:
        """
        Merge every history scope of a vehicle touched since the range start.

        A vehicle accumulates many day/trip scopes over time; only scopes whose
        last write is at or after the range start can hold matching points.
        """
        async with self._session("get_history_across_scopes") as db:
            result = await db.execute(
                select(RouteHistoryPoint, RouteHistory.trip_id)
                .join(RouteHistory, RouteHistory.id == RouteHistoryPoint.history_id)
                .where(
                    RouteHistory.vehicle_id == vehicle_id,
                    RouteHistory.last_touched_at >= time_range.start,
                    RouteHistoryPoint.recorded_at >= time_range.start,
                    RouteHistoryPoint.recorded_at <= time_range.end,
                )
                .order_by(RouteHistoryPoint.recorded_at, RouteHistoryPoint.id)
            )
            return [
                _sample_from_point(point, vehicle_id, trip_id)
                for point, trip_id in result.all()
            ]

    async def _find_history(self, db: AsyncSession, scope_key: str) -> Optional[RouteHistory]:
        result = await db.execute(select(RouteHistory).where(RouteHistory.scope_key == scope_key))
        return result.scalar_one_or_none()
