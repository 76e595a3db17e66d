"""Durable storage of GPS fixes in the ``bus_positions`` table."""

import logging

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import StorageError
from app.models.tables import BusPosition
from app.schemas.position import PositionFix

logger = logging.getLogger(__name__)

_INSERT_FIX = text("""
    INSERT INTO bus_positions (vehicle_id, timestamp, latitude, longitude, speed, heading, accuracy)
    VALUES (:vehicle_id, :timestamp, :latitude, :longitude, :speed, :heading, :accuracy)
    ON CONFLICT (vehicle_id, timestamp) DO NOTHING
""")


def _to_fix(row: BusPosition) -> PositionFix:
    return PositionFix(
        vehicle_id=row.vehicle_id,
        timestamp=row.timestamp,
        latitude=row.latitude,
        longitude=row.longitude,
        speed=row.speed,
        heading=row.heading,
        accuracy=row.accuracy,
    )


class PositionStore:
    """Insert-only fix storage. Duplicate (vehicle_id, timestamp) keys are absorbed."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def insert(self, fix: PositionFix) -> bool:
        """Persist a fix. Returns False when the key already existed."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(_INSERT_FIX, fix.model_dump())
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to store GPS position for %s: %s", fix.vehicle_id, e)
            raise StorageError("Failed to store GPS position") from e
        return result.rowcount == 1

    async def get(self, vehicle_id: str, timestamp: int) -> PositionFix | None:
        return await self._one(
            select(BusPosition).where(
                BusPosition.vehicle_id == vehicle_id,
                BusPosition.timestamp == timestamp,
            )
        )

    async def latest(self, vehicle_id: str) -> PositionFix | None:
        """Most recent fix by payload timestamp."""
        return await self._one(
            select(BusPosition)
            .where(BusPosition.vehicle_id == vehicle_id)
            .order_by(BusPosition.timestamp.desc())
            .limit(1)
        )

    async def _one(self, stmt) -> PositionFix | None:
        try:
            async with self.session_factory() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to read GPS position: %s", e)
            raise StorageError("Failed to read GPS position") from e
        return _to_fix(row) if row else None
