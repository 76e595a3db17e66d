"""Records ETA predictions and observed arrivals for history-weighted estimates."""

import datetime
import logging
from dataclasses import dataclass

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import StorageError
from app.models.tables import EtaTrainingRecord

logger = logging.getLogger(__name__)

# Hours either side of the current hour that count as "similar conditions"
HISTORY_HOUR_WINDOW = 2
HISTORY_LIMIT = 20


@dataclass(frozen=True)
class ArrivalSample:
    predicted_minutes: float
    actual_minutes: float
    hour_of_day: int
    day_of_week: int


def day_of_week(at: datetime.datetime) -> int:
    """0 = Sunday."""
    return at.isoweekday() % 7


class TrainingLog:
    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def record(
        self,
        vehicle_id: str,
        stop_id: str,
        route_id: str | None,
        predicted_minutes: float,
        distance_km: float,
        at: datetime.datetime,
    ) -> None:
        async with self.session_factory() as session:
            session.add(EtaTrainingRecord(
                vehicle_id=vehicle_id,
                stop_id=stop_id,
                route_id=route_id,
                predicted_eta_minutes=predicted_minutes,
                distance_km=distance_km,
                hour_of_day=at.hour,
                day_of_week=day_of_week(at),
            ))
            await session.commit()
        logger.debug("Stored training record %s -> %s (%.1f min)", vehicle_id, stop_id, predicted_minutes)

    async def update_actual_arrival(self, vehicle_id: str, stop_id: str, actual_minutes: float) -> bool:
        """Close the newest open prediction for the pair. False when none is open."""
        try:
            async with self.session_factory() as session:
                row = (await session.execute(
                    select(EtaTrainingRecord)
                    .where(
                        EtaTrainingRecord.vehicle_id == vehicle_id,
                        EtaTrainingRecord.stop_id == stop_id,
                        EtaTrainingRecord.actual_arrival_minutes.is_(None),
                    )
                    .order_by(EtaTrainingRecord.created_at.desc(), EtaTrainingRecord.id.desc())
                    .limit(1)
                )).scalar_one_or_none()
                if row is None:
                    return False
                row.actual_arrival_minutes = actual_minutes
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to record arrival for %s -> %s: %s", vehicle_id, stop_id, e)
            raise StorageError("Failed to record arrival") from e
        logger.info("Recorded arrival %s -> %s after %.1f min", vehicle_id, stop_id, actual_minutes)
        return True

    async def history(
        self, vehicle_id: str, stop_id: str, at: datetime.datetime, limit: int = HISTORY_LIMIT,
    ) -> list[ArrivalSample]:
        """Closed predictions for the pair made near this hour or on this weekday, newest first."""
        low = max(0, at.hour - HISTORY_HOUR_WINDOW)
        high = min(23, at.hour + HISTORY_HOUR_WINDOW)
        try:
            async with self.session_factory() as session:
                rows = (await session.execute(
                    select(EtaTrainingRecord)
                    .where(
                        EtaTrainingRecord.vehicle_id == vehicle_id,
                        EtaTrainingRecord.stop_id == stop_id,
                        EtaTrainingRecord.actual_arrival_minutes.is_not(None),
                        or_(
                            EtaTrainingRecord.hour_of_day.between(low, high),
                            EtaTrainingRecord.day_of_week == day_of_week(at),
                        ),
                    )
                    .order_by(EtaTrainingRecord.created_at.desc())
                    .limit(limit)
                )).scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise StorageError("Failed to read arrival history") from e
        return [
            ArrivalSample(r.predicted_eta_minutes, r.actual_arrival_minutes, r.hour_of_day, r.day_of_week)
            for r in rows
        ]
