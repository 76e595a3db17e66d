import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base


class Route(Base):
    __tablename__ = "routes"

    route_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    route_short_name: Mapped[str] = mapped_column(String(32), nullable=False)
    route_long_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    route_type: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=3)  # GTFS: 3 = bus
    route_color: Mapped[str | None] = mapped_column(String(7), nullable=True)
    route_text_color: Mapped[str | None] = mapped_column(String(7), nullable=True)

    stops: Mapped[list["RouteStop"]] = relationship(back_populates="route", order_by="RouteStop.stop_sequence")


class ShapePoint(Base):
    __tablename__ = "shapes"
    __table_args__ = (
        Index("ix_shapes_route_seq", "route_id", "shape_pt_sequence"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    route_id: Mapped[str] = mapped_column(String(64), ForeignKey("routes.route_id"), nullable=False)
    shape_pt_lat: Mapped[float] = mapped_column(Float, nullable=False)
    shape_pt_lon: Mapped[float] = mapped_column(Float, nullable=False)
    shape_pt_sequence: Mapped[int] = mapped_column(Integer, nullable=False)


class Stop(Base):
    __tablename__ = "stops"

    stop_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    stop_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stop_lat: Mapped[float] = mapped_column(Float, nullable=False)
    stop_lon: Mapped[float] = mapped_column(Float, nullable=False)
    stop_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stop_desc: Mapped[str | None] = mapped_column(String(255), nullable=True)

    route_stops: Mapped[list["RouteStop"]] = relationship(back_populates="stop")


class RouteStop(Base):
    __tablename__ = "route_stops"
    __table_args__ = (
        UniqueConstraint("route_id", "direction_id", "stop_sequence", name="uq_route_stop_dir_seq"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    route_id: Mapped[str] = mapped_column(String(64), ForeignKey("routes.route_id"), nullable=False)
    stop_id: Mapped[str] = mapped_column(String(64), ForeignKey("stops.stop_id"), nullable=False)
    direction_id: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)  # 0=outbound, 1=inbound
    stop_sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    route: Mapped["Route"] = relationship(back_populates="stops")
    stop: Mapped["Stop"] = relationship(back_populates="route_stops")


class BusPosition(Base):
    __tablename__ = "bus_positions"
    __table_args__ = (
        UniqueConstraint("vehicle_id", "timestamp", name="uq_bus_position_vehicle_ts"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    vehicle_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)  # Unix seconds
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    speed: Mapped[float | None] = mapped_column(Float, nullable=True)
    heading: Mapped[float | None] = mapped_column(Float, nullable=True)
    accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class EtaTrainingRecord(Base):
    __tablename__ = "ml_eta_training_data"
    __table_args__ = (
        Index("ix_eta_training_vehicle_stop", "vehicle_id", "stop_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    vehicle_id: Mapped[str] = mapped_column(String(64), nullable=False)
    stop_id: Mapped[str] = mapped_column(String(64), nullable=False)
    route_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    predicted_eta_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    actual_arrival_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)
    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    hour_of_day: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class DeviceApiKey(Base):
    __tablename__ = "device_api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # sha256 hex
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
