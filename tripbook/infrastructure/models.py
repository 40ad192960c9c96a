"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``trips``                -- driver-offered journeys with seat counts
* ``bookings``             -- passenger claims on seats within a trip
* ``cancellation_events``  -- append-only cancellation log
* ``suspensions``          -- per-user suspension flag

Indexes
-------
* **B-Tree** on ``bookings(status, created_at)`` for the expiration sweep,
  ``bookings.trip_id`` for ledger reconciliation, and
  ``cancellation_events(user_id, role, occurred_at)`` for window counts.

``trips.version`` backs the seat ledger's conditional writes.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)

from .database import Base
from tripbook.domain.enums import (
    BookingStatus,
    CancellationAttribution,
    TripStatus,
    UserRole,
)


def _enum(enum_cls, name: str) -> Enum:
    """Persist enum *values* (``pending``) rather than member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, nullable=False)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    status = Column(
        _enum(TripStatus, "tripstatus"), default=TripStatus.SCHEDULED, nullable=False
    )
    version = Column(Integer, default=0, nullable=False)

    departure_city = Column(String(120), nullable=True)
    arrival_city = Column(String(120), nullable=True)
    departure_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("total_seats > 0", name="ck_trips_total_seats_positive"),
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_trips_available_seats_range",
        ),
        Index("idx_trips_driver", "driver_id"),
        Index("idx_trips_status", "status"),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    passenger_id = Column(Integer, nullable=False)
    driver_id = Column(Integer, nullable=False)  # denormalised from trips
    seats = Column(Integer, nullable=False)
    status = Column(
        _enum(BookingStatus, "bookingstatus"),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    cancellation_reason = Column(String(255), nullable=True)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("seats > 0", name="ck_bookings_seats_positive"),
        Index("idx_bookings_trip", "trip_id"),
        Index("idx_bookings_passenger", "passenger_id"),
        Index("idx_bookings_status_created", "status", "created_at"),
    )


class CancellationEventModel(Base):
    __tablename__ = "cancellation_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    role = Column(_enum(UserRole, "userrole"), nullable=False)
    attribution = Column(
        _enum(CancellationAttribution, "cancellationattribution"), nullable=False
    )
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=True)
    reason = Column(String(255), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_cancellations_user_window", "user_id", "role", "occurred_at"),
        Index("idx_cancellations_occurred", "occurred_at"),
    )


class SuspensionModel(Base):
    __tablename__ = "suspensions"

    user_id = Column(Integer, primary_key=True, autoincrement=False)
    is_suspended = Column(Boolean, default=False, nullable=False)
    reason = Column(String(255), nullable=True)
    suspended_at = Column(DateTime(timezone=True), nullable=True)
    reactivated_at = Column(DateTime(timezone=True), nullable=True)
    cancellations_reset_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
