from __future__ import annotations

from datetime import date, datetime, time
from enum import StrEnum
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, Enum, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Float, Integer, String, Text, Time


class Base(DeclarativeBase):
    pass


class ServiceType(StrEnum):
    COLD_PLUNGE = "cold_plunge"
    INFRARED_SAUNA = "infrared_sauna"
    COMBO_PACKAGE = "combo_package"
    MEMBERSHIP_LITE = "membership_lite"
    MEMBERSHIP_FULL_SPECTRUM = "membership_full_spectrum"
    MEMBERSHIP_ELITE = "membership_elite"


class BookingStatus(StrEnum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class FeeSource(StrEnum):
    LIVE = "live"
    FALLBACK = "fallback"


def _enum_column(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class AvailabilitySlot(Base):
    """Bookable window on a business-local calendar date."""

    __tablename__ = "availability_slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="chk_slots_time"),
        CheckConstraint("max_bookings >= 1", name="chk_slots_max_bookings"),
        UniqueConstraint("date", "start_time", name="uq_slots_date_start"),
        Index("idx_slots_date", "date"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    slot_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_available: Mapped[bool] = mapped_column(nullable=False, default=True)
    max_bookings: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="chk_bookings_duration"),
        CheckConstraint("starts_at < ends_at", name="chk_bookings_window"),
        Index("idx_bookings_window", "starts_at", "ends_at"),
        Index("idx_bookings_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    service_type: Mapped[ServiceType] = mapped_column(_enum_column(ServiceType), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    address: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    add_ons: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus),
        nullable=False,
        default=BookingStatus.SCHEDULED,
    )
    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Setup fee as quoted when the booking was placed.
    setup_base_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    setup_distance_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    setup_total_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    distance_miles: Mapped[float] = mapped_column(Float, nullable=False)
    travel_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    fee_source: Mapped[FeeSource] = mapped_column(_enum_column(FeeSource), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
