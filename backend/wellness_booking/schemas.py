from datetime import date, datetime, time
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer, model_validator

from .domain.fees import SetupFeeCalculation
from .domain.locations import Address, GeoPoint
from .domain.services import AddOns, BookingRequest
from .models import AvailabilitySlot, Booking, BookingStatus, FeeSource, ServiceType
from .utils.time import business_tz, utc_naive_to_local


class AddressIn(BaseModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=2)
    postal_code: Optional[str] = Field(default=None, min_length=5, max_length=10)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    place_id: Optional[str] = None

    @model_validator(mode="after")
    def _postal_code_or_coordinates(self) -> "AddressIn":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        if self.latitude is None and not self.postal_code:
            raise ValueError("postal_code is required when no coordinates are given")
        return self

    def to_domain(self) -> Address:
        location = None
        if self.latitude is not None and self.longitude is not None:
            location = GeoPoint(self.latitude, self.longitude)
        return Address(
            street=self.street,
            city=self.city,
            state=self.state,
            postal_code=self.postal_code,
            location=location,
            place_id=self.place_id,
        )


class AddOnsIn(BaseModel):
    extra_visits: int = 0
    family_members: int = 0
    extended_time: int = 0


class BookingCreate(BaseModel):
    # Presence is checked by the booking usecase so missing fields are
    # reported together.
    service_type: Optional[ServiceType] = None
    starts_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    address: Optional[AddressIn] = None
    add_ons: AddOnsIn = Field(default_factory=AddOnsIn)
    special_instructions: Optional[str] = Field(default=None, max_length=2000)

    def to_domain(self) -> BookingRequest:
        return BookingRequest(
            service_type=self.service_type,
            starts_at=self.starts_at,
            duration_minutes=self.duration_minutes,
            address=self.address.to_domain() if self.address is not None else None,
            add_ons=AddOns(
                extra_visits=self.add_ons.extra_visits,
                family_members=self.add_ons.family_members,
                extended_time=self.add_ons.extended_time,
            ),
            special_instructions=self.special_instructions,
        )


class BookingCancel(BaseModel):
    version: Optional[int] = Field(default=None, ge=1)


class BookingReschedule(BaseModel):
    starts_at: datetime
    version: Optional[int] = Field(default=None, ge=1)


class BookingStatusChange(BaseModel):
    status: BookingStatus


class SetupFeeRead(BaseModel):
    base_fee: int
    distance_fee: int
    total_fee: int
    distance_miles: float
    travel_minutes: int
    source: FeeSource

    @classmethod
    def from_domain(cls, fee: SetupFeeCalculation) -> "SetupFeeRead":
        return cls(
            base_fee=fee.base_fee,
            distance_fee=fee.distance_fee,
            total_fee=fee.total_fee,
            distance_miles=fee.distance_miles,
            travel_minutes=fee.travel_minutes,
            source=fee.source,
        )


class SlotAvailability(BaseModel):
    slot_id: int
    date: date
    start_time: time
    end_time: time
    max_bookings: int
    current_bookings: int

    @classmethod
    def from_db(cls, *, slot: AvailabilitySlot, current_bookings: int) -> "SlotAvailability":
        return cls(
            slot_id=slot.id,
            date=slot.slot_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            max_bookings=slot.max_bookings,
            current_bookings=current_bookings,
        )


class SlotGenerate(BaseModel):
    date: date
    max_bookings: int = Field(default=1, ge=1)


class SlotUpdate(BaseModel):
    is_available: Optional[bool] = None
    max_bookings: Optional[int] = Field(default=None, ge=1)


class SlotRead(BaseModel):
    slot_id: int
    date: date
    start_time: time
    end_time: time
    is_available: bool
    max_bookings: int

    @classmethod
    def from_db(cls, *, slot: AvailabilitySlot) -> "SlotRead":
        return cls(
            slot_id=slot.id,
            date=slot.slot_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            is_available=slot.is_available,
            max_bookings=slot.max_bookings,
        )


class BookingRead(BaseModel):
    booking_id: int
    user_id: int
    service_type: ServiceType
    status: BookingStatus
    version: int
    starts_at: datetime
    ends_at: datetime
    duration_minutes: int
    address: dict[str, Any]
    add_ons: dict[str, Any]
    special_instructions: Optional[str]
    setup_fee: SetupFeeRead

    @field_serializer("starts_at", "ends_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(business_tz()).isoformat()

    @classmethod
    def from_db(cls, *, booking: Booking) -> "BookingRead":
        tz = business_tz()
        return cls(
            booking_id=booking.id,
            user_id=booking.user_id,
            service_type=booking.service_type,
            status=booking.status,
            version=booking.version,
            starts_at=utc_naive_to_local(booking.starts_at, tz),
            ends_at=utc_naive_to_local(booking.ends_at, tz),
            duration_minutes=booking.duration_minutes,
            address=booking.address,
            add_ons=booking.add_ons,
            special_instructions=booking.special_instructions,
            setup_fee=SetupFeeRead(
                base_fee=booking.setup_base_fee,
                distance_fee=booking.setup_distance_fee,
                total_fee=booking.setup_total_fee,
                distance_miles=booking.distance_miles,
                travel_minutes=booking.travel_minutes,
                source=booking.fee_source,
            ),
        )
