from datetime import datetime, timezone
from typing import Any, cast

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from wellness_booking.config import Settings
from wellness_booking.domain.errors import (
    BookingConflictError,
    BookingNotFoundError,
    CancelNotAllowedError,
    InvalidTransitionError,
    StoreUnavailableError,
)
from wellness_booking.domain.fees import FeeSchedule
from wellness_booking.domain.locations import GeoPoint
from wellness_booking.models import Booking, BookingStatus, ServiceType
from wellness_booking.routers import bookings as router
from wellness_booking.schemas import (
    AddressIn,
    BookingCancel,
    BookingCreate,
    BookingRead,
    BookingReschedule,
    BookingStatusChange,
)

ORIGIN = GeoPoint(33.6846, -117.8265)


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


class FailingCommitSession(DummySession):
    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        if exc_type is None:
            raise OperationalError("COMMIT", None, Exception("server has gone away"))
        return False


def _payload() -> BookingCreate:
    return BookingCreate(
        service_type=ServiceType.COMBO_PACKAGE,
        starts_at=datetime(2030, 1, 10, 18, 0, tzinfo=timezone.utc),
        duration_minutes=60,
        address=AddressIn(street="1 Main St", city="Irvine", state="CA", postal_code="92618"),
    )


async def _create(payload: BookingCreate, session: DummySession | None = None) -> BookingRead:
    return await router.create_booking(
        payload=payload,
        session=cast(AsyncSession, session or DummySession()),
        user_id=7,
        routing=None,
        origin=ORIGIN,
        schedule=FeeSchedule(),
        settings=Settings(),
    )


@pytest.fixture
def audit_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def fake_emit(**kwargs: Any) -> None:
        calls.append(kwargs)

    monkeypatch.setattr(router, "SqlAlchemyBookingRepository", lambda s: s)  # type: ignore[assignment]
    monkeypatch.setattr(router, "emit_audit_log", fake_emit)
    return calls


@pytest.mark.asyncio
async def test_create_booking_emits_audit_with_fee(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]], make_booking
) -> None:
    booking = make_booking(booking_id=55, user_id=7, starts_at=datetime(2030, 1, 10, 18, 0))

    async def fake_create(*args: object, **kwargs: object) -> Booking:
        return booking

    monkeypatch.setattr(router.booking_usecase, "create_booking", fake_create)

    result = await _create(_payload())

    assert result.booking_id == 55
    assert result.setup_fee.total_fee == booking.setup_total_fee
    assert len(audit_calls) == 1
    assert audit_calls[0]["action"] == "booking.created"
    assert audit_calls[0]["setup_total_fee"] == booking.setup_total_fee
    assert audit_calls[0]["extra"] == {"fee_source": "fallback"}


@pytest.mark.asyncio
async def test_create_booking_conflict_maps_to_409(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    async def fake_create(*args: object, **kwargs: object) -> Booking:
        raise BookingConflictError(
            "Booking conflict detected. Please choose a different time.",
            conflicts=[(datetime(2030, 1, 10, 17, 30), datetime(2030, 1, 10, 18, 30))],
        )

    monkeypatch.setattr(router.booking_usecase, "create_booking", fake_create)

    with pytest.raises(HTTPException) as excinfo:
        await _create(_payload())

    assert excinfo.value.status_code == 409
    detail = cast(dict[str, Any], excinfo.value.detail)
    assert detail["conflicts"][0]["starts_at"] == "2030-01-10T09:30:00-08:00"
    assert audit_calls == []


@pytest.mark.asyncio
async def test_create_booking_store_failure_maps_to_503(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    async def fake_create(*args: object, **kwargs: object) -> Booking:
        raise StoreUnavailableError("conflict check failed, please try again")

    monkeypatch.setattr(router.booking_usecase, "create_booking", fake_create)

    with pytest.raises(HTTPException) as excinfo:
        await _create(_payload())
    assert excinfo.value.status_code == 503
    assert audit_calls == []


@pytest.mark.asyncio
async def test_create_booking_missing_fields_map_to_422(audit_calls: list[dict[str, Any]]) -> None:
    with pytest.raises(HTTPException) as excinfo:
        await _create(BookingCreate(service_type=ServiceType.COLD_PLUNGE))

    assert excinfo.value.status_code == 422
    detail = cast(dict[str, Any], excinfo.value.detail)
    assert detail["fields"] == ["starts_at", "address", "duration_minutes"]


@pytest.mark.asyncio
async def test_cancel_audit_failure_returns_500(monkeypatch: pytest.MonkeyPatch, make_booking) -> None:
    booking = make_booking(booking_id=55, starts_at=datetime(2030, 1, 10, 18, 0), status=BookingStatus.CANCELLED)

    async def fake_cancel(*args: object, **kwargs: object) -> tuple[Booking, BookingStatus]:
        return booking, BookingStatus.SCHEDULED

    def fake_emit(**kwargs: Any) -> None:
        raise RuntimeError("fail log")

    monkeypatch.setattr(router, "SqlAlchemyBookingRepository", lambda s: s)  # type: ignore[assignment]
    monkeypatch.setattr(router.booking_usecase, "cancel_booking", fake_cancel)
    monkeypatch.setattr(router, "emit_audit_log", fake_emit)

    with pytest.raises(HTTPException) as excinfo:
        await router.cancel_booking(
            booking_id=55,
            payload=BookingCancel(version=1),
            if_match='"1"',
            session=cast(AsyncSession, DummySession()),
            user_id=booking.user_id,
        )
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_repeat_cancel_is_not_audited_again(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]], make_booking
) -> None:
    booking = make_booking(booking_id=55, starts_at=datetime(2030, 1, 10, 18, 0), status=BookingStatus.CANCELLED)

    async def fake_cancel(*args: object, **kwargs: object) -> tuple[Booking, BookingStatus]:
        return booking, BookingStatus.CANCELLED

    monkeypatch.setattr(router.booking_usecase, "cancel_booking", fake_cancel)

    result = await router.cancel_booking(
        booking_id=55,
        payload=None,
        if_match=None,
        session=cast(AsyncSession, DummySession()),
        user_id=booking.user_id,
    )
    assert result.status == BookingStatus.CANCELLED
    assert audit_calls == []


@pytest.mark.asyncio
async def test_cancel_inside_cutoff_maps_to_403(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]]
) -> None:
    async def fake_cancel(*args: object, **kwargs: object) -> tuple[Booking, BookingStatus]:
        raise CancelNotAllowedError("bookings can only be cancelled more than 24 hours ahead")

    monkeypatch.setattr(router.booking_usecase, "cancel_booking", fake_cancel)

    with pytest.raises(HTTPException) as excinfo:
        await router.cancel_booking(
            booking_id=55,
            payload=None,
            if_match=None,
            session=cast(AsyncSession, DummySession()),
            user_id=1,
        )
    assert excinfo.value.status_code == 403


@pytest.mark.asyncio
async def test_reschedule_emits_previous_start(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]], make_booking
) -> None:
    previous_start = datetime(2030, 1, 10, 18, 0)
    booking = make_booking(booking_id=55, starts_at=datetime(2030, 1, 12, 18, 0), version=2)
    seen: dict[str, Any] = {}

    async def fake_reschedule(*args: object, **kwargs: object) -> tuple[Booking, datetime]:
        seen.update(kwargs)
        return booking, previous_start

    monkeypatch.setattr(router.booking_usecase, "reschedule_booking", fake_reschedule)

    result = await router.reschedule_booking(
        payload=BookingReschedule(starts_at=datetime(2030, 1, 12, 18, 0, tzinfo=timezone.utc)),
        booking_id=55,
        if_match='W/"1"',
        session=cast(AsyncSession, DummySession()),
        user_id=booking.user_id,
    )

    assert seen["version"] == 1
    assert result.version == 2
    assert audit_calls[0]["action"] == "booking.rescheduled"
    assert audit_calls[0]["extra"]["starts_at_from"] == previous_start


@pytest.mark.asyncio
async def test_create_commit_failure_maps_to_503_without_audit(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]], make_booking
) -> None:
    booking = make_booking(booking_id=55, user_id=7, starts_at=datetime(2030, 1, 10, 18, 0))

    async def fake_create(*args: object, **kwargs: object) -> Booking:
        return booking

    monkeypatch.setattr(router.booking_usecase, "create_booking", fake_create)

    with pytest.raises(HTTPException) as excinfo:
        await _create(_payload(), session=FailingCommitSession())
    assert excinfo.value.status_code == 503
    assert audit_calls == []


@pytest.mark.asyncio
async def test_cancel_commit_failure_maps_to_503_without_audit(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]], make_booking
) -> None:
    booking = make_booking(booking_id=55, starts_at=datetime(2030, 1, 10, 18, 0), status=BookingStatus.CANCELLED)

    async def fake_cancel(*args: object, **kwargs: object) -> tuple[Booking, BookingStatus]:
        return booking, BookingStatus.SCHEDULED

    monkeypatch.setattr(router.booking_usecase, "cancel_booking", fake_cancel)

    with pytest.raises(HTTPException) as excinfo:
        await router.cancel_booking(
            booking_id=55,
            payload=None,
            if_match=None,
            session=cast(AsyncSession, FailingCommitSession()),
            user_id=booking.user_id,
        )
    assert excinfo.value.status_code == 503
    assert audit_calls == []


@pytest.mark.asyncio
async def test_operator_status_change_is_audited_as_operator(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]], make_booking
) -> None:
    booking = make_booking(booking_id=55, starts_at=datetime(2030, 1, 10, 18, 0), status=BookingStatus.CONFIRMED)
    seen: dict[str, Any] = {}

    async def fake_advance(*args: object, **kwargs: object) -> tuple[Booking, BookingStatus]:
        seen.update(kwargs)
        return booking, BookingStatus.SCHEDULED

    monkeypatch.setattr(router.booking_usecase, "advance_booking_status", fake_advance)

    result = await router.change_booking_status(
        payload=BookingStatusChange(status=BookingStatus.CONFIRMED),
        booking_id=55,
        session=cast(AsyncSession, DummySession()),
        operator_id=900,
    )

    assert result.status == BookingStatus.CONFIRMED
    assert seen == {"booking_id": 55, "to_status": BookingStatus.CONFIRMED}
    assert len(audit_calls) == 1
    assert audit_calls[0]["action"] == "booking.status_changed"
    assert audit_calls[0]["initiator"] == "operator"
    assert audit_calls[0]["status_from"] == BookingStatus.SCHEDULED
    assert audit_calls[0]["status_to"] == BookingStatus.CONFIRMED
    assert audit_calls[0]["extra"] == {"operator_id": 900}


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (BookingNotFoundError("booking not found"), 404),
        (InvalidTransitionError("cannot move booking from completed to scheduled"), 409),
        (StoreUnavailableError("booking status change failed, please try again"), 503),
    ],
)
@pytest.mark.asyncio
async def test_operator_status_change_errors(
    monkeypatch: pytest.MonkeyPatch, audit_calls: list[dict[str, Any]], error: Exception, expected: int
) -> None:
    async def fake_advance(*args: object, **kwargs: object) -> tuple[Booking, BookingStatus]:
        raise error

    monkeypatch.setattr(router.booking_usecase, "advance_booking_status", fake_advance)

    with pytest.raises(HTTPException) as excinfo:
        await router.change_booking_status(
            payload=BookingStatusChange(status=BookingStatus.SCHEDULED),
            booking_id=55,
            session=cast(AsyncSession, DummySession()),
            operator_id=900,
        )
    assert excinfo.value.status_code == expected
    assert audit_calls == []
