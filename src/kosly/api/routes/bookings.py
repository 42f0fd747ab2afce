"""Booking endpoints - self-service and staff bookings, lifecycle actions
and booking payments."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Path, Query
from pydantic import BaseModel, ConfigDict, Field

from kosly.api.auth import CallerDep
from kosly.api.errors import to_http
from kosly.domain.authz import Caller
from kosly.domain.bookings import BookingStatus, PaymentType
from kosly.domain.errors import EngineError
from kosly.domain.leases import LeaseType
from kosly.observability.correlation import get_correlation_id
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context

router = APIRouter(prefix="/bookings", tags=["bookings"])

logger = get_logger(__name__)


# ── Request schemas ──────────────────────────────────────


class CreateBookingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    room_id: str
    lease_type: LeaseType
    check_in_date: date
    payment_choice: PaymentType = PaymentType.FULL
    customer_id: str | None = None
    notes: str | None = None


class ManualBookingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    room_id: str
    customer_id: str
    lease_type: LeaseType
    check_in_date: date
    payment_choice: PaymentType = PaymentType.FULL
    discount_amount: int | None = Field(default=None, ge=0)
    notes: str | None = None


class RenewBookingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lease_type: LeaseType
    payment_choice: PaymentType = PaymentType.FULL
    carry_discount: bool = False
    carry_notes: bool = True


class CancelBookingRequest(BaseModel):
    reason: str | None = None


class OpenPaymentRequest(BaseModel):
    payment_type: PaymentType


# ── Endpoints ────────────────────────────────────────────


@router.post("", status_code=201)
def create_booking(body: CreateBookingRequest, caller: Caller = CallerDep) -> dict:
    """Book a room and open its first gateway payment.

    The response carries the checkout redirect_url; it is null when the
    gateway was unavailable, and the payment can be re-opened later.
    """
    from kosly.services import booking_service

    try:
        result = booking_service.create_booking(
            caller,
            room_id=body.room_id,
            lease_type=body.lease_type,
            check_in_date=body.check_in_date,
            payment_choice=body.payment_choice,
            customer_id=body.customer_id,
            notes=body.notes,
        )
    except EngineError as exc:
        raise to_http(exc) from exc

    logger.info(
        "booking created via api",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                booking_id=result["booking"]["id"],
                payment_id=result["payment"]["id"],
            )
        },
    )
    return result


@router.post("/manual", status_code=201)
def create_manual_booking(body: ManualBookingRequest, caller: Caller = CallerDep) -> dict:
    """Staff-entered booking, paid at the desk. Requires staff role."""
    from kosly.services import booking_service

    try:
        return booking_service.create_manual_booking(
            caller,
            room_id=body.room_id,
            customer_id=body.customer_id,
            lease_type=body.lease_type,
            check_in_date=body.check_in_date,
            payment_choice=body.payment_choice,
            discount_amount=body.discount_amount,
            notes=body.notes,
        )
    except EngineError as exc:
        raise to_http(exc) from exc


@router.get("")
def list_bookings(
    caller: Caller = CallerDep,
    property_id: str | None = Query(None),
    status: BookingStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> list[dict]:
    from kosly.domain import booking_engine
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return booking_engine.list_bookings(
                cur,
                caller,
                property_id=property_id,
                status=status.value if status else None,
                limit=limit,
                offset=offset,
            )
    except EngineError as exc:
        raise to_http(exc) from exc


@router.get("/stats")
def booking_stats(caller: Caller = CallerDep, property_id: str | None = Query(None)) -> dict:
    from kosly.domain import booking_engine
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return booking_engine.booking_stats(cur, caller, property_id=property_id)
    except EngineError as exc:
        raise to_http(exc) from exc


@router.get("/{booking_id}")
def get_booking(booking_id: str = Path(..., description="Booking UUID"), caller: Caller = CallerDep) -> dict:
    from kosly.domain import booking_engine
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return booking_engine.get_booking(cur, caller, booking_id)
    except EngineError as exc:
        raise to_http(exc) from exc


@router.post("/{booking_id}/renew", status_code=201)
def renew_booking(
    body: RenewBookingRequest,
    booking_id: str = Path(..., description="Booking UUID"),
    caller: Caller = CallerDep,
) -> dict:
    """Continue the stay from the original check-out date. Requires staff role."""
    from kosly.services import booking_service

    try:
        return booking_service.renew_booking(
            caller,
            booking_id,
            lease_type=body.lease_type,
            payment_choice=body.payment_choice,
            carry_discount=body.carry_discount,
            carry_notes=body.carry_notes,
        )
    except EngineError as exc:
        raise to_http(exc) from exc


@router.post("/{booking_id}/actions/check-in")
def check_in(booking_id: str = Path(..., description="Booking UUID"), caller: Caller = CallerDep) -> dict:
    from kosly.services import booking_service

    try:
        return booking_service.check_in(caller, booking_id)
    except EngineError as exc:
        raise to_http(exc) from exc


@router.post("/{booking_id}/actions/check-out")
def check_out(booking_id: str = Path(..., description="Booking UUID"), caller: Caller = CallerDep) -> dict:
    from kosly.services import booking_service

    try:
        return booking_service.check_out(caller, booking_id)
    except EngineError as exc:
        raise to_http(exc) from exc


@router.post("/{booking_id}/actions/cancel")
def cancel_booking(
    body: CancelBookingRequest | None = None,
    booking_id: str = Path(..., description="Booking UUID"),
    caller: Caller = CallerDep,
) -> dict:
    from kosly.services import booking_service

    try:
        return booking_service.cancel_booking(caller, booking_id, reason=body.reason if body else None)
    except EngineError as exc:
        raise to_http(exc) from exc


@router.post("/{booking_id}/payments", status_code=201)
def open_payment(
    body: OpenPaymentRequest,
    booking_id: str = Path(..., description="Booking UUID"),
    caller: Caller = CallerDep,
) -> dict:
    """Open (or reuse) a gateway payment; DEPOSIT on UNPAID, FULL on
    UNPAID or DEPOSIT_PAID."""
    from kosly.services import payment_service

    try:
        return payment_service.open_payment(
            caller, booking_id=booking_id, payment_type=body.payment_type
        )
    except EngineError as exc:
        raise to_http(exc) from exc


@router.get("/{booking_id}/payments")
def list_payments(booking_id: str = Path(..., description="Booking UUID"), caller: Caller = CallerDep) -> list[dict]:
    from kosly.domain import booking_engine
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return booking_engine.list_payments(cur, caller, booking_id)
    except EngineError as exc:
        raise to_http(exc) from exc
