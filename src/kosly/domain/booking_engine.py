"""Booking engine - create, renew and move bookings through their lifecycle.

Every function takes the caller's cursor and runs inside the caller's
transaction. Payment-driven transitions live in payment_recorder; this
module covers the ones driven by people and by the expiry sweep.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from kosly.infra.repositories import bookings_repository, payments_repository
from kosly.infra.settings import EngineSettings, get_engine_settings
from kosly.infra.time import utc_now
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context

from . import payment_recorder
from .authz import Caller, Role, owns, require_owner, require_role
from .availability import assert_room_available
from .bookings import (
    EXPIRABLE_STATUSES,
    BookingPaymentStatus,
    BookingStatus,
    PaymentType,
    generate_booking_code,
    transition_booking,
)
from .errors import InvalidLeaseParameters, InvalidTransition, NotFound
from .leases import LeaseType, calculate, validate_discount

logger = get_logger(__name__)

_STAFF_ROLES = (Role.STAFF, Role.OPERATOR, Role.SUPERADMIN)
_RENEWAL_SUFFIX = "(renewal)"


def _load_room(cur: PgCursor, caller: Caller, room_id: str, *, staff_flow: bool) -> dict[str, Any]:
    room = bookings_repository.get_room(cur, room_id)
    if room is None or not room.get("is_active", True):
        raise NotFound("room", room_id)
    # Customers may book any active room; staff only their operator's.
    if staff_flow and not owns(caller, room["operator_id"]):
        raise NotFound("room", room_id)
    return room


def _locked_booking(cur: PgCursor, caller: Caller, booking_id: str) -> dict[str, Any]:
    booking = bookings_repository.get_booking(cur, booking_id, for_update=True)
    return dict(require_owner(caller, booking, "booking", booking_id))


def _effective_deposit(deposit: int | None, payable: int) -> int | None:
    # A discount can push the payable amount down to the deposit or below.
    if deposit is None or deposit >= payable:
        return None
    return deposit


def _insert(
    cur: PgCursor,
    caller: Caller,
    *,
    room: dict[str, Any],
    customer_id: str,
    lease_type: LeaseType | str,
    check_in_date: date,
    discount_amount: int | None,
    notes: str | None,
    renewed_from_id: str | None = None,
) -> dict[str, Any]:
    quote = calculate(room, lease_type, check_in_date)
    discount = validate_discount(quote.total_amount, discount_amount)
    deposit = _effective_deposit(quote.deposit_amount, quote.total_amount - discount)

    assert_room_available(
        cur,
        room_id=room["id"],
        check_in=quote.check_in_date,
        check_out=quote.check_out_date,
    )

    booking = bookings_repository.insert_booking(
        cur,
        booking_code=generate_booking_code(),
        customer_id=customer_id,
        room_id=room["id"],
        property_id=room["property_id"],
        check_in_date=quote.check_in_date,
        check_out_date=quote.check_out_date,
        lease_type=quote.lease_type.value,
        total_amount=quote.total_amount,
        deposit_amount=deposit,
        discount_amount=discount,
        status=BookingStatus.UNPAID.value,
        payment_status=BookingPaymentStatus.UNPAID.value,
        notes=notes,
        renewed_from_id=renewed_from_id,
        created_by=caller.id,
    )
    bookings_repository.insert_status_log(
        cur,
        booking_id=booking["id"],
        from_status=None,
        to_status=BookingStatus.UNPAID.value,
        changed_by=caller.id,
        note="renewal" if renewed_from_id else "created",
    )
    logger.info(
        "booking created",
        extra={
            "extra_fields": safe_log_context(
                booking_id=booking["id"],
                booking_code=booking["booking_code"],
                room_id=room["id"],
                lease_type=quote.lease_type.value,
                total_amount=quote.total_amount,
                renewed_from_id=renewed_from_id,
            )
        },
    )
    return booking


def _settle_manually(
    cur: PgCursor,
    caller: Caller,
    booking: dict[str, Any],
    payment_choice: PaymentType,
    now: datetime,
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Record the staff-collected money for a new booking.

    With a deposit choice the deposit and the remainder are recorded as two
    settled payments, so the booking ends CONFIRMED either way.
    """
    results = []
    if payment_choice == PaymentType.DEPOSIT and booking.get("deposit_amount"):
        result = payment_recorder.record_manual_settlement(
            cur, booking=booking, payment_type=PaymentType.DEPOSIT, actor_id=caller.id, now=now
        )
        booking = result["booking"]
        results.append(result)

    result = payment_recorder.record_manual_settlement(
        cur, booking=booking, payment_type=PaymentType.FULL, actor_id=caller.id, now=now
    )
    results.append(result)
    return result["booking"], [r["payment"] for r in results]


def create_booking(
    cur: PgCursor,
    caller: Caller,
    *,
    room_id: str,
    lease_type: LeaseType | str,
    check_in_date: date,
    payment_choice: PaymentType | str = PaymentType.FULL,
    customer_id: str | None = None,
    notes: str | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """Self-service booking: UNPAID, awaiting a gateway payment.

    Returns:
        {"booking": dict, "payment_type": str} - the payment type the
        customer should be charged first.

    Raises:
        NotFound: room missing or inactive.
        InvalidLeaseParameters: check-in date in the past, bad lease type.
        RoomUnavailable: overlapping live booking.
    """
    payment_choice = PaymentType(payment_choice)
    today = today or utc_now().date()
    if check_in_date < today:
        raise InvalidLeaseParameters("check-in date cannot be in the past")

    if caller.role == Role.CUSTOMER:
        customer_id = caller.id
    elif customer_id is None:
        raise InvalidLeaseParameters("customer_id is required")

    room = _load_room(cur, caller, room_id, staff_flow=caller.role != Role.CUSTOMER)
    booking = _insert(
        cur,
        caller,
        room=room,
        customer_id=customer_id,
        lease_type=lease_type,
        check_in_date=check_in_date,
        discount_amount=None,
        notes=notes,
    )

    first_payment = (
        PaymentType.DEPOSIT
        if payment_choice == PaymentType.DEPOSIT and booking.get("deposit_amount")
        else PaymentType.FULL
    )
    return {"booking": booking, "payment_type": first_payment.value}


def create_manual_booking(
    cur: PgCursor,
    caller: Caller,
    *,
    room_id: str,
    customer_id: str,
    lease_type: LeaseType | str,
    check_in_date: date,
    payment_choice: PaymentType | str = PaymentType.FULL,
    discount_amount: int | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Staff-entered booking, paid at the desk: ends CONFIRMED with
    payment_status SUCCESS and its ledger entries written.

    Past check-in dates are allowed (walk-ins entered late).
    """
    require_role(caller, *_STAFF_ROLES)
    now = now or utc_now()
    room = _load_room(cur, caller, room_id, staff_flow=True)
    booking = _insert(
        cur,
        caller,
        room=room,
        customer_id=customer_id,
        lease_type=lease_type,
        check_in_date=check_in_date,
        discount_amount=discount_amount,
        notes=notes,
    )
    booking, payments = _settle_manually(cur, caller, booking, PaymentType(payment_choice), now)
    return {"booking": booking, "payments": payments}


def renew_booking(
    cur: PgCursor,
    caller: Caller,
    booking_id: str,
    *,
    lease_type: LeaseType | str,
    payment_choice: PaymentType | str = PaymentType.FULL,
    carry_discount: bool = False,
    carry_notes: bool = True,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Continue a stay in the same room from the original check-out date.

    The new booking is staff-confirmed and settled like a manual booking.
    A range that overlaps any other live booking fails with RoomUnavailable;
    the renewal is never shortened to fit.
    """
    require_role(caller, *_STAFF_ROLES)
    now = now or utc_now()
    original = _locked_booking(cur, caller, booking_id)
    if original["status"] in (BookingStatus.CANCELLED.value, BookingStatus.EXPIRED.value):
        raise InvalidTransition(
            "booking", original["status"], "RENEWED", "cancelled or expired bookings cannot be renewed"
        )

    room = _load_room(cur, caller, original["room_id"], staff_flow=True)

    notes = None
    if carry_notes:
        notes = f"{original['notes']} {_RENEWAL_SUFFIX}" if original.get("notes") else _RENEWAL_SUFFIX

    discount = None
    if carry_discount and original.get("discount_amount"):
        discount = int(original["discount_amount"])

    booking = _insert(
        cur,
        caller,
        room=room,
        customer_id=original["customer_id"],
        lease_type=lease_type,
        check_in_date=original["check_out_date"],
        discount_amount=discount,
        notes=notes,
        renewed_from_id=original["id"],
    )
    booking, payments = _settle_manually(cur, caller, booking, PaymentType(payment_choice), now)
    return {"booking": booking, "payments": payments, "renewed_from_id": original["id"]}


def check_in(
    cur: PgCursor,
    caller: Caller,
    booking_id: str,
    *,
    today: date | None = None,
    settings: EngineSettings | None = None,
) -> dict[str, Any]:
    """CONFIRMED -> CHECKED_IN, no earlier than check_in_date - grace days."""
    require_role(caller, *_STAFF_ROLES)
    settings = settings or get_engine_settings()
    today = today or utc_now().date()
    booking = _locked_booking(cur, caller, booking_id)

    if booking["status"] != BookingStatus.CONFIRMED.value:
        raise InvalidTransition("booking", booking["status"], BookingStatus.CHECKED_IN.value)

    earliest = booking["check_in_date"] - timedelta(days=settings.checkin_grace_days)
    if today < earliest:
        raise InvalidTransition(
            "booking",
            booking["status"],
            BookingStatus.CHECKED_IN.value,
            f"check-in opens on {earliest.isoformat()}",
        )

    return transition_booking(
        cur, booking, BookingStatus.CHECKED_IN, actor_id=caller.id, stamp="checked_in"
    )


def check_out(cur: PgCursor, caller: Caller, booking_id: str) -> dict[str, Any]:
    """CHECKED_IN -> COMPLETED."""
    require_role(caller, *_STAFF_ROLES)
    booking = _locked_booking(cur, caller, booking_id)
    if booking["status"] != BookingStatus.CHECKED_IN.value:
        raise InvalidTransition("booking", booking["status"], BookingStatus.COMPLETED.value)
    return transition_booking(
        cur, booking, BookingStatus.COMPLETED, actor_id=caller.id, stamp="checked_out"
    )


def cancel_booking(
    cur: PgCursor,
    caller: Caller,
    booking_id: str,
    *,
    reason: str | None = None,
) -> dict[str, Any]:
    """UNPAID/DEPOSIT_PAID/CONFIRMED -> CANCELLED by staff or the customer."""
    booking = _locked_booking(cur, caller, booking_id)
    return transition_booking(
        cur,
        booking,
        BookingStatus.CANCELLED,
        actor_id=caller.id,
        stamp="cancelled",
        note=reason,
    )


def expire_overdue_bookings(
    cur: PgCursor,
    now: datetime | None = None,
    *,
    settings: EngineSettings | None = None,
) -> dict[str, Any]:
    """Expiry sweep, invoked by the external scheduler.

    1. PENDING payments past their expiry become EXPIRED.
    2. UNPAID/DEPOSIT_PAID bookings whose check-in date has passed, and
       UNPAID bookings older than the payment deadline with no live
       payment, become EXPIRED.

    Safe to run repeatedly and concurrently.
    """
    now = now or utc_now()
    settings = settings or get_engine_settings()

    expired_payment_ids = payments_repository.expire_overdue(cur, now=now)

    candidates = bookings_repository.list_expirable(
        cur,
        today=now.date(),
        created_before=now - timedelta(hours=settings.payment_deadline_hours),
    )
    expired_bookings = []
    for booking in candidates:
        if booking["status"] not in {s.value for s in EXPIRABLE_STATUSES}:
            continue
        reason = "check-in date passed" if booking["check_in_date"] < now.date() else "payment deadline"
        transition_booking(cur, booking, BookingStatus.EXPIRED, actor_id="system", note=reason)
        expired_bookings.append(booking["id"])

    logger.info(
        "expiry sweep finished",
        extra={
            "extra_fields": safe_log_context(
                expired_payments=len(expired_payment_ids),
                expired_bookings=len(expired_bookings),
            )
        },
    )
    return {
        "expired_payment_ids": expired_payment_ids,
        "expired_booking_ids": expired_bookings,
    }


# ── Read projections ─────────────────────────────────────


def get_booking(cur: PgCursor, caller: Caller, booking_id: str) -> dict[str, Any]:
    booking = bookings_repository.get_booking(cur, booking_id)
    return dict(require_owner(caller, booking, "booking", booking_id))


def list_bookings(
    cur: PgCursor,
    caller: Caller,
    *,
    property_id: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """Bookings visible to the caller: own stays for customers, the
    operator's bookings for staff, everything for superadmins."""
    if status is not None:
        status = BookingStatus(status).value
    if caller.role == Role.CUSTOMER:
        return bookings_repository.list_bookings(
            cur, customer_id=caller.id, status=status, limit=limit, offset=offset
        )
    operator_id = None if caller.is_superadmin else caller.operator_id
    if operator_id is None and not caller.is_superadmin:
        return []
    return bookings_repository.list_bookings(
        cur,
        operator_id=operator_id,
        property_id=property_id,
        status=status,
        limit=limit,
        offset=offset,
    )


def booking_stats(
    cur: PgCursor,
    caller: Caller,
    *,
    property_id: str | None = None,
) -> dict[str, Any]:
    """Booking count per status, every status present (zero if none)."""
    require_role(caller, *_STAFF_ROLES)
    operator_id = None if caller.is_superadmin else caller.operator_id
    counts = bookings_repository.count_by_status(cur, operator_id=operator_id, property_id=property_id)
    by_status = {s.value: counts.get(s.value, 0) for s in BookingStatus}
    return {"total": sum(by_status.values()), "by_status": by_status}


def list_payments(cur: PgCursor, caller: Caller, booking_id: str) -> list[dict[str, Any]]:
    get_booking(cur, caller, booking_id)
    return payments_repository.list_payments(cur, booking_id=booking_id)
