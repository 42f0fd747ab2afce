"""Booking and payment status types and the booking transition table.

Every booking status change goes through transition_booking, which checks
TRANSITIONS; no other module compares status strings to decide what is
allowed.
"""

from __future__ import annotations

import secrets
import string
import time
from enum import Enum
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from kosly.infra.repositories import bookings_repository
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context

from .errors import InvalidTransition

logger = get_logger(__name__)


class BookingStatus(str, Enum):
    UNPAID = "UNPAID"
    DEPOSIT_PAID = "DEPOSIT_PAID"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class BookingPaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    DEPOSIT_PAID = "DEPOSIT_PAID"
    SUCCESS = "SUCCESS"


class PaymentType(str, Enum):
    DEPOSIT = "DEPOSIT"
    FULL = "FULL"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.UNPAID: frozenset({
        BookingStatus.DEPOSIT_PAID,
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
        BookingStatus.EXPIRED,
    }),
    BookingStatus.DEPOSIT_PAID: frozenset({
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
        BookingStatus.EXPIRED,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.CHECKED_IN,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.CHECKED_IN: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Statuses that hold the room. Everything except CANCELLED and EXPIRED.
OCCUPYING_STATUSES = frozenset(
    s for s in BookingStatus if s not in (BookingStatus.CANCELLED, BookingStatus.EXPIRED)
)

# Statuses the expiry sweep may act on.
EXPIRABLE_STATUSES = frozenset({BookingStatus.UNPAID, BookingStatus.DEPOSIT_PAID})

TERMINAL_PAYMENT_STATUSES = frozenset({
    PaymentStatus.SUCCESS,
    PaymentStatus.FAILED,
    PaymentStatus.EXPIRED,
})


def can_transition(from_status: BookingStatus | str, to_status: BookingStatus | str) -> bool:
    return BookingStatus(to_status) in TRANSITIONS[BookingStatus(from_status)]


def assert_transition(
    from_status: BookingStatus | str,
    to_status: BookingStatus | str,
    reason: str | None = None,
) -> None:
    """Raise InvalidTransition unless the table allows from -> to."""
    if not can_transition(from_status, to_status):
        raise InvalidTransition(
            "booking",
            BookingStatus(from_status).value,
            BookingStatus(to_status).value,
            reason,
        )


def status_after_payment(
    current: BookingStatus | str,
    payment_type: PaymentType | str,
) -> tuple[BookingStatus, BookingPaymentStatus]:
    """Booking status and payment status once a payment of this type settles."""
    current = BookingStatus(current)
    if PaymentType(payment_type) == PaymentType.DEPOSIT:
        target = (BookingStatus.DEPOSIT_PAID, BookingPaymentStatus.DEPOSIT_PAID)
    else:
        target = (BookingStatus.CONFIRMED, BookingPaymentStatus.SUCCESS)
    assert_transition(current, target[0], f"{PaymentType(payment_type).value} payment settled")
    return target


_BASE36 = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_booking_code() -> str:
    """Human-readable booking code, e.g. 'BKLX2Q9V1A7K3'.

    Uniqueness is enforced by the bookings.booking_code constraint.
    """
    stamp = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"BK{stamp}{suffix}"


def transition_booking(
    cur: PgCursor,
    booking: dict[str, Any],
    to_status: BookingStatus,
    *,
    actor_id: str,
    payment_status: BookingPaymentStatus | None = None,
    stamp: str | None = None,
    note: str | None = None,
) -> dict[str, Any]:
    """Validate and persist one booking transition, with its status log row.

    booking must have been read FOR UPDATE in the current transaction.

    Returns:
        The booking dict with the new status applied.

    Raises:
        InvalidTransition: Not allowed by TRANSITIONS, or the row changed
            underneath us.
    """
    from_status = BookingStatus(booking["status"])
    assert_transition(from_status, to_status)

    updated = bookings_repository.update_status(
        cur,
        booking_id=booking["id"],
        from_status=from_status.value,
        to_status=to_status.value,
        payment_status=payment_status.value if payment_status else None,
        stamp=stamp,
        actor_id=actor_id,
    )
    if not updated:
        raise InvalidTransition("booking", from_status.value, to_status.value, "concurrent update")

    bookings_repository.insert_status_log(
        cur,
        booking_id=booking["id"],
        from_status=from_status.value,
        to_status=to_status.value,
        changed_by=actor_id,
        note=note,
    )

    logger.info(
        "booking status changed",
        extra={
            "extra_fields": safe_log_context(
                booking_id=booking["id"],
                from_status=from_status.value,
                to_status=to_status.value,
                actor_id=actor_id,
            )
        },
    )

    result = {**booking, "status": to_status.value}
    if payment_status is not None:
        result["payment_status"] = payment_status.value
    return result
