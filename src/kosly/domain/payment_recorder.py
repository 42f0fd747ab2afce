"""Payment recorder - turns payment results into booking and ledger changes.

Settlement of a payment is one unit of work inside the caller's transaction:

    lock payment -> mark SUCCESS -> expire other open orders
    -> transition booking -> write IN entry

Gateway notifications and staff-entered (manual) settlements share
_settle(), so every successful payment produces exactly one PAYMENT ledger
entry whatever its origin. Redelivered notifications for a payment that
already reached a terminal status are reported as "already_processed".
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from kosly.infra.repositories import bookings_repository, payments_repository
from kosly.infra.settings import EngineSettings, get_engine_settings
from kosly.infra.time import utc_now
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context

from . import ledger
from .authz import Caller, require_owner
from .bookings import (
    TERMINAL_PAYMENT_STATUSES,
    BookingStatus,
    PaymentStatus,
    PaymentType,
    can_transition,
    status_after_payment,
    to_base36,
    transition_booking,
)
from .errors import AmountMismatch, InvalidAmount, InvalidTransition, NotFound

logger = get_logger(__name__)

_ORDER_PREFIX = {PaymentType.DEPOSIT: "DEP", PaymentType.FULL: "FULL"}

# Booking statuses that accept a new payment of each type.
_PAYABLE_FROM = {
    PaymentType.DEPOSIT: frozenset({BookingStatus.UNPAID}),
    PaymentType.FULL: frozenset({BookingStatus.UNPAID, BookingStatus.DEPOSIT_PAID}),
}


def generate_order_id(
    booking_id: str,
    payment_type: PaymentType | str,
    *,
    manual: bool = False,
    now: datetime | None = None,
) -> str:
    """External order reference, e.g. 'DEP-3F2A9C1B-LX2Q9V1A'.

    Unique per payment attempt because of the millisecond stamp; the unique
    constraint on payments.order_id is the final guard.
    """
    prefix = _ORDER_PREFIX[PaymentType(payment_type)]
    if manual:
        prefix = f"MAN{prefix}"
    millis = int((now.timestamp() if now else time.time()) * 1000)
    short_id = booking_id.replace("-", "")[:8].upper()
    return f"{prefix}-{short_id}-{to_base36(millis)}"


def expected_amount(
    booking: dict[str, Any],
    payment_type: PaymentType | str,
    *,
    deposit_paid: int = 0,
) -> int:
    """Amount a payment of this type must carry.

    DEPOSIT: the booking's deposit. FULL: total - discount - deposit already
    paid.
    """
    payment_type = PaymentType(payment_type)
    if payment_type == PaymentType.DEPOSIT:
        if not booking.get("deposit_amount"):
            raise InvalidAmount(f"booking {booking['id']} has no deposit")
        return int(booking["deposit_amount"])

    amount = int(booking["total_amount"]) - int(booking.get("discount_amount") or 0) - deposit_paid
    if amount <= 0:
        raise InvalidAmount(f"booking {booking['id']} has nothing left to pay")
    return amount


def _deposit_paid(cur: PgCursor, booking_id: str) -> int:
    deposit = payments_repository.get_successful_payment(
        cur, booking_id=booking_id, payment_type=PaymentType.DEPOSIT.value
    )
    return int(deposit["amount"]) if deposit else 0


def _expiry(payment_type: PaymentType, now: datetime, settings: EngineSettings) -> datetime:
    hours = (
        settings.deposit_payment_expiry_hours
        if payment_type == PaymentType.DEPOSIT
        else settings.full_payment_expiry_hours
    )
    return now + timedelta(hours=hours)


def _assert_payable(booking: dict[str, Any], payment_type: PaymentType) -> None:
    status = BookingStatus(booking["status"])
    if status not in _PAYABLE_FROM[payment_type]:
        target = BookingStatus.DEPOSIT_PAID if payment_type == PaymentType.DEPOSIT else BookingStatus.CONFIRMED
        raise InvalidTransition(
            "booking", status.value, target.value, f"{payment_type.value} payment not accepted"
        )


def open_payment(
    cur: PgCursor,
    caller: Caller,
    *,
    booking_id: str,
    payment_type: PaymentType | str,
    now: datetime | None = None,
    settings: EngineSettings | None = None,
) -> dict[str, Any]:
    """Create (or return the live) PENDING gateway payment for a booking.

    Returns:
        {"payment": dict, "created": bool, "booking": dict}
    """
    payment_type = PaymentType(payment_type)
    now = now or utc_now()
    settings = settings or get_engine_settings()

    booking = bookings_repository.get_booking(cur, booking_id, for_update=True)
    require_owner(caller, booking, "booking", booking_id)
    _assert_payable(booking, payment_type)

    amount = expected_amount(booking, payment_type, deposit_paid=_deposit_paid(cur, booking_id))
    existing = payments_repository.get_open_payment(
        cur, booking_id=booking_id, payment_type=payment_type.value, now=now
    )
    if existing is not None:
        if int(existing["amount"]) == amount:
            return {"payment": existing, "created": False, "booking": booking}
        # Opened before a deposit settled; its amount is stale.
        payments_repository.mark_result(
            cur, payment_id=existing["id"], status=PaymentStatus.EXPIRED.value, transaction_time=None
        )
        logger.info(
            "stale payment expired",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=booking_id,
                    order_id=existing["order_id"],
                    stale_amount=existing["amount"],
                    amount=amount,
                )
            },
        )

    sales_account = ledger.get_sales_account(cur, booking["operator_id"])

    payment = payments_repository.insert_payment(
        cur,
        booking_id=booking_id,
        payer_id=booking["customer_id"],
        payment_type=payment_type.value,
        order_id=generate_order_id(booking_id, payment_type, now=now),
        amount=amount,
        status=PaymentStatus.PENDING.value,
        settlement_account_id=sales_account["id"],
        expires_at=_expiry(payment_type, now, settings),
    )

    logger.info(
        "payment opened",
        extra={
            "extra_fields": safe_log_context(
                booking_id=booking_id,
                payment_id=payment["id"],
                order_id=payment["order_id"],
                payment_type=payment_type.value,
                amount=amount,
            )
        },
    )
    return {"payment": payment, "created": True, "booking": booking}


def record_result(
    cur: PgCursor,
    *,
    order_id: str,
    status: PaymentStatus | str,
    amount: int | None,
    transaction_time: datetime | None = None,
) -> dict[str, Any]:
    """Apply a gateway notification for order_id.

    Returns a dict whose "status" is one of:
        "success"            payment settled, booking moved, entry written
        "already_processed"  payment was already terminal, nothing changed
        "pending"            gateway still waiting, nothing changed
        "failed" / "expired" payment closed without settlement

    Raises:
        NotFound: No payment with this order id.
        AmountMismatch: amount differs from the payment's expected amount.
    """
    status = PaymentStatus(status)
    payment = payments_repository.get_payment_by_order_id(cur, order_id, for_update=True)
    if payment is None:
        raise NotFound("payment", order_id)

    if PaymentStatus(payment["status"]) in TERMINAL_PAYMENT_STATUSES:
        logger.info(
            "payment notification already processed",
            extra={
                "extra_fields": safe_log_context(
                    order_id=order_id,
                    stored_status=payment["status"],
                    received_status=status.value,
                )
            },
        )
        return {"status": "already_processed", "payment": payment}

    if amount is not None and int(amount) != int(payment["amount"]):
        logger.warning(
            "payment amount mismatch",
            extra={
                "extra_fields": safe_log_context(
                    order_id=order_id, expected=payment["amount"], received=amount
                )
            },
        )
        raise AmountMismatch(order_id, int(payment["amount"]), int(amount))

    if status == PaymentStatus.PENDING:
        return {"status": "pending", "payment": payment}

    if status == PaymentStatus.SUCCESS:
        return _settle(
            cur,
            payment,
            transaction_time=transaction_time or utc_now(),
            actor_id="gateway",
        )

    payments_repository.mark_result(
        cur, payment_id=payment["id"], status=status.value, transaction_time=None
    )
    logger.info(
        "payment closed without settlement",
        extra={
            "extra_fields": safe_log_context(
                order_id=order_id, payment_id=payment["id"], status=status.value
            )
        },
    )
    return {"status": status.value.lower(), "payment": {**payment, "status": status.value}}


def record_manual_settlement(
    cur: PgCursor,
    *,
    booking: dict[str, Any],
    payment_type: PaymentType | str,
    actor_id: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Staff-collected payment, settled immediately through the same path
    as a gateway success.

    booking must be locked by the caller.
    """
    payment_type = PaymentType(payment_type)
    now = now or utc_now()
    _assert_payable(booking, payment_type)

    amount = expected_amount(booking, payment_type, deposit_paid=_deposit_paid(cur, booking["id"]))
    sales_account = ledger.get_sales_account(cur, booking["operator_id"])

    payment = payments_repository.insert_payment(
        cur,
        booking_id=booking["id"],
        payer_id=booking["customer_id"],
        payment_type=payment_type.value,
        order_id=generate_order_id(booking["id"], payment_type, manual=True, now=now),
        amount=amount,
        status=PaymentStatus.PENDING.value,
        settlement_account_id=sales_account["id"],
    )
    return _settle(cur, payment, transaction_time=now, actor_id=actor_id, booking=booking)


def _settle(
    cur: PgCursor,
    payment: dict[str, Any],
    *,
    transaction_time: datetime,
    actor_id: str,
    booking: dict[str, Any] | None = None,
) -> dict[str, Any]:
    if not payments_repository.mark_result(
        cur,
        payment_id=payment["id"],
        status=PaymentStatus.SUCCESS.value,
        transaction_time=transaction_time,
    ):
        # Row lock is held, so this only happens if the row left PENDING
        # inside this same transaction.
        return {"status": "already_processed", "payment": payment}

    payment = {**payment, "status": PaymentStatus.SUCCESS.value, "transaction_time": transaction_time}

    # Any other open order for the booking was priced before this settlement.
    superseded = payments_repository.expire_open_payments(
        cur, booking_id=payment["booking_id"], exclude_payment_id=payment["id"]
    )

    if booking is None:
        booking = bookings_repository.get_booking(cur, payment["booking_id"], for_update=True)
    if booking is None:
        raise NotFound("booking", payment["booking_id"])

    payment_type = PaymentType(payment["payment_type"])
    target_status = BookingStatus.DEPOSIT_PAID if payment_type == PaymentType.DEPOSIT else BookingStatus.CONFIRMED

    if can_transition(booking["status"], target_status):
        to_status, payment_status = status_after_payment(booking["status"], payment_type)
        booking = transition_booking(
            cur,
            booking,
            to_status,
            actor_id=actor_id,
            payment_status=payment_status,
            note=f"{payment_type.value} payment {payment['order_id']}",
        )
    else:
        # Money arrived for a booking that already left the payable states
        # (expired or cancelled). The funds are still recorded.
        logger.warning(
            "payment settled on non-payable booking",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=booking["id"],
                    booking_status=booking["status"],
                    order_id=payment["order_id"],
                )
            },
        )

    entry = ledger.create_entry(
        cur,
        operator_id=booking["operator_id"],
        account_id=payment["settlement_account_id"],
        direction=ledger.Direction.IN,
        amount=int(payment["amount"]),
        note=ledger.payment_entry_note(payment_type.value, booking["booking_code"]),
        ref_type=ledger.RefType.PAYMENT,
        ref_id=payment["id"],
        property_id=booking["property_id"],
        created_by=None if actor_id == "gateway" else actor_id,
        entry_date=transaction_time.date(),
    )

    logger.info(
        "payment settled",
        extra={
            "extra_fields": safe_log_context(
                order_id=payment["order_id"],
                payment_id=payment["id"],
                booking_id=booking["id"],
                booking_status=booking["status"],
                ledger_entry_id=entry["id"],
                amount=payment["amount"],
                superseded_payments=len(superseded),
            )
        },
    )
    return {
        "status": "success",
        "payment": payment,
        "booking": booking,
        "ledger_entry": entry,
    }
