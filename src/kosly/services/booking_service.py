"""Booking service - booking units of work plus their side effects.

Each function commits the engine's work in one txn() and only then runs
fire-and-forget side effects (gateway order, notifications).
"""

from __future__ import annotations

from typing import Any

from kosly.domain import booking_engine, payment_recorder
from kosly.domain.authz import Caller
from kosly.infra.db import txn
from kosly.notifications import dispatcher

from .payment_service import request_checkout


def _booking_event(booking: dict[str, Any]) -> dict[str, Any]:
    return {
        "booking_code": booking["booking_code"],
        "operator_id": booking["operator_id"],
        "property_id": booking["property_id"],
        "status": booking["status"],
    }


def _notify_settled(payments: list[dict[str, Any]]) -> None:
    for payment in payments:
        dispatcher.notify(
            dispatcher.PAYMENT_SUCCESS,
            payment["id"],
            {
                "booking_id": payment["booking_id"],
                "payment_type": payment["payment_type"],
                "amount": int(payment["amount"]),
            },
        )


def create_booking(caller: Caller, **params: Any) -> dict[str, Any]:
    """Self-service booking with its first gateway payment.

    Returns:
        {"booking": dict, "payment": dict} where payment carries
        redirect_url (None if the gateway was unavailable).
    """
    with txn() as cur:
        created = booking_engine.create_booking(cur, caller, **params)
        booking = created["booking"]
        opened = payment_recorder.open_payment(
            cur, caller, booking_id=booking["id"], payment_type=created["payment_type"]
        )

    payment = dict(opened["payment"])
    payment["redirect_url"] = request_checkout(payment, booking["booking_code"])
    dispatcher.notify(dispatcher.BOOKING_CREATED, booking["id"], _booking_event(booking))
    return {"booking": booking, "payment": payment}


def create_manual_booking(caller: Caller, **params: Any) -> dict[str, Any]:
    with txn() as cur:
        result = booking_engine.create_manual_booking(cur, caller, **params)

    booking = result["booking"]
    dispatcher.notify(dispatcher.BOOKING_CREATED, booking["id"], _booking_event(booking))
    _notify_settled(result["payments"])
    return result


def renew_booking(caller: Caller, booking_id: str, **params: Any) -> dict[str, Any]:
    with txn() as cur:
        result = booking_engine.renew_booking(cur, caller, booking_id, **params)

    booking = result["booking"]
    dispatcher.notify(
        dispatcher.BOOKING_CREATED,
        booking["id"],
        {**_booking_event(booking), "renewed_from_id": result["renewed_from_id"]},
    )
    _notify_settled(result["payments"])
    return result


def check_in(caller: Caller, booking_id: str) -> dict[str, Any]:
    with txn() as cur:
        booking = booking_engine.check_in(cur, caller, booking_id)
    dispatcher.notify(dispatcher.BOOKING_CHECKED_IN, booking["id"], _booking_event(booking))
    return booking


def check_out(caller: Caller, booking_id: str) -> dict[str, Any]:
    with txn() as cur:
        booking = booking_engine.check_out(cur, caller, booking_id)
    dispatcher.notify(dispatcher.BOOKING_CHECKED_OUT, booking["id"], _booking_event(booking))
    return booking


def cancel_booking(caller: Caller, booking_id: str, *, reason: str | None = None) -> dict[str, Any]:
    with txn() as cur:
        return booking_engine.cancel_booking(cur, caller, booking_id, reason=reason)


def expire_overdue() -> dict[str, Any]:
    """Run the expiry sweep and notify each expired booking."""
    with txn() as cur:
        result = booking_engine.expire_overdue_bookings(cur)
    for booking_id in result["expired_booking_ids"]:
        dispatcher.notify(dispatcher.BOOKING_EXPIRED, booking_id)
    return result
