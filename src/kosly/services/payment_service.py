"""Payment service - gateway orders and gateway notifications.

Gateway calls happen outside the database transaction: the PENDING payment
is committed first, then the checkout page is requested and its URL stored
in a second, independent transaction. A gateway outage leaves a payment
without redirect_url that the customer can re-open later; it never undoes
a committed booking.
"""

from __future__ import annotations

from typing import Any

from kosly.domain import payment_recorder
from kosly.domain.authz import Caller
from kosly.domain.bookings import PaymentStatus
from kosly.infra.db import txn
from kosly.infra.repositories import payments_repository
from kosly.infra.settings import get_engine_settings
from kosly.notifications import dispatcher
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context
from kosly.stripe.client import StripeClient

logger = get_logger(__name__)


def request_checkout(payment: dict[str, Any], booking_code: str | None = None) -> str | None:
    """Create the gateway order for a PENDING payment and store its URL.

    Returns:
        The redirect URL, or None if the gateway call failed.
    """
    if payment.get("redirect_url"):
        return payment["redirect_url"]

    expires_at = payment.get("expires_at")
    try:
        client = StripeClient(currency=get_engine_settings().currency)
        url = client.create_order(
            payment["order_id"],
            int(payment["amount"]),
            description=f"Booking {booking_code}" if booking_code else None,
            expires_at=int(expires_at.timestamp()) if expires_at else None,
        )
        with txn() as cur:
            payments_repository.set_redirect_url(cur, payment_id=payment["id"], redirect_url=url)
    except Exception as e:
        logger.exception(
            "gateway order creation failed",
            extra={
                "extra_fields": safe_log_context(
                    payment_id=payment["id"],
                    order_id=payment["order_id"],
                    error=str(e),
                )
            },
        )
        return None
    return url


def open_payment(caller: Caller, *, booking_id: str, payment_type: str) -> dict[str, Any]:
    """Open (or reuse) a gateway payment and attach its checkout URL."""
    with txn() as cur:
        opened = payment_recorder.open_payment(
            cur, caller, booking_id=booking_id, payment_type=payment_type
        )
    payment = dict(opened["payment"])
    payment["redirect_url"] = request_checkout(payment, opened["booking"]["booking_code"])
    return {"payment": payment, "created": opened["created"]}


def handle_notification(
    *,
    order_id: str,
    status: PaymentStatus | str,
    amount: int | None,
    transaction_time=None,
) -> dict[str, Any]:
    """Apply one gateway notification and notify on a fresh settlement.

    Domain errors (NotFound, AmountMismatch) propagate to the webhook route.
    """
    with txn() as cur:
        result = payment_recorder.record_result(
            cur,
            order_id=order_id,
            status=status,
            amount=amount,
            transaction_time=transaction_time,
        )

    if result["status"] == "success":
        payment = result["payment"]
        dispatcher.notify(
            dispatcher.PAYMENT_SUCCESS,
            payment["id"],
            {
                "booking_id": payment["booking_id"],
                "payment_type": payment["payment_type"],
                "amount": int(payment["amount"]),
            },
        )
    return result
