"""Stripe webhook signature validation and translation to payment results.

Purpose:
- Validate webhook signature using Stripe-Signature header.
- Map Checkout Session events onto (order_id, status, amount, time).
- Never log payload or signature.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import stripe

from kosly.observability.logging import get_logger

logger = get_logger(__name__)


class InvalidSignatureError(Exception):
    """Webhook signature validation failed."""


class InvalidPayloadError(Exception):
    """Payload structure is invalid or missing required fields."""


# Checkout Session event type -> payment status. completed depends on
# payment_status (async methods complete before the money arrives).
_EVENT_STATUS = {
    "checkout.session.async_payment_succeeded": "SUCCESS",
    "checkout.session.async_payment_failed": "FAILED",
    "checkout.session.expired": "EXPIRED",
}


@dataclass
class PaymentNotification:
    """Gateway notification reduced to what the payment recorder needs."""

    event_id: str
    event_type: str
    order_id: str | None
    status: str | None  # SUCCESS / FAILED / EXPIRED / PENDING; None = not a payment event
    amount: int | None
    transaction_time: datetime | None


def verify_and_extract(
    payload_bytes: bytes,
    signature_header: str,
    webhook_secret: str,
) -> PaymentNotification:
    """Validate Stripe webhook signature and extract the payment result.

    Raises:
        InvalidSignatureError: If signature validation fails.
        InvalidPayloadError: If event structure is invalid.
    """
    try:
        event = stripe.Webhook.construct_event(
            payload_bytes,
            signature_header,
            webhook_secret,
        )
    except stripe.SignatureVerificationError as e:
        logger.warning("stripe webhook verification failed")
        raise InvalidSignatureError("Invalid signature") from e
    except ValueError as e:
        logger.warning("stripe webhook body could not be parsed")
        raise InvalidPayloadError("Invalid payload") from e

    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        raise InvalidPayloadError("Missing event id or type")

    return extract_notification(
        event_id,
        event_type,
        event.get("data", {}).get("object", {}) or {},
        event_created=event.get("created"),
    )


def extract_notification(
    event_id: str,
    event_type: str,
    session: dict[str, Any],
    *,
    event_created: int | float | None = None,
) -> PaymentNotification:
    """Map a Checkout Session object onto a PaymentNotification.

    The transaction time of a success is the event timestamp, not the
    session's own ``created`` (that is when checkout was opened).
    """
    metadata = session.get("metadata") or {}
    order_id = metadata.get("order_id") or session.get("client_reference_id")

    status: str | None
    if event_type == "checkout.session.completed":
        status = "SUCCESS" if session.get("payment_status") in ("paid", "no_payment_required") else "PENDING"
    else:
        status = _EVENT_STATUS.get(event_type)

    transaction_time = None
    if status == "SUCCESS":
        transaction_time = (
            datetime.fromtimestamp(event_created, tz=timezone.utc)
            if isinstance(event_created, (int, float))
            else datetime.now(timezone.utc)
        )

    amount = session.get("amount_total")
    return PaymentNotification(
        event_id=event_id,
        event_type=event_type,
        order_id=order_id,
        status=status,
        amount=int(amount) if amount is not None else None,
        transaction_time=transaction_time,
    )
