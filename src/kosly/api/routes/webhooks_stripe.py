"""Stripe webhook route - public endpoint for Checkout Session events.

Security rules:
- Validate Stripe-Signature on every request.
- Never log payload or signature header.

The result is applied synchronously: payment, booking and ledger entry
commit together before Stripe gets its 2xx. Redeliveries are answered
from the payment's terminal status, so no receipt table is needed.

Status codes:
    200  processed, already processed, or not a payment event
    400  bad signature/payload, unknown order, amount mismatch (no retry)
    500  unexpected failure (Stripe retries)
"""

from __future__ import annotations

import os

from fastapi import APIRouter, Header, Request, Response

from kosly.domain.errors import AmountMismatch, NotFound
from kosly.observability.correlation import get_correlation_id
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context
from kosly.stripe.webhook import (
    InvalidPayloadError,
    InvalidSignatureError,
    verify_and_extract,
)

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)


def _get_webhook_secret() -> str:
    secret = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    if not secret:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET not configured")
    return secret


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
) -> Response:
    from kosly.services import payment_service

    correlation_id = get_correlation_id()
    payload_bytes = await request.body()

    try:
        webhook_secret = _get_webhook_secret()
    except RuntimeError:
        logger.error(
            "webhook secret not configured",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="server configuration error")

    try:
        notification = verify_and_extract(payload_bytes, stripe_signature, webhook_secret)
    except InvalidSignatureError:
        return Response(status_code=400, content="invalid signature")
    except InvalidPayloadError:
        return Response(status_code=400, content="invalid payload")

    logger.info(
        "stripe webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                event_id=notification.event_id,
                event_type=notification.event_type,
                order_id=notification.order_id,
            )
        },
    )

    if notification.status is None:
        return Response(status_code=200, content="ignored")
    if not notification.order_id:
        logger.warning(
            "stripe event without order id",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, event_type=notification.event_type)},
        )
        return Response(status_code=400, content="missing order id")

    try:
        result = payment_service.handle_notification(
            order_id=notification.order_id,
            status=notification.status,
            amount=notification.amount,
            transaction_time=notification.transaction_time,
        )
    except NotFound:
        logger.warning(
            "stripe event for unknown order",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, order_id=notification.order_id)},
        )
        return Response(status_code=400, content="unknown order")
    except AmountMismatch:
        return Response(status_code=400, content="amount mismatch")
    except Exception:
        logger.exception(
            "stripe webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, order_id=notification.order_id)},
        )
        return Response(status_code=500, content="processing failed")

    return Response(status_code=200, content=result["status"])
