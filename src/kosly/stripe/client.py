"""Thin wrapper around the Stripe SDK - the outbound payment gateway adapter.

Purpose:
- Keep stripe.* imports out of domain code.
- One Checkout Session per order id; the order id doubles as the Stripe
  idempotency key so retries never open a second session.
- Never log full Stripe payloads (only IDs + correlation metadata).
"""

from __future__ import annotations

import os
from typing import Any

import stripe

from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context

logger = get_logger(__name__)

_DEFAULT_SUCCESS_URL = "https://app.kosly.id/payments/success"
_DEFAULT_CANCEL_URL = "https://app.kosly.id/payments/cancel"


class StripeClient:
    """Creates hosted checkout pages for booking payments.

    Usage:
        client = StripeClient()  # reads STRIPE_SECRET_KEY from env
        url = client.create_order("DEP-3F2A9C1B-LX2Q9V1A", 300_000)
    """

    def __init__(self, api_key: str | None = None, currency: str = "idr") -> None:
        """Raises RuntimeError if no API key is given or set in STRIPE_SECRET_KEY."""
        self._api_key = api_key or os.environ.get("STRIPE_SECRET_KEY")
        if not self._api_key:
            raise RuntimeError(
                "Stripe API key not provided. "
                "Set STRIPE_SECRET_KEY or pass api_key parameter."
            )
        self._currency = currency.lower()

    def create_order(
        self,
        order_id: str,
        amount: int,
        *,
        description: str | None = None,
        expires_at: int | None = None,
    ) -> str:
        """Create a Checkout Session for order_id and return its redirect URL.

        Args:
            order_id: Payment order id; stored as client_reference_id and
                metadata so the webhook can resolve the payment.
            amount: Amount in the smallest currency unit.
            description: Line item label shown on the checkout page.
            expires_at: Optional Unix timestamp when the session expires.
        """
        client = stripe.StripeClient(self._api_key)

        params: dict[str, Any] = {
            "mode": "payment",
            "client_reference_id": order_id,
            "metadata": {"order_id": order_id},
            "line_items": [
                {
                    "price_data": {
                        "currency": self._currency,
                        "unit_amount": amount,
                        "product_data": {"name": description or f"Booking payment {order_id}"},
                    },
                    "quantity": 1,
                }
            ],
            "success_url": os.environ.get("STRIPE_SUCCESS_URL", _DEFAULT_SUCCESS_URL),
            "cancel_url": os.environ.get("STRIPE_CANCEL_URL", _DEFAULT_CANCEL_URL),
        }
        if expires_at is not None:
            params["expires_at"] = expires_at

        session = client.v1.checkout.sessions.create(
            params=params,
            options={"idempotency_key": f"order:{order_id}"},
        )

        logger.info(
            "stripe checkout session created",
            extra={
                "extra_fields": safe_log_context(
                    order_id=order_id,
                    session_id=session.id,
                )
            },
        )
        return session.url
