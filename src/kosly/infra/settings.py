"""Engine settings read from the environment.

Every accessor reads os.environ at call time so tests can patch the
environment without reloading modules.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _int_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for booking and payment flows.

    Attributes:
        checkin_grace_days: Check-in allowed this many days before the
            booked check-in date.
        payment_deadline_hours: An UNPAID booking expires when no payment
            settled within this window after creation.
        deposit_payment_expiry_hours: Lifetime of a DEPOSIT gateway order.
        full_payment_expiry_hours: Lifetime of a FULL gateway order.
        currency: Currency code sent to the payment gateway.
    """

    checkin_grace_days: int = 0
    payment_deadline_hours: int = 24
    deposit_payment_expiry_hours: int = 24
    full_payment_expiry_hours: int = 1
    currency: str = "idr"


def get_engine_settings() -> EngineSettings:
    """Load EngineSettings from environment variables."""
    return EngineSettings(
        checkin_grace_days=_int_env("CHECKIN_GRACE_DAYS", 0),
        payment_deadline_hours=_int_env("PAYMENT_DEADLINE_HOURS", 24, minimum=1),
        deposit_payment_expiry_hours=_int_env("DEPOSIT_PAYMENT_EXPIRY_HOURS", 24, minimum=1),
        full_payment_expiry_hours=_int_env("FULL_PAYMENT_EXPIRY_HOURS", 1, minimum=1),
        currency=os.environ.get("PAYMENT_CURRENCY", "idr").lower(),
    )
