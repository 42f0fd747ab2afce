"""Lease table and pricing.

A booking always covers exactly one lease unit. The lease type decides both
the price looked up on the room and the check-out date:

    DAILY      +1 day
    WEEKLY     +7 days
    MONTHLY    +1 calendar month
    QUARTERLY  +3 calendar months
    YEARLY     +12 calendar months

Calendar months clamp to the last day of the target month
(2024-01-31 + 1 month = 2024-02-29).

Everything here is pure: no database, no clock.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Mapping

from .errors import InvalidAmount, InvalidLeaseParameters


class LeaseType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class DepositType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


# lease type -> (days, months)
_LEASE_SPAN: dict[LeaseType, tuple[int, int]] = {
    LeaseType.DAILY: (1, 0),
    LeaseType.WEEKLY: (7, 0),
    LeaseType.MONTHLY: (0, 1),
    LeaseType.QUARTERLY: (0, 3),
    LeaseType.YEARLY: (0, 12),
}

# Room column holding the explicit price for each lease type.
PRICE_COLUMNS: dict[LeaseType, str] = {
    LeaseType.DAILY: "daily_price",
    LeaseType.WEEKLY: "weekly_price",
    LeaseType.MONTHLY: "monthly_price",
    LeaseType.QUARTERLY: "quarterly_price",
    LeaseType.YEARLY: "yearly_price",
}


def parse_lease_type(value: Any) -> LeaseType:
    if isinstance(value, LeaseType):
        return value
    try:
        return LeaseType(str(value).upper())
    except ValueError:
        raise InvalidLeaseParameters(f"Unknown lease type: {value!r}")


def add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def checkout_date(check_in: date, lease_type: LeaseType) -> date:
    days, months = _LEASE_SPAN[lease_type]
    if months:
        return add_months(check_in, months)
    return check_in + timedelta(days=days)


@dataclass(frozen=True)
class Quote:
    lease_type: LeaseType
    check_in_date: date
    check_out_date: date
    total_amount: int
    deposit_amount: int | None


def price_for(room: Mapping[str, Any], lease_type: LeaseType) -> int:
    """Price of one lease unit.

    Falls back to the monthly price when the room has no explicit price for
    the lease type: daily = monthly/30, weekly = monthly*7/30,
    quarterly = monthly*3, yearly = monthly*12.

    Raises:
        InvalidLeaseParameters: No usable price, or price is not positive.
    """
    explicit = room.get(PRICE_COLUMNS[lease_type])
    if explicit is not None:
        price = int(explicit)
    else:
        monthly = room.get("monthly_price")
        if monthly is None:
            raise InvalidLeaseParameters(f"Room has no {lease_type.value} price")
        monthly = int(monthly)
        price = {
            LeaseType.DAILY: monthly // 30,
            LeaseType.WEEKLY: monthly * 7 // 30,
            LeaseType.MONTHLY: monthly,
            LeaseType.QUARTERLY: monthly * 3,
            LeaseType.YEARLY: monthly * 12,
        }[lease_type]

    if price <= 0:
        raise InvalidLeaseParameters(f"{lease_type.value} price must be positive")
    return price


def derive_deposit(
    total_amount: int,
    deposit_type: DepositType | str | None,
    deposit_value: int | None,
) -> int | None:
    """Deposit from the room's policy, clamped into (0, total_amount).

    A policy yielding zero or less means "no deposit". A policy yielding the
    whole total or more is capped at total_amount - 1.
    """
    if deposit_type is None or deposit_value is None:
        return None

    deposit_type = DepositType(deposit_type)
    if deposit_type == DepositType.PERCENTAGE:
        deposit = total_amount * int(deposit_value) // 100
    else:
        deposit = int(deposit_value)

    if deposit <= 0 or total_amount <= 1:
        return None
    if deposit >= total_amount:
        return total_amount - 1
    return deposit


def calculate(room: Mapping[str, Any], lease_type: LeaseType | str, check_in_date: date) -> Quote:
    """Price one lease unit of room starting at check_in_date.

    The stay always covers exactly that unit: check-out comes from the lease
    table and is never taken from the caller.
    """
    lease_type = parse_lease_type(lease_type)
    check_out_date = checkout_date(check_in_date, lease_type)

    total = price_for(room, lease_type)
    deposit = derive_deposit(total, room.get("deposit_type"), room.get("deposit_value"))

    return Quote(
        lease_type=lease_type,
        check_in_date=check_in_date,
        check_out_date=check_out_date,
        total_amount=total,
        deposit_amount=deposit,
    )


def validate_discount(total_amount: int, discount_amount: int | None) -> int:
    """Return the discount as int, enforcing 0 <= discount <= total."""
    discount = int(discount_amount or 0)
    if discount < 0:
        raise InvalidAmount("discount cannot be negative")
    if discount > total_amount:
        raise InvalidAmount("discount cannot exceed the total amount")
    return discount
