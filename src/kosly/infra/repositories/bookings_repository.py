"""Bookings repository - rooms lookup, bookings and their status log.

Uses raw SQL with psycopg2 (no ORM). Functions take the caller's cursor;
the caller owns the transaction.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

import psycopg2.errors
from psycopg2.extensions import cursor as PgCursor

from kosly.domain.errors import RoomUnavailable

_BOOKING_COLUMNS = """
    b.id, b.booking_code, b.customer_id, b.room_id, b.property_id,
    p.operator_id, b.check_in_date, b.check_out_date, b.lease_type,
    b.total_amount, b.deposit_amount, b.discount_amount, b.status,
    b.payment_status, b.notes, b.renewed_from_id, b.checked_in_at,
    b.checked_in_by, b.checked_out_at, b.checked_out_by, b.created_by,
    b.created_at, b.updated_at
"""

_BOOKING_KEYS = (
    "id", "booking_code", "customer_id", "room_id", "property_id",
    "operator_id", "check_in_date", "check_out_date", "lease_type",
    "total_amount", "deposit_amount", "discount_amount", "status",
    "payment_status", "notes", "renewed_from_id", "checked_in_at",
    "checked_in_by", "checked_out_at", "checked_out_by", "created_by",
    "created_at", "updated_at",
)

_ID_KEYS = frozenset({
    "id", "customer_id", "room_id", "property_id", "operator_id",
    "renewed_from_id", "checked_in_by", "checked_out_by", "created_by",
})

# Columns stamped with (now, actor) on specific transitions.
_STAMP_COLUMNS = frozenset({"checked_in", "checked_out", "cancelled"})


def _row_to_booking(row: tuple) -> dict[str, Any]:
    booking = dict(zip(_BOOKING_KEYS, row))
    for key in _ID_KEYS:
        if booking[key] is not None:
            booking[key] = str(booking[key])
    return booking


def get_room(cur: PgCursor, room_id: str) -> dict[str, Any] | None:
    """Room with its price schedule, deposit policy and owning operator."""
    cur.execute(
        """
        SELECT r.id, r.property_id, p.operator_id, r.room_number,
               r.daily_price, r.weekly_price, r.monthly_price,
               r.quarterly_price, r.yearly_price,
               r.deposit_type, r.deposit_value, r.is_active
        FROM rooms r
        JOIN properties p ON p.id = r.property_id
        WHERE r.id = %s
        """,
        (room_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "id": str(row[0]),
        "property_id": str(row[1]),
        "operator_id": str(row[2]),
        "room_number": row[3],
        "daily_price": row[4],
        "weekly_price": row[5],
        "monthly_price": row[6],
        "quarterly_price": row[7],
        "yearly_price": row[8],
        "deposit_type": row[9],
        "deposit_value": row[10],
        "is_active": row[11],
    }


def get_booking(
    cur: PgCursor,
    booking_id: str,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    suffix = " FOR UPDATE OF b" if for_update else ""
    cur.execute(
        f"""
        SELECT {_BOOKING_COLUMNS}
        FROM bookings b
        JOIN properties p ON p.id = b.property_id
        WHERE b.id = %s
        {suffix}
        """,
        (booking_id,),
    )
    row = cur.fetchone()
    return _row_to_booking(row) if row else None


def find_overlapping_booking(
    cur: PgCursor,
    *,
    room_id: str,
    check_in: date,
    check_out: date,
    statuses: list[str],
) -> dict[str, Any] | None:
    """First booking on room_id whose [check_in, check_out) intersects the range.

    Overlap: existing.check_in < new.check_out AND existing.check_out > new.check_in.
    Touching ranges (one ends the day the other starts) do not overlap.
    """
    cur.execute(
        """
        SELECT id, check_in_date, check_out_date, status
        FROM bookings
        WHERE room_id = %s
          AND status = ANY(%s::booking_status[])
          AND check_in_date < %s
          AND check_out_date > %s
        ORDER BY check_in_date
        LIMIT 1
        """,
        (room_id, statuses, check_out, check_in),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "id": str(row[0]),
        "check_in_date": row[1],
        "check_out_date": row[2],
        "status": row[3],
    }


def insert_booking(
    cur: PgCursor,
    *,
    booking_code: str,
    customer_id: str,
    room_id: str,
    property_id: str,
    check_in_date: date,
    check_out_date: date,
    lease_type: str,
    total_amount: int,
    deposit_amount: int | None,
    discount_amount: int,
    status: str,
    payment_status: str,
    notes: str | None,
    renewed_from_id: str | None,
    created_by: str,
) -> dict[str, Any]:
    """Insert a booking and return it.

    Raises:
        RoomUnavailable: The room overlap exclusion constraint fired.
    """
    try:
        cur.execute(
            """
            INSERT INTO bookings (
                booking_code, customer_id, room_id, property_id,
                check_in_date, check_out_date, lease_type,
                total_amount, deposit_amount, discount_amount,
                status, payment_status, notes, renewed_from_id, created_by
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                booking_code, customer_id, room_id, property_id,
                check_in_date, check_out_date, lease_type,
                total_amount, deposit_amount, discount_amount,
                status, payment_status, notes, renewed_from_id, created_by,
            ),
        )
    except psycopg2.errors.ExclusionViolation:
        raise RoomUnavailable(room_id)
    booking_id = str(cur.fetchone()[0])
    return get_booking(cur, booking_id)


def update_status(
    cur: PgCursor,
    *,
    booking_id: str,
    from_status: str,
    to_status: str,
    payment_status: str | None = None,
    stamp: str | None = None,
    actor_id: str | None = None,
) -> bool:
    """Compare-and-set the booking status.

    Only updates when the row is still in from_status. stamp names a
    transition column pair ("checked_in" -> checked_in_at/checked_in_by)
    to fill with now() and actor_id.

    Returns:
        True if the row was updated.
    """
    sets = ["status = %s", "updated_at = now()"]
    params: list = [to_status]
    if payment_status is not None:
        sets.append("payment_status = %s")
        params.append(payment_status)
    if stamp is not None:
        if stamp not in _STAMP_COLUMNS:
            raise ValueError(f"Unknown stamp column: {stamp}")
        sets.append(f"{stamp}_at = now()")
        sets.append(f"{stamp}_by = %s")
        params.append(actor_id)
    params.extend([booking_id, from_status])

    cur.execute(
        f"UPDATE bookings SET {', '.join(sets)} WHERE id = %s AND status = %s",
        params,
    )
    return cur.rowcount == 1


def insert_status_log(
    cur: PgCursor,
    *,
    booking_id: str,
    from_status: str | None,
    to_status: str,
    changed_by: str,
    note: str | None = None,
) -> None:
    cur.execute(
        """
        INSERT INTO booking_status_logs (booking_id, from_status, to_status, changed_by, note)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (booking_id, from_status, to_status, changed_by, note),
    )


def list_bookings(
    cur: PgCursor,
    *,
    operator_id: str | None = None,
    property_id: str | None = None,
    customer_id: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    conditions = ["TRUE"]
    params: list = []
    if operator_id is not None:
        conditions.append("p.operator_id = %s")
        params.append(operator_id)
    if property_id is not None:
        conditions.append("b.property_id = %s")
        params.append(property_id)
    if customer_id is not None:
        conditions.append("b.customer_id = %s")
        params.append(customer_id)
    if status is not None:
        conditions.append("b.status = %s")
        params.append(status)
    params.extend([limit, offset])

    cur.execute(
        f"""
        SELECT {_BOOKING_COLUMNS}
        FROM bookings b
        JOIN properties p ON p.id = b.property_id
        WHERE {" AND ".join(conditions)}
        ORDER BY b.created_at DESC
        LIMIT %s OFFSET %s
        """,
        params,
    )
    return [_row_to_booking(row) for row in cur.fetchall()]


def count_by_status(
    cur: PgCursor,
    *,
    operator_id: str | None,
    property_id: str | None = None,
) -> dict[str, int]:
    conditions = ["TRUE"]
    params: list = []
    if operator_id is not None:
        conditions.append("p.operator_id = %s")
        params.append(operator_id)
    if property_id is not None:
        conditions.append("b.property_id = %s")
        params.append(property_id)

    cur.execute(
        f"""
        SELECT b.status, COUNT(*)
        FROM bookings b
        JOIN properties p ON p.id = b.property_id
        WHERE {" AND ".join(conditions)}
        GROUP BY b.status
        """,
        params,
    )
    return {row[0]: int(row[1]) for row in cur.fetchall()}


def list_expirable(
    cur: PgCursor,
    *,
    today: date,
    created_before: datetime,
) -> list[dict[str, Any]]:
    """Bookings the expiry sweep should expire, locked for this transaction.

    - UNPAID or DEPOSIT_PAID whose check-in date has passed
    - UNPAID created before created_before with no live PENDING payment

    Rows locked by a concurrent transaction are skipped; the next sweep
    picks them up.
    """
    cur.execute(
        f"""
        SELECT {_BOOKING_COLUMNS}
        FROM bookings b
        JOIN properties p ON p.id = b.property_id
        WHERE (
            b.status IN ('UNPAID', 'DEPOSIT_PAID') AND b.check_in_date < %s
        ) OR (
            b.status = 'UNPAID'
            AND b.created_at < %s
            AND NOT EXISTS (
                SELECT 1 FROM payments pay
                WHERE pay.booking_id = b.id AND pay.status = 'PENDING'
            )
        )
        ORDER BY b.created_at
        FOR UPDATE OF b SKIP LOCKED
        """,
        (today, created_before),
    )
    return [_row_to_booking(row) for row in cur.fetchall()]
