"""Payments repository - one row per payment attempt (gateway or manual).

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_PAYMENT_COLUMNS = """
    id, booking_id, payer_id, payment_type, order_id, amount, status,
    transaction_time, settlement_account_id, expires_at, redirect_url,
    created_at, updated_at
"""

_PAYMENT_KEYS = (
    "id", "booking_id", "payer_id", "payment_type", "order_id", "amount",
    "status", "transaction_time", "settlement_account_id", "expires_at",
    "redirect_url", "created_at", "updated_at",
)


def _row_to_payment(row: tuple) -> dict[str, Any]:
    payment = dict(zip(_PAYMENT_KEYS, row))
    for key in ("id", "booking_id", "payer_id", "settlement_account_id"):
        if payment[key] is not None:
            payment[key] = str(payment[key])
    return payment


def insert_payment(
    cur: PgCursor,
    *,
    booking_id: str,
    payer_id: str,
    payment_type: str,
    order_id: str,
    amount: int,
    status: str,
    settlement_account_id: str,
    expires_at: datetime | None = None,
    transaction_time: datetime | None = None,
) -> dict[str, Any]:
    cur.execute(
        f"""
        INSERT INTO payments (
            booking_id, payer_id, payment_type, order_id, amount, status,
            settlement_account_id, expires_at, transaction_time
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING {_PAYMENT_COLUMNS}
        """,
        (
            booking_id, payer_id, payment_type, order_id, amount, status,
            settlement_account_id, expires_at, transaction_time,
        ),
    )
    return _row_to_payment(cur.fetchone())


def get_payment_by_order_id(
    cur: PgCursor,
    order_id: str,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    suffix = " FOR UPDATE" if for_update else ""
    cur.execute(
        f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE order_id = %s{suffix}",
        (order_id,),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def get_open_payment(
    cur: PgCursor,
    *,
    booking_id: str,
    payment_type: str,
    now: datetime,
) -> dict[str, Any] | None:
    """Live PENDING payment of this type for the booking, if any."""
    cur.execute(
        f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM payments
        WHERE booking_id = %s AND payment_type = %s AND status = 'PENDING'
          AND (expires_at IS NULL OR expires_at > %s)
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (booking_id, payment_type, now),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def get_successful_payment(
    cur: PgCursor,
    *,
    booking_id: str,
    payment_type: str,
) -> dict[str, Any] | None:
    cur.execute(
        f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM payments
        WHERE booking_id = %s AND payment_type = %s AND status = 'SUCCESS'
        """,
        (booking_id, payment_type),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def mark_result(
    cur: PgCursor,
    *,
    payment_id: str,
    status: str,
    transaction_time: datetime | None,
) -> bool:
    """Move a PENDING payment to its final status.

    Returns:
        True if the row was still PENDING and got updated.
    """
    cur.execute(
        """
        UPDATE payments
        SET status = %s, transaction_time = %s, updated_at = now()
        WHERE id = %s AND status = 'PENDING'
        """,
        (status, transaction_time, payment_id),
    )
    return cur.rowcount == 1


def set_redirect_url(cur: PgCursor, *, payment_id: str, redirect_url: str) -> None:
    cur.execute(
        "UPDATE payments SET redirect_url = %s, updated_at = now() WHERE id = %s",
        (redirect_url, payment_id),
    )


def expire_overdue(cur: PgCursor, *, now: datetime) -> list[str]:
    """Mark PENDING payments past expires_at as EXPIRED. Returns their ids."""
    cur.execute(
        """
        UPDATE payments
        SET status = 'EXPIRED', updated_at = now()
        WHERE status = 'PENDING' AND expires_at IS NOT NULL AND expires_at < %s
        RETURNING id
        """,
        (now,),
    )
    return [str(row[0]) for row in cur.fetchall()]


def list_payments(cur: PgCursor, *, booking_id: str) -> list[dict[str, Any]]:
    cur.execute(
        f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM payments
        WHERE booking_id = %s
        ORDER BY created_at
        """,
        (booking_id,),
    )
    return [_row_to_payment(row) for row in cur.fetchall()]


def expire_open_payments(
    cur: PgCursor,
    *,
    booking_id: str,
    exclude_payment_id: str | None = None,
) -> list[str]:
    """Mark every PENDING payment of the booking EXPIRED except one. Returns their ids."""
    cur.execute(
        """
        UPDATE payments
        SET status = 'EXPIRED', updated_at = now()
        WHERE booking_id = %s AND status = 'PENDING'
          AND (%s::uuid IS NULL OR id <> %s::uuid)
        RETURNING id
        """,
        (booking_id, exclude_payment_id, exclude_payment_id),
    )
    return [str(row[0]) for row in cur.fetchall()]
