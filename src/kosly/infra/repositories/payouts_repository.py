"""Payouts repository - withdrawal requests and their proof attachments."""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

_PAYOUT_COLUMNS = """
    id, operator_id, source_account_id, bank_account_id, amount, status,
    notes, balance_before, rejection_reason, requested_by, processed_by,
    processed_at, created_at
"""
_PAYOUT_KEYS = (
    "id", "operator_id", "source_account_id", "bank_account_id", "amount",
    "status", "notes", "balance_before", "rejection_reason", "requested_by",
    "processed_by", "processed_at", "created_at",
)


def _row_to_payout(row: tuple) -> dict[str, Any]:
    payout = dict(zip(_PAYOUT_KEYS, row))
    for key in ("id", "operator_id", "source_account_id", "bank_account_id", "requested_by", "processed_by"):
        if payout[key] is not None:
            payout[key] = str(payout[key])
    return payout


def insert_payout(
    cur: PgCursor,
    *,
    operator_id: str,
    source_account_id: str,
    bank_account_id: str,
    amount: int,
    notes: str | None,
    balance_before: int,
    requested_by: str,
) -> dict[str, Any]:
    cur.execute(
        f"""
        INSERT INTO payouts (
            operator_id, source_account_id, bank_account_id, amount,
            status, notes, balance_before, requested_by
        )
        VALUES (%s, %s, %s, %s, 'PENDING', %s, %s, %s)
        RETURNING {_PAYOUT_COLUMNS}
        """,
        (operator_id, source_account_id, bank_account_id, amount, notes, balance_before, requested_by),
    )
    return _row_to_payout(cur.fetchone())


def get_payout(cur: PgCursor, payout_id: str, *, for_update: bool = False) -> dict[str, Any] | None:
    suffix = " FOR UPDATE" if for_update else ""
    cur.execute(
        f"SELECT {_PAYOUT_COLUMNS} FROM payouts WHERE id = %s{suffix}",
        (payout_id,),
    )
    row = cur.fetchone()
    return _row_to_payout(row) if row else None


def pending_total(cur: PgCursor, *, operator_id: str) -> int:
    cur.execute(
        "SELECT COALESCE(SUM(amount), 0) FROM payouts WHERE operator_id = %s AND status = 'PENDING'",
        (operator_id,),
    )
    return int(cur.fetchone()[0])


def set_status(
    cur: PgCursor,
    *,
    payout_id: str,
    status: str,
    processed_by: str,
    rejection_reason: str | None = None,
) -> bool:
    """PENDING -> status. Returns False if the payout was no longer PENDING."""
    cur.execute(
        """
        UPDATE payouts
        SET status = %s, processed_by = %s, processed_at = now(),
            rejection_reason = %s
        WHERE id = %s AND status = 'PENDING'
        """,
        (status, processed_by, rejection_reason, payout_id),
    )
    return cur.rowcount == 1


def insert_attachments(
    cur: PgCursor,
    *,
    payout_id: str,
    attachments: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    stored = []
    for attachment in attachments:
        cur.execute(
            """
            INSERT INTO payout_attachments (payout_id, file_url, file_name, file_type)
            VALUES (%s, %s, %s, %s)
            RETURNING id
            """,
            (
                payout_id,
                attachment["file_url"],
                attachment.get("file_name"),
                attachment.get("file_type"),
            ),
        )
        stored.append({
            "id": str(cur.fetchone()[0]),
            "file_url": attachment["file_url"],
            "file_name": attachment.get("file_name"),
            "file_type": attachment.get("file_type"),
        })
    return stored


def list_attachments(cur: PgCursor, *, payout_id: str) -> list[dict[str, Any]]:
    cur.execute(
        """
        SELECT id, file_url, file_name, file_type
        FROM payout_attachments
        WHERE payout_id = %s
        ORDER BY created_at
        """,
        (payout_id,),
    )
    return [
        {"id": str(row[0]), "file_url": row[1], "file_name": row[2], "file_type": row[3]}
        for row in cur.fetchall()
    ]


def list_payouts(
    cur: PgCursor,
    *,
    operator_id: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    conditions = ["TRUE"]
    params: list = []
    if operator_id is not None:
        conditions.append("operator_id = %s")
        params.append(operator_id)
    if status is not None:
        conditions.append("status = %s")
        params.append(status)
    params.extend([limit, offset])
    cur.execute(
        f"""
        SELECT {_PAYOUT_COLUMNS}
        FROM payouts
        WHERE {" AND ".join(conditions)}
        ORDER BY created_at DESC
        LIMIT %s OFFSET %s
        """,
        params,
    )
    return [_row_to_payout(row) for row in cur.fetchall()]
