"""Ledger repository - accounts and append-only entries.

Balances are always aggregated from ledger_entries; there is no stored
balance column to keep in sync.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_ACCOUNT_COLUMNS = "id, operator_id, name, kind, is_system, is_archived, created_at"
_ACCOUNT_KEYS = ("id", "operator_id", "name", "kind", "is_system", "is_archived", "created_at")

_ENTRY_COLUMNS = """
    id, operator_id, account_id, direction, amount, entry_date, note,
    ref_type, ref_id, property_id, created_by, created_at
"""
_ENTRY_KEYS = (
    "id", "operator_id", "account_id", "direction", "amount", "entry_date",
    "note", "ref_type", "ref_id", "property_id", "created_by", "created_at",
)


def _row_to_account(row: tuple) -> dict[str, Any]:
    account = dict(zip(_ACCOUNT_KEYS, row))
    account["id"] = str(account["id"])
    account["operator_id"] = str(account["operator_id"])
    return account


def _row_to_entry(row: tuple) -> dict[str, Any]:
    entry = dict(zip(_ENTRY_KEYS, row))
    for key in ("id", "operator_id", "account_id", "ref_id", "property_id", "created_by"):
        if entry[key] is not None:
            entry[key] = str(entry[key])
    return entry


# ── Accounts ─────────────────────────────────────────────


def get_account(
    cur: PgCursor,
    account_id: str,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    suffix = " FOR UPDATE" if for_update else ""
    cur.execute(
        f"SELECT {_ACCOUNT_COLUMNS} FROM ledger_accounts WHERE id = %s{suffix}",
        (account_id,),
    )
    row = cur.fetchone()
    return _row_to_account(row) if row else None


def get_account_by_name(cur: PgCursor, *, operator_id: str, name: str) -> dict[str, Any] | None:
    cur.execute(
        f"SELECT {_ACCOUNT_COLUMNS} FROM ledger_accounts WHERE operator_id = %s AND name = %s",
        (operator_id, name),
    )
    row = cur.fetchone()
    return _row_to_account(row) if row else None


def insert_account(
    cur: PgCursor,
    *,
    operator_id: str,
    name: str,
    kind: str,
    is_system: bool,
) -> dict[str, Any] | None:
    """Insert an account. Returns None if (operator_id, name) already exists."""
    cur.execute(
        f"""
        INSERT INTO ledger_accounts (operator_id, name, kind, is_system)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (operator_id, name) DO NOTHING
        RETURNING {_ACCOUNT_COLUMNS}
        """,
        (operator_id, name, kind, is_system),
    )
    row = cur.fetchone()
    return _row_to_account(row) if row else None


def archive_account(cur: PgCursor, account_id: str) -> None:
    cur.execute(
        "UPDATE ledger_accounts SET is_archived = TRUE WHERE id = %s",
        (account_id,),
    )


def list_accounts(
    cur: PgCursor,
    *,
    operator_id: str,
    include_archived: bool = False,
) -> list[dict[str, Any]]:
    archived_filter = "" if include_archived else " AND NOT a.is_archived"
    cur.execute(
        f"""
        SELECT a.id, a.operator_id, a.name, a.kind, a.is_system, a.is_archived, a.created_at,
               COALESCE(SUM(CASE e.direction WHEN 'IN' THEN e.amount ELSE -e.amount END), 0)
        FROM ledger_accounts a
        LEFT JOIN ledger_entries e ON e.account_id = a.id
        WHERE a.operator_id = %s{archived_filter}
        GROUP BY a.id
        ORDER BY a.is_system DESC, a.name
        """,
        (operator_id,),
    )
    accounts = []
    for row in cur.fetchall():
        account = _row_to_account(row[:7])
        account["balance"] = int(row[7])
        accounts.append(account)
    return accounts


# ── Entries ──────────────────────────────────────────────


def insert_entry(
    cur: PgCursor,
    *,
    operator_id: str,
    account_id: str,
    direction: str,
    amount: int,
    entry_date: date,
    note: str | None,
    ref_type: str,
    ref_id: str | None,
    property_id: str | None,
    created_by: str | None,
) -> dict[str, Any] | None:
    """Append an entry.

    PAYMENT and PAYOUT references are unique; a second insert for the same
    reference is dropped and None is returned.
    """
    cur.execute(
        f"""
        INSERT INTO ledger_entries (
            operator_id, account_id, direction, amount, entry_date, note,
            ref_type, ref_id, property_id, created_by
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (ref_type, ref_id) WHERE ref_type IN ('PAYMENT', 'PAYOUT') DO NOTHING
        RETURNING {_ENTRY_COLUMNS}
        """,
        (
            operator_id, account_id, direction, amount, entry_date, note,
            ref_type, ref_id, property_id, created_by,
        ),
    )
    row = cur.fetchone()
    return _row_to_entry(row) if row else None


def get_entry_by_ref(cur: PgCursor, *, ref_type: str, ref_id: str) -> dict[str, Any] | None:
    cur.execute(
        f"SELECT {_ENTRY_COLUMNS} FROM ledger_entries WHERE ref_type = %s AND ref_id = %s",
        (ref_type, ref_id),
    )
    row = cur.fetchone()
    return _row_to_entry(row) if row else None


def account_balance(cur: PgCursor, account_id: str) -> int:
    """sum(IN) - sum(OUT) over every entry of the account."""
    cur.execute(
        """
        SELECT COALESCE(SUM(CASE direction WHEN 'IN' THEN amount ELSE -amount END), 0)
        FROM ledger_entries
        WHERE account_id = %s
        """,
        (account_id,),
    )
    return int(cur.fetchone()[0])


def account_totals(
    cur: PgCursor,
    *,
    account_id: str,
    date_from: date | None = None,
    date_to: date | None = None,
) -> tuple[int, int]:
    """(cash_in, cash_out) for entries dated within [date_from, date_to]."""
    conditions = ["account_id = %s"]
    params: list = [account_id]
    if date_from is not None:
        conditions.append("entry_date >= %s")
        params.append(date_from)
    if date_to is not None:
        conditions.append("entry_date <= %s")
        params.append(date_to)
    cur.execute(
        f"""
        SELECT
            COALESCE(SUM(amount) FILTER (WHERE direction = 'IN'), 0),
            COALESCE(SUM(amount) FILTER (WHERE direction = 'OUT'), 0)
        FROM ledger_entries
        WHERE {" AND ".join(conditions)}
        """,
        params,
    )
    row = cur.fetchone()
    return int(row[0]), int(row[1])


def list_entries(
    cur: PgCursor,
    *,
    account_id: str,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    conditions = ["account_id = %s"]
    params: list = [account_id]
    if date_from is not None:
        conditions.append("entry_date >= %s")
        params.append(date_from)
    if date_to is not None:
        conditions.append("entry_date <= %s")
        params.append(date_to)
    params.extend([limit, offset])
    cur.execute(
        f"""
        SELECT {_ENTRY_COLUMNS}
        FROM ledger_entries
        WHERE {" AND ".join(conditions)}
        ORDER BY entry_date DESC, created_at DESC
        LIMIT %s OFFSET %s
        """,
        params,
    )
    return [_row_to_entry(row) for row in cur.fetchall()]


def payments_missing_entries(cur: PgCursor, *, operator_id: str) -> list[dict[str, Any]]:
    """SUCCESS payments of the operator with no PAYMENT ledger entry."""
    cur.execute(
        """
        SELECT pay.id, pay.booking_id, pay.amount, pay.payment_type,
               pay.settlement_account_id, pay.transaction_time, b.property_id,
               b.booking_code
        FROM payments pay
        JOIN bookings b ON b.id = pay.booking_id
        JOIN properties p ON p.id = b.property_id
        LEFT JOIN ledger_entries e
               ON e.ref_type = 'PAYMENT' AND e.ref_id = pay.id
        WHERE p.operator_id = %s AND pay.status = 'SUCCESS' AND e.id IS NULL
        ORDER BY pay.transaction_time
        """,
        (operator_id,),
    )
    return [
        {
            "id": str(row[0]),
            "booking_id": str(row[1]),
            "amount": row[2],
            "payment_type": row[3],
            "settlement_account_id": str(row[4]),
            "transaction_time": row[5],
            "property_id": str(row[6]),
            "booking_code": row[7],
        }
        for row in cur.fetchall()
    ]
