"""Bank accounts repository - operator payout destinations."""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

_COLUMNS = """
    id, operator_id, bank_code, bank_name, account_number, account_holder,
    status, reviewed_by, reviewed_at, rejection_reason, created_at
"""
_KEYS = (
    "id", "operator_id", "bank_code", "bank_name", "account_number",
    "account_holder", "status", "reviewed_by", "reviewed_at",
    "rejection_reason", "created_at",
)


def _row_to_bank_account(row: tuple) -> dict[str, Any]:
    account = dict(zip(_KEYS, row))
    for key in ("id", "operator_id", "reviewed_by"):
        if account[key] is not None:
            account[key] = str(account[key])
    return account


def insert_bank_account(
    cur: PgCursor,
    *,
    operator_id: str,
    bank_code: str,
    bank_name: str,
    account_number: str,
    account_holder: str,
) -> dict[str, Any]:
    cur.execute(
        f"""
        INSERT INTO bank_accounts (
            operator_id, bank_code, bank_name, account_number, account_holder, status
        )
        VALUES (%s, %s, %s, %s, %s, 'PENDING')
        RETURNING {_COLUMNS}
        """,
        (operator_id, bank_code, bank_name, account_number, account_holder),
    )
    return _row_to_bank_account(cur.fetchone())


def get_bank_account(
    cur: PgCursor,
    bank_account_id: str,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    suffix = " FOR UPDATE" if for_update else ""
    cur.execute(
        f"SELECT {_COLUMNS} FROM bank_accounts WHERE id = %s{suffix}",
        (bank_account_id,),
    )
    row = cur.fetchone()
    return _row_to_bank_account(row) if row else None


def find_by_status(cur: PgCursor, *, operator_id: str, status: str) -> dict[str, Any] | None:
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM bank_accounts
        WHERE operator_id = %s AND status = %s
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (operator_id, status),
    )
    row = cur.fetchone()
    return _row_to_bank_account(row) if row else None


def set_status(
    cur: PgCursor,
    *,
    bank_account_id: str,
    from_status: str,
    to_status: str,
    reviewed_by: str,
    rejection_reason: str | None = None,
) -> bool:
    cur.execute(
        """
        UPDATE bank_accounts
        SET status = %s, reviewed_by = %s, reviewed_at = now(), rejection_reason = %s
        WHERE id = %s AND status = %s
        """,
        (to_status, reviewed_by, rejection_reason, bank_account_id, from_status),
    )
    return cur.rowcount == 1


def delete_bank_account(cur: PgCursor, bank_account_id: str) -> None:
    cur.execute("DELETE FROM bank_accounts WHERE id = %s", (bank_account_id,))


def list_bank_accounts(
    cur: PgCursor,
    *,
    operator_id: str | None = None,
    status: str | None = None,
) -> list[dict[str, Any]]:
    conditions = ["TRUE"]
    params: list = []
    if operator_id is not None:
        conditions.append("operator_id = %s")
        params.append(operator_id)
    if status is not None:
        conditions.append("status = %s")
        params.append(status)
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM bank_accounts
        WHERE {" AND ".join(conditions)}
        ORDER BY created_at DESC
        """,
        params,
    )
    return [_row_to_bank_account(row) for row in cur.fetchall()]
