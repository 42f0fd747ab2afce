"""Ledger store - append-only money movements per account.

Single-sided: each entry moves money IN or OUT of one account. The balance
of an account is sum(IN) - sum(OUT) over its full history, computed on
every read.

Every operator owns one SYSTEM account, "Sales", which receives all
booking payments and is the source of every payout. Operators may add
INCOME and EXPENSE accounts for manual bookkeeping.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from kosly.infra.repositories import ledger_repository
from kosly.infra.time import today
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context

from .authz import Caller, Role, require_owner, require_role, resolve_operator_id
from .errors import InvalidAccount, InvalidAmount, NotFound

logger = get_logger(__name__)

SALES_ACCOUNT_NAME = "Sales"


class AccountKind(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    SYSTEM = "SYSTEM"


class Direction(str, Enum):
    IN = "IN"
    OUT = "OUT"


class RefType(str, Enum):
    PAYMENT = "PAYMENT"
    PAYOUT = "PAYOUT"
    MANUAL = "MANUAL"


# Manual entries must match the account kind.
_MANUAL_KIND_FOR_DIRECTION = {
    Direction.IN: AccountKind.INCOME,
    Direction.OUT: AccountKind.EXPENSE,
}

_BOOKKEEPING_ROLES = (Role.OPERATOR, Role.STAFF, Role.SUPERADMIN)


def ensure_system_accounts(cur: PgCursor, operator_id: str) -> dict[str, Any]:
    """Create the operator's Sales account if missing and return it. Idempotent."""
    account = ledger_repository.get_account_by_name(
        cur, operator_id=operator_id, name=SALES_ACCOUNT_NAME
    )
    if account is not None:
        return account

    account = ledger_repository.insert_account(
        cur,
        operator_id=operator_id,
        name=SALES_ACCOUNT_NAME,
        kind=AccountKind.SYSTEM.value,
        is_system=True,
    )
    if account is None:
        # Lost a concurrent insert race.
        account = ledger_repository.get_account_by_name(
            cur, operator_id=operator_id, name=SALES_ACCOUNT_NAME
        )
    else:
        logger.info(
            "system ledger account created",
            extra={"extra_fields": safe_log_context(operator_id=operator_id, account_id=account["id"])},
        )
    return account


def get_sales_account(cur: PgCursor, operator_id: str, *, lock: bool = False) -> dict[str, Any]:
    """The operator's Sales account; lock=True holds its row lock until commit."""
    account = ensure_system_accounts(cur, operator_id)
    if lock:
        account = ledger_repository.get_account(cur, account["id"], for_update=True)
    return account


def balance(cur: PgCursor, account_id: str) -> int:
    return ledger_repository.account_balance(cur, account_id)


def create_entry(
    cur: PgCursor,
    *,
    operator_id: str,
    account_id: str,
    direction: Direction | str,
    amount: int,
    note: str | None,
    ref_type: RefType | str,
    ref_id: str | None,
    property_id: str | None = None,
    created_by: str | None = None,
    entry_date: date | None = None,
) -> dict[str, Any]:
    """Append one entry to account_id on behalf of operator_id.

    A PAYMENT or PAYOUT reference is written at most once; repeating the
    call returns the entry already stored.

    Raises:
        NotFound: account does not exist.
        InvalidAccount: account is archived, belongs to another operator,
            or is a system account receiving a manual entry.
        InvalidAmount: amount is not positive.
    """
    direction = Direction(direction)
    ref_type = RefType(ref_type)

    if amount <= 0:
        raise InvalidAmount("ledger entry amount must be positive")

    account = ledger_repository.get_account(cur, account_id)
    if account is None:
        raise NotFound("ledger account", account_id)
    if account["operator_id"] != operator_id:
        raise InvalidAccount(f"account {account_id} belongs to another operator")
    if account["is_archived"]:
        raise InvalidAccount(f"account {account_id} is archived")
    if ref_type == RefType.MANUAL:
        if account["is_system"]:
            raise InvalidAccount("system accounts do not accept manual entries")
        if account["kind"] != _MANUAL_KIND_FOR_DIRECTION[direction].value:
            raise InvalidAccount(
                f"{direction.value} entries require an "
                f"{_MANUAL_KIND_FOR_DIRECTION[direction].value} account"
            )

    entry = ledger_repository.insert_entry(
        cur,
        operator_id=operator_id,
        account_id=account_id,
        direction=direction.value,
        amount=amount,
        entry_date=entry_date or today(),
        note=note,
        ref_type=ref_type.value,
        ref_id=ref_id,
        property_id=property_id,
        created_by=created_by,
    )
    if entry is None:
        logger.info(
            "ledger entry already recorded",
            extra={"extra_fields": safe_log_context(ref_type=ref_type.value, ref_id=ref_id)},
        )
        return ledger_repository.get_entry_by_ref(cur, ref_type=ref_type.value, ref_id=ref_id)

    logger.info(
        "ledger entry created",
        extra={
            "extra_fields": safe_log_context(
                entry_id=entry["id"],
                account_id=account_id,
                direction=direction.value,
                amount=amount,
                ref_type=ref_type.value,
                ref_id=ref_id,
            )
        },
    )
    return entry


# ── Bookkeeping operations (caller-scoped) ───────────────


def create_account(
    cur: PgCursor,
    caller: Caller,
    *,
    name: str,
    kind: AccountKind | str,
    operator_id: str | None = None,
) -> dict[str, Any]:
    require_role(caller, Role.OPERATOR, Role.SUPERADMIN)
    operator_id = resolve_operator_id(caller, operator_id)
    kind = AccountKind(kind)
    if kind == AccountKind.SYSTEM:
        raise InvalidAccount("system accounts are created by the platform")
    name = name.strip()
    if not name:
        raise InvalidAccount("account name is required")

    account = ledger_repository.insert_account(
        cur, operator_id=operator_id, name=name, kind=kind.value, is_system=False
    )
    if account is None:
        raise InvalidAccount(f"an account named {name!r} already exists")
    return account


def archive_account(
    cur: PgCursor,
    caller: Caller,
    account_id: str,
) -> dict[str, Any]:
    require_role(caller, Role.OPERATOR, Role.SUPERADMIN)
    account = _owned_account(cur, caller, account_id)
    if account["is_system"]:
        raise InvalidAccount("system accounts cannot be archived")
    if not account["is_archived"]:
        ledger_repository.archive_account(cur, account_id)
    return {**account, "is_archived": True}


def list_accounts(
    cur: PgCursor,
    caller: Caller,
    *,
    operator_id: str | None = None,
    include_archived: bool = False,
) -> list[dict[str, Any]]:
    require_role(caller, *_BOOKKEEPING_ROLES)
    operator_id = resolve_operator_id(caller, operator_id)
    ensure_system_accounts(cur, operator_id)
    return ledger_repository.list_accounts(
        cur, operator_id=operator_id, include_archived=include_archived
    )


def record_manual_entry(
    cur: PgCursor,
    caller: Caller,
    *,
    account_id: str,
    direction: Direction | str,
    amount: int,
    note: str | None = None,
    entry_date: date | None = None,
    property_id: str | None = None,
) -> dict[str, Any]:
    """Operator bookkeeping entry (ref_type MANUAL) on a non-system account."""
    require_role(caller, *_BOOKKEEPING_ROLES)
    account = _owned_account(cur, caller, account_id)
    return create_entry(
        cur,
        operator_id=account["operator_id"],
        account_id=account_id,
        direction=direction,
        amount=amount,
        note=note,
        ref_type=RefType.MANUAL,
        ref_id=None,
        property_id=property_id,
        created_by=caller.id,
        entry_date=entry_date,
    )


def list_entries(
    cur: PgCursor,
    caller: Caller,
    account_id: str,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    require_role(caller, *_BOOKKEEPING_ROLES)
    _owned_account(cur, caller, account_id)
    return ledger_repository.list_entries(
        cur,
        account_id=account_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )


def account_summary(
    cur: PgCursor,
    caller: Caller,
    account_id: str,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict[str, Any]:
    """Cash in/out over the period, plus the all-time balance."""
    require_role(caller, *_BOOKKEEPING_ROLES)
    account = _owned_account(cur, caller, account_id)
    cash_in, cash_out = ledger_repository.account_totals(
        cur, account_id=account_id, date_from=date_from, date_to=date_to
    )
    return {
        "account": account,
        "date_from": date_from,
        "date_to": date_to,
        "cash_in": cash_in,
        "cash_out": cash_out,
        "net": cash_in - cash_out,
        "balance": balance(cur, account_id),
    }


def find_unsynced_payments(
    cur: PgCursor,
    caller: Caller,
    *,
    operator_id: str | None = None,
) -> list[dict[str, Any]]:
    """SUCCESS payments that have no PAYMENT ledger entry."""
    require_role(caller, Role.OPERATOR, Role.SUPERADMIN)
    operator_id = resolve_operator_id(caller, operator_id)
    return ledger_repository.payments_missing_entries(cur, operator_id=operator_id)


def resync_payments(
    cur: PgCursor,
    caller: Caller,
    *,
    operator_id: str | None = None,
) -> dict[str, Any]:
    """Write the missing PAYMENT entries found by find_unsynced_payments."""
    require_role(caller, Role.OPERATOR, Role.SUPERADMIN)
    operator_id = resolve_operator_id(caller, operator_id)
    missing = ledger_repository.payments_missing_entries(cur, operator_id=operator_id)
    synced = []
    for payment in missing:
        entry = create_entry(
            cur,
            operator_id=operator_id,
            account_id=payment["settlement_account_id"],
            direction=Direction.IN,
            amount=payment["amount"],
            note=payment_entry_note(payment["payment_type"], payment["booking_code"]),
            ref_type=RefType.PAYMENT,
            ref_id=payment["id"],
            property_id=payment["property_id"],
            entry_date=payment["transaction_time"].date() if payment["transaction_time"] else None,
        )
        synced.append(entry["id"])

    if synced:
        logger.warning(
            "ledger resynced missing payment entries",
            extra={"extra_fields": safe_log_context(operator_id=operator_id, count=len(synced))},
        )
    return {"checked": len(missing), "synced": len(synced), "entry_ids": synced}


def payment_entry_note(payment_type: str, booking_code: str) -> str:
    return f"{payment_type} payment for booking {booking_code}"


def _owned_account(cur: PgCursor, caller: Caller, account_id: str) -> dict[str, Any]:
    account = ledger_repository.get_account(cur, account_id)
    return dict(require_owner(caller, account, "ledger account", account_id))
