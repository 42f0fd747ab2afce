"""Payout engine - operator withdrawals from the Sales account.

    PENDING -> APPROVED   (proof attached, OUT entry written)
    PENDING -> REJECTED   (reason given, no ledger effect)

available balance = balance(Sales) - sum(operator's PENDING payouts)

request_payout and approve_payout lock the operator's Sales account row
before reading the balance, so concurrent requests for one operator are
serialized and cannot jointly overdraw.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from kosly.infra.repositories import bank_accounts_repository, payouts_repository
from kosly.infra.time import today
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context

from . import ledger
from .authz import Caller, Role, require_owner, require_role, resolve_operator_id
from .bank_accounts import BankAccountStatus
from .errors import (
    InsufficientBalance,
    InvalidAccount,
    InvalidAmount,
    InvalidTransition,
    MissingProof,
    MissingReason,
    NoApprovedBankAccount,
    NotFound,
)

logger = get_logger(__name__)


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


PAYOUT_TRANSITIONS: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({PayoutStatus.APPROVED, PayoutStatus.REJECTED}),
    PayoutStatus.APPROVED: frozenset(),
    PayoutStatus.REJECTED: frozenset(),
}


def _assert_payout_transition(payout: dict[str, Any], to_status: PayoutStatus) -> None:
    from_status = PayoutStatus(payout["status"])
    if to_status not in PAYOUT_TRANSITIONS[from_status]:
        raise InvalidTransition("payout", from_status.value, to_status.value)


def balance_summary(cur: PgCursor, operator_id: str, *, lock: bool = False) -> dict[str, Any]:
    """Sales balance, pending payouts and what is still available to withdraw."""
    sales = ledger.get_sales_account(cur, operator_id, lock=lock)
    balance = ledger.balance(cur, sales["id"])
    pending = payouts_repository.pending_total(cur, operator_id=operator_id)
    return {
        "account_id": sales["id"],
        "balance": balance,
        "pending_payouts": pending,
        "available_balance": balance - pending,
    }


def get_balance(cur: PgCursor, caller: Caller, *, operator_id: str | None = None) -> dict[str, Any]:
    require_role(caller, Role.OPERATOR, Role.SUPERADMIN)
    return balance_summary(cur, resolve_operator_id(caller, operator_id))


def request_payout(
    cur: PgCursor,
    caller: Caller,
    *,
    bank_account_id: str,
    amount: int,
    notes: str | None = None,
    source_account_id: str | None = None,
) -> dict[str, Any]:
    """Create a PENDING payout for the calling operator.

    Raises:
        InvalidAmount: amount <= 0.
        InvalidAccount: source_account_id given and not the Sales account.
        NoApprovedBankAccount: bank_account_id is not the operator's
            APPROVED account.
        InsufficientBalance: amount > available balance.
    """
    require_role(caller, Role.OPERATOR)
    operator_id = resolve_operator_id(caller)
    if amount <= 0:
        raise InvalidAmount("payout amount must be positive")

    summary = balance_summary(cur, operator_id, lock=True)
    if source_account_id is not None and source_account_id != summary["account_id"]:
        raise InvalidAccount("payouts can only be drawn from the Sales account")

    bank_account = bank_accounts_repository.get_bank_account(cur, bank_account_id)
    if (
        bank_account is None
        or bank_account["operator_id"] != operator_id
        or bank_account["status"] != BankAccountStatus.APPROVED.value
    ):
        raise NoApprovedBankAccount(f"bank account {bank_account_id} is not an approved account")

    if amount > summary["available_balance"]:
        raise InsufficientBalance(amount, summary["available_balance"])

    payout = payouts_repository.insert_payout(
        cur,
        operator_id=operator_id,
        source_account_id=summary["account_id"],
        bank_account_id=bank_account_id,
        amount=amount,
        notes=notes,
        balance_before=summary["balance"],
        requested_by=caller.id,
    )
    logger.info(
        "payout requested",
        extra={
            "extra_fields": safe_log_context(
                payout_id=payout["id"],
                operator_id=operator_id,
                amount=amount,
                available_balance=summary["available_balance"],
            )
        },
    )
    return payout


def approve_payout(
    cur: PgCursor,
    caller: Caller,
    payout_id: str,
    *,
    attachments: list[dict[str, Any]],
) -> dict[str, Any]:
    """PENDING -> APPROVED with transfer proof; writes the OUT entry.

    The payout amount is re-checked against the Sales balance under the
    account lock, so the OUT entry never takes the account below zero.
    """
    require_role(caller, Role.SUPERADMIN)
    payout = payouts_repository.get_payout(cur, payout_id, for_update=True)
    if payout is None:
        raise NotFound("payout", payout_id)
    _assert_payout_transition(payout, PayoutStatus.APPROVED)
    if not attachments or any(not a.get("file_url") for a in attachments):
        raise MissingProof("approving a payout requires at least one proof attachment")

    sales = ledger.get_sales_account(cur, payout["operator_id"], lock=True)
    balance = ledger.balance(cur, sales["id"])
    if payout["amount"] > balance:
        raise InsufficientBalance(payout["amount"], balance)

    payouts_repository.set_status(
        cur,
        payout_id=payout_id,
        status=PayoutStatus.APPROVED.value,
        processed_by=caller.id,
    )
    stored = payouts_repository.insert_attachments(cur, payout_id=payout_id, attachments=attachments)
    entry = ledger.create_entry(
        cur,
        operator_id=payout["operator_id"],
        account_id=payout["source_account_id"],
        direction=ledger.Direction.OUT,
        amount=payout["amount"],
        note=f"Payout {payout_id}",
        ref_type=ledger.RefType.PAYOUT,
        ref_id=payout_id,
        created_by=caller.id,
        entry_date=today(),
    )
    logger.info(
        "payout approved",
        extra={
            "extra_fields": safe_log_context(
                payout_id=payout_id,
                operator_id=payout["operator_id"],
                amount=payout["amount"],
                ledger_entry_id=entry["id"],
            )
        },
    )
    return {
        **payout,
        "status": PayoutStatus.APPROVED.value,
        "processed_by": caller.id,
        "attachments": stored,
        "ledger_entry_id": entry["id"],
    }


def reject_payout(
    cur: PgCursor,
    caller: Caller,
    payout_id: str,
    *,
    reason: str,
) -> dict[str, Any]:
    require_role(caller, Role.SUPERADMIN)
    if not reason or not reason.strip():
        raise MissingReason("rejecting a payout requires a reason")
    payout = payouts_repository.get_payout(cur, payout_id, for_update=True)
    if payout is None:
        raise NotFound("payout", payout_id)
    _assert_payout_transition(payout, PayoutStatus.REJECTED)

    payouts_repository.set_status(
        cur,
        payout_id=payout_id,
        status=PayoutStatus.REJECTED.value,
        processed_by=caller.id,
        rejection_reason=reason.strip(),
    )
    logger.info(
        "payout rejected",
        extra={"extra_fields": safe_log_context(payout_id=payout_id, operator_id=payout["operator_id"])},
    )
    return {
        **payout,
        "status": PayoutStatus.REJECTED.value,
        "processed_by": caller.id,
        "rejection_reason": reason.strip(),
    }


def get_payout(cur: PgCursor, caller: Caller, payout_id: str) -> dict[str, Any]:
    payout = payouts_repository.get_payout(cur, payout_id)
    payout = dict(require_owner(caller, payout, "payout", payout_id))
    payout["attachments"] = payouts_repository.list_attachments(cur, payout_id=payout_id)
    return payout


def list_payouts(
    cur: PgCursor,
    caller: Caller,
    *,
    status: str | None = None,
    operator_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """Operators see their own payouts; superadmins see all, optionally
    narrowed to one operator."""
    require_role(caller, Role.OPERATOR, Role.SUPERADMIN)
    if status is not None:
        status = PayoutStatus(status).value
    if not caller.is_superadmin:
        operator_id = resolve_operator_id(caller, operator_id)
    return payouts_repository.list_payouts(
        cur, operator_id=operator_id, status=status, limit=limit, offset=offset
    )
