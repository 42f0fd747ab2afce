"""Bank account lifecycle - where an operator's payouts are sent.

    submit  -> PENDING     (at most one PENDING per operator)
    approve -> APPROVED    (replaces the operator's previous APPROVED account)
    reject  -> REJECTED    (reason required)

APPROVED accounts cannot be deleted; PENDING and REJECTED ones can.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from kosly.infra.db import advisory_xact_lock
from kosly.infra.repositories import bank_accounts_repository
from kosly.observability.logging import get_logger
from kosly.observability.redaction import mask_account_number, safe_log_context

from .authz import Caller, Role, require_owner, require_role, resolve_operator_id
from .errors import InvalidTransition, MissingReason, NotFound, PendingRequestExists

logger = get_logger(__name__)

_LOCK_NAMESPACE = "bank_account"
_SUPERSEDED_REASON = "superseded by a newer approved account"


class BankAccountStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


BANK_ACCOUNT_TRANSITIONS: dict[BankAccountStatus, frozenset[BankAccountStatus]] = {
    BankAccountStatus.PENDING: frozenset({BankAccountStatus.APPROVED, BankAccountStatus.REJECTED}),
    # An approved account is retired when a newer one is approved.
    BankAccountStatus.APPROVED: frozenset({BankAccountStatus.REJECTED}),
    BankAccountStatus.REJECTED: frozenset(),
}


def _assert_transition(account: dict[str, Any], to_status: BankAccountStatus) -> None:
    from_status = BankAccountStatus(account["status"])
    if to_status not in BANK_ACCOUNT_TRANSITIONS[from_status]:
        raise InvalidTransition("bank account", from_status.value, to_status.value)


def masked(account: dict[str, Any]) -> dict[str, Any]:
    """Copy of the account safe to return in listings."""
    return {**account, "account_number": mask_account_number(account["account_number"])}


def submit(
    cur: PgCursor,
    caller: Caller,
    *,
    bank_code: str,
    bank_name: str,
    account_number: str,
    account_holder: str,
) -> dict[str, Any]:
    require_role(caller, Role.OPERATOR)
    operator_id = resolve_operator_id(caller)

    advisory_xact_lock(cur, _LOCK_NAMESPACE, operator_id)
    if bank_accounts_repository.find_by_status(
        cur, operator_id=operator_id, status=BankAccountStatus.PENDING.value
    ):
        raise PendingRequestExists("a bank account request is already awaiting review")

    account = bank_accounts_repository.insert_bank_account(
        cur,
        operator_id=operator_id,
        bank_code=bank_code.strip(),
        bank_name=bank_name.strip(),
        account_number=account_number.strip(),
        account_holder=account_holder.strip(),
    )
    logger.info(
        "bank account submitted",
        extra={
            "extra_fields": safe_log_context(
                bank_account_id=account["id"],
                operator_id=operator_id,
                bank_code=account["bank_code"],
            )
        },
    )
    return account


def approve(cur: PgCursor, caller: Caller, bank_account_id: str) -> dict[str, Any]:
    require_role(caller, Role.SUPERADMIN)
    account = bank_accounts_repository.get_bank_account(cur, bank_account_id, for_update=True)
    if account is None:
        raise NotFound("bank account", bank_account_id)
    _assert_transition(account, BankAccountStatus.APPROVED)

    advisory_xact_lock(cur, _LOCK_NAMESPACE, account["operator_id"])
    previous = bank_accounts_repository.find_by_status(
        cur, operator_id=account["operator_id"], status=BankAccountStatus.APPROVED.value
    )
    if previous is not None:
        _assert_transition(previous, BankAccountStatus.REJECTED)
        bank_accounts_repository.set_status(
            cur,
            bank_account_id=previous["id"],
            from_status=BankAccountStatus.APPROVED.value,
            to_status=BankAccountStatus.REJECTED.value,
            reviewed_by=caller.id,
            rejection_reason=_SUPERSEDED_REASON,
        )

    if not bank_accounts_repository.set_status(
        cur,
        bank_account_id=bank_account_id,
        from_status=BankAccountStatus.PENDING.value,
        to_status=BankAccountStatus.APPROVED.value,
        reviewed_by=caller.id,
    ):
        raise InvalidTransition("bank account", account["status"], BankAccountStatus.APPROVED.value)

    logger.info(
        "bank account approved",
        extra={
            "extra_fields": safe_log_context(
                bank_account_id=bank_account_id,
                operator_id=account["operator_id"],
                superseded_id=previous["id"] if previous else None,
            )
        },
    )
    return {**account, "status": BankAccountStatus.APPROVED.value, "reviewed_by": caller.id}


def reject(cur: PgCursor, caller: Caller, bank_account_id: str, *, reason: str) -> dict[str, Any]:
    require_role(caller, Role.SUPERADMIN)
    if not reason or not reason.strip():
        raise MissingReason("rejecting a bank account requires a reason")
    account = bank_accounts_repository.get_bank_account(cur, bank_account_id, for_update=True)
    if account is None:
        raise NotFound("bank account", bank_account_id)
    if account["status"] != BankAccountStatus.PENDING.value:
        raise InvalidTransition("bank account", account["status"], BankAccountStatus.REJECTED.value)

    bank_accounts_repository.set_status(
        cur,
        bank_account_id=bank_account_id,
        from_status=BankAccountStatus.PENDING.value,
        to_status=BankAccountStatus.REJECTED.value,
        reviewed_by=caller.id,
        rejection_reason=reason.strip(),
    )
    logger.info(
        "bank account rejected",
        extra={"extra_fields": safe_log_context(bank_account_id=bank_account_id)},
    )
    return {
        **account,
        "status": BankAccountStatus.REJECTED.value,
        "reviewed_by": caller.id,
        "rejection_reason": reason.strip(),
    }


def delete(cur: PgCursor, caller: Caller, bank_account_id: str) -> None:
    """Remove a PENDING or REJECTED account of the caller's operator."""
    require_role(caller, Role.OPERATOR, Role.SUPERADMIN)
    account = bank_accounts_repository.get_bank_account(cur, bank_account_id, for_update=True)
    require_owner(caller, account, "bank account", bank_account_id)
    if account["status"] == BankAccountStatus.APPROVED.value:
        raise InvalidTransition("bank account", account["status"], "DELETED", "approved accounts cannot be deleted")
    bank_accounts_repository.delete_bank_account(cur, bank_account_id)
    logger.info(
        "bank account deleted",
        extra={"extra_fields": safe_log_context(bank_account_id=bank_account_id)},
    )


def get_approved(cur: PgCursor, caller: Caller, *, operator_id: str | None = None) -> dict[str, Any] | None:
    operator_id = resolve_operator_id(caller, operator_id)
    return bank_accounts_repository.find_by_status(
        cur, operator_id=operator_id, status=BankAccountStatus.APPROVED.value
    )


def list_accounts(
    cur: PgCursor,
    caller: Caller,
    *,
    status: str | None = None,
    operator_id: str | None = None,
) -> list[dict[str, Any]]:
    """Operators see their own request history; superadmins see every
    operator's, typically filtered to PENDING."""
    require_role(caller, Role.OPERATOR, Role.SUPERADMIN)
    if status is not None:
        status = BankAccountStatus(status).value
    if not caller.is_superadmin:
        operator_id = resolve_operator_id(caller, operator_id)
    return bank_accounts_repository.list_bank_accounts(cur, operator_id=operator_id, status=status)
