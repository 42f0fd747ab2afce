"""Bank account endpoints - payout destinations and their review."""

from __future__ import annotations

from fastapi import APIRouter, Path, Query, Response
from pydantic import BaseModel, Field

from kosly.api.auth import CallerDep
from kosly.api.errors import to_http
from kosly.domain.authz import Caller
from kosly.domain.bank_accounts import BankAccountStatus
from kosly.domain.errors import EngineError

router = APIRouter(prefix="/bank-accounts", tags=["bank-accounts"])


class SubmitBankAccountRequest(BaseModel):
    bank_code: str = Field(..., min_length=1, max_length=20)
    bank_name: str = Field(..., min_length=1, max_length=100)
    account_number: str = Field(..., min_length=4, max_length=34)
    account_holder: str = Field(..., min_length=1, max_length=150)


class RejectBankAccountRequest(BaseModel):
    reason: str = ""


@router.get("")
def list_bank_accounts(
    caller: Caller = CallerDep,
    status: BankAccountStatus | None = Query(None),
    operator_id: str | None = Query(None),
) -> list[dict]:
    """Request history (operators) or review queue (superadmins).
    Account numbers are masked."""
    from kosly.domain import bank_accounts
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            accounts = bank_accounts.list_accounts(
                cur, caller, status=status.value if status else None, operator_id=operator_id
            )
    except EngineError as exc:
        raise to_http(exc) from exc
    return [bank_accounts.masked(a) for a in accounts]


@router.get("/approved")
def get_approved_bank_account(caller: Caller = CallerDep, operator_id: str | None = Query(None)) -> dict:
    from kosly.domain import bank_accounts
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            account = bank_accounts.get_approved(cur, caller, operator_id=operator_id)
    except EngineError as exc:
        raise to_http(exc) from exc
    return {"bank_account": bank_accounts.masked(account) if account else None}


@router.post("", status_code=201)
def submit_bank_account(body: SubmitBankAccountRequest, caller: Caller = CallerDep) -> dict:
    from kosly.domain import bank_accounts
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            account = bank_accounts.submit(
                cur,
                caller,
                bank_code=body.bank_code,
                bank_name=body.bank_name,
                account_number=body.account_number,
                account_holder=body.account_holder,
            )
    except EngineError as exc:
        raise to_http(exc) from exc
    return bank_accounts.masked(account)


@router.post("/{bank_account_id}/approve")
def approve_bank_account(bank_account_id: str = Path(...), caller: Caller = CallerDep) -> dict:
    from kosly.domain import bank_accounts
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            account = bank_accounts.approve(cur, caller, bank_account_id)
    except EngineError as exc:
        raise to_http(exc) from exc
    return bank_accounts.masked(account)


@router.post("/{bank_account_id}/reject")
def reject_bank_account(
    body: RejectBankAccountRequest,
    bank_account_id: str = Path(...),
    caller: Caller = CallerDep,
) -> dict:
    from kosly.domain import bank_accounts
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            account = bank_accounts.reject(cur, caller, bank_account_id, reason=body.reason)
    except EngineError as exc:
        raise to_http(exc) from exc
    return bank_accounts.masked(account)


@router.delete("/{bank_account_id}", status_code=204)
def delete_bank_account(bank_account_id: str = Path(...), caller: Caller = CallerDep) -> Response:
    from kosly.domain import bank_accounts
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            bank_accounts.delete(cur, caller, bank_account_id)
    except EngineError as exc:
        raise to_http(exc) from exc
    return Response(status_code=204)
