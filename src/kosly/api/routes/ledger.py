"""Ledger endpoints - accounts, entries, summaries and payment sync."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Path, Query
from pydantic import BaseModel, Field

from kosly.api.auth import CallerDep
from kosly.api.errors import to_http
from kosly.domain.authz import Caller
from kosly.domain.errors import EngineError
from kosly.domain.ledger import AccountKind, Direction

router = APIRouter(prefix="/ledger", tags=["ledger"])


class CreateAccountRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: AccountKind
    operator_id: str | None = None


class ManualEntryRequest(BaseModel):
    account_id: str
    direction: Direction
    amount: int = Field(..., gt=0)
    note: str | None = None
    entry_date: date | None = None
    property_id: str | None = None


@router.get("/accounts")
def list_accounts(
    caller: Caller = CallerDep,
    operator_id: str | None = Query(None),
    include_archived: bool = Query(False),
) -> list[dict]:
    from kosly.domain import ledger
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return ledger.list_accounts(
                cur, caller, operator_id=operator_id, include_archived=include_archived
            )
    except EngineError as exc:
        raise to_http(exc) from exc


@router.post("/accounts", status_code=201)
def create_account(body: CreateAccountRequest, caller: Caller = CallerDep) -> dict:
    from kosly.domain import ledger
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return ledger.create_account(
                cur, caller, name=body.name, kind=body.kind, operator_id=body.operator_id
            )
    except EngineError as exc:
        raise to_http(exc) from exc


@router.post("/accounts/{account_id}/archive")
def archive_account(account_id: str = Path(...), caller: Caller = CallerDep) -> dict:
    from kosly.domain import ledger
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return ledger.archive_account(cur, caller, account_id)
    except EngineError as exc:
        raise to_http(exc) from exc


@router.get("/accounts/{account_id}/entries")
def list_entries(
    account_id: str = Path(...),
    caller: Caller = CallerDep,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> list[dict]:
    from kosly.domain import ledger
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return ledger.list_entries(
                cur,
                caller,
                account_id,
                date_from=date_from,
                date_to=date_to,
                limit=limit,
                offset=offset,
            )
    except EngineError as exc:
        raise to_http(exc) from exc


@router.get("/accounts/{account_id}/summary")
def account_summary(
    account_id: str = Path(...),
    caller: Caller = CallerDep,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
) -> dict:
    """Cash in, cash out and net over the range; balance over all time."""
    from kosly.domain import ledger
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return ledger.account_summary(cur, caller, account_id, date_from=date_from, date_to=date_to)
    except EngineError as exc:
        raise to_http(exc) from exc


@router.post("/entries", status_code=201)
def record_manual_entry(body: ManualEntryRequest, caller: Caller = CallerDep) -> dict:
    """Manual income/expense entry; system accounts refuse manual entries."""
    from kosly.domain import ledger
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return ledger.record_manual_entry(
                cur,
                caller,
                account_id=body.account_id,
                direction=body.direction,
                amount=body.amount,
                note=body.note,
                entry_date=body.entry_date,
                property_id=body.property_id,
            )
    except EngineError as exc:
        raise to_http(exc) from exc


@router.get("/payment-sync")
def payment_sync_report(caller: Caller = CallerDep, operator_id: str | None = Query(None)) -> dict:
    """SUCCESS payments that have no ledger entry."""
    from kosly.domain import ledger
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            missing = ledger.find_unsynced_payments(cur, caller, operator_id=operator_id)
    except EngineError as exc:
        raise to_http(exc) from exc
    return {"in_sync": not missing, "missing": missing}


@router.post("/payment-sync")
def resync_payments(caller: Caller = CallerDep, operator_id: str | None = Query(None)) -> dict:
    from kosly.domain import ledger
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return ledger.resync_payments(cur, caller, operator_id=operator_id)
    except EngineError as exc:
        raise to_http(exc) from exc
