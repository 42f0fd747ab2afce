"""Payout endpoints - operator withdrawals and superadmin review."""

from __future__ import annotations

from fastapi import APIRouter, Path, Query
from pydantic import BaseModel, Field

from kosly.api.auth import CallerDep
from kosly.api.errors import to_http
from kosly.domain.authz import Caller
from kosly.domain.errors import EngineError
from kosly.domain.payouts import PayoutStatus
from kosly.observability.correlation import get_correlation_id
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context

router = APIRouter(prefix="/payouts", tags=["payouts"])

logger = get_logger(__name__)


class RequestPayoutRequest(BaseModel):
    bank_account_id: str
    amount: int = Field(..., gt=0)
    notes: str | None = None
    source_account_id: str | None = None


class Attachment(BaseModel):
    file_url: str = Field(..., min_length=1)
    file_name: str | None = None
    file_type: str | None = None


class ApprovePayoutRequest(BaseModel):
    attachments: list[Attachment] = Field(default_factory=list)


class RejectPayoutRequest(BaseModel):
    reason: str = ""


@router.get("/balance")
def get_balance(caller: Caller = CallerDep, operator_id: str | None = Query(None)) -> dict:
    """Sales balance, pending payouts and the withdrawable amount."""
    from kosly.domain import payouts
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return payouts.get_balance(cur, caller, operator_id=operator_id)
    except EngineError as exc:
        raise to_http(exc) from exc


@router.get("")
def list_payouts(
    caller: Caller = CallerDep,
    status: PayoutStatus | None = Query(None),
    operator_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> list[dict]:
    from kosly.domain import payouts
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return payouts.list_payouts(
                cur,
                caller,
                status=status.value if status else None,
                operator_id=operator_id,
                limit=limit,
                offset=offset,
            )
    except EngineError as exc:
        raise to_http(exc) from exc


@router.get("/{payout_id}")
def get_payout(payout_id: str = Path(...), caller: Caller = CallerDep) -> dict:
    from kosly.domain import payouts
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            return payouts.get_payout(cur, caller, payout_id)
    except EngineError as exc:
        raise to_http(exc) from exc


@router.post("", status_code=201)
def request_payout(body: RequestPayoutRequest, caller: Caller = CallerDep) -> dict:
    from kosly.domain import payouts
    from kosly.infra.db import txn

    try:
        with txn() as cur:
            payout = payouts.request_payout(
                cur,
                caller,
                bank_account_id=body.bank_account_id,
                amount=body.amount,
                notes=body.notes,
                source_account_id=body.source_account_id,
            )
    except EngineError as exc:
        raise to_http(exc) from exc

    logger.info(
        "payout requested via api",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                payout_id=payout["id"],
            )
        },
    )
    return payout


@router.post("/{payout_id}/approve")
def approve_payout(
    body: ApprovePayoutRequest,
    payout_id: str = Path(...),
    caller: Caller = CallerDep,
) -> dict:
    """Approve with transfer proof; writes the OUT ledger entry."""
    from kosly.services import payout_service

    try:
        return payout_service.approve_payout(
            caller,
            payout_id,
            attachments=[a.model_dump() for a in body.attachments],
        )
    except EngineError as exc:
        raise to_http(exc) from exc


@router.post("/{payout_id}/reject")
def reject_payout(
    body: RejectPayoutRequest,
    payout_id: str = Path(...),
    caller: Caller = CallerDep,
) -> dict:
    from kosly.services import payout_service

    try:
        return payout_service.reject_payout(caller, payout_id, reason=body.reason)
    except EngineError as exc:
        raise to_http(exc) from exc
