"""Payout service - payout decisions with their notifications."""

from __future__ import annotations

from typing import Any

from kosly.domain import payouts
from kosly.domain.authz import Caller
from kosly.infra.db import txn
from kosly.notifications import dispatcher


def approve_payout(caller: Caller, payout_id: str, *, attachments: list[dict[str, Any]]) -> dict[str, Any]:
    with txn() as cur:
        payout = payouts.approve_payout(cur, caller, payout_id, attachments=attachments)
    dispatcher.notify(
        dispatcher.PAYOUT_APPROVED,
        payout["id"],
        {"operator_id": payout["operator_id"], "amount": int(payout["amount"])},
    )
    return payout


def reject_payout(caller: Caller, payout_id: str, *, reason: str) -> dict[str, Any]:
    with txn() as cur:
        payout = payouts.reject_payout(cur, caller, payout_id, reason=reason)
    dispatcher.notify(
        dispatcher.PAYOUT_REJECTED,
        payout["id"],
        {"operator_id": payout["operator_id"], "amount": int(payout["amount"])},
    )
    return payout
