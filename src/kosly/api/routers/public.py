"""Public-facing routes (APP_ROLE=public)."""

from fastapi import APIRouter

from kosly.api.routes import bank_accounts, bookings, ledger, payouts, webhooks_stripe

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(bookings.router)
router.include_router(ledger.router)
router.include_router(payouts.router)
router.include_router(bank_accounts.router)
router.include_router(webhooks_stripe.router)
