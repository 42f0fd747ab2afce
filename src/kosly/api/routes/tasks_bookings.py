"""Worker routes for booking maintenance tasks."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from kosly.api.task_auth import require_task_auth
from kosly.observability.correlation import get_correlation_id
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/bookings", tags=["tasks"], dependencies=[Depends(require_task_auth)])

logger = get_logger(__name__)


@router.post("/expire-overdue")
def expire_overdue() -> dict:
    """Expiry sweep, called by the scheduler.

    Safe to call repeatedly and concurrently; rows already locked by a
    parallel sweep are skipped.
    """
    from kosly.services import booking_service

    result = booking_service.expire_overdue()

    logger.info(
        "expire-overdue task completed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                expired_payments=len(result["expired_payment_ids"]),
                expired_bookings=len(result["expired_booking_ids"]),
            )
        },
    )
    return {"ok": True, **result}
