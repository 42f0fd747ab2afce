"""Notification dispatcher - hands engine events to the worker.

Events are enqueued after the owning transaction commits. Delivery
(messaging, e-mail) happens downstream of /tasks/notifications/dispatch;
a failure here is logged and never reaches the caller.
"""

from typing import Any

from kosly.observability.correlation import get_correlation_id
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context
from kosly.tasks.client import TasksClient
from kosly.tasks.contracts import TaskEnvelopeV1

logger = get_logger(__name__)

DISPATCH_PATH = "/tasks/notifications/dispatch"

BOOKING_CREATED = "booking.created"
PAYMENT_SUCCESS = "payment.success"
BOOKING_CHECKED_IN = "booking.checked_in"
BOOKING_CHECKED_OUT = "booking.checked_out"
BOOKING_EXPIRED = "booking.expired"
PAYOUT_APPROVED = "payout.approved"
PAYOUT_REJECTED = "payout.rejected"

EVENTS = frozenset({
    BOOKING_CREATED,
    PAYMENT_SUCCESS,
    BOOKING_CHECKED_IN,
    BOOKING_CHECKED_OUT,
    BOOKING_EXPIRED,
    PAYOUT_APPROVED,
    PAYOUT_REJECTED,
})

# Module-level singleton
_tasks_client = TasksClient()


def get_tasks_client() -> TasksClient:
    return _tasks_client


def notify(event: str, subject_id: str, payload: dict[str, Any] | None = None) -> bool:
    """Enqueue one notification.

    Args:
        event: One of EVENTS.
        subject_id: Id of the booking, payment or payout the event is about.
            Together with event it forms the task id, so re-notifying the
            same transition is a no-op.
        payload: Extra ids/amounts for the dispatcher (no PII).

    Returns:
        True if enqueued, False if skipped or failed.
    """
    if event not in EVENTS:
        raise ValueError(f"unknown notification event: {event}")

    envelope = TaskEnvelopeV1(
        task_name=event,
        payload={"subject_id": subject_id, **(payload or {})},
        task_id=f"notify:{event}:{subject_id}",
    )
    correlation_id = get_correlation_id()
    try:
        return get_tasks_client().enqueue_http(
            task_id=envelope.task_id,
            url_path=DISPATCH_PATH,
            payload=envelope.to_dict(),
            correlation_id=correlation_id,
        )
    except Exception as e:
        logger.exception(
            "notification enqueue failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    event=event,
                    subject_id=subject_id,
                    error=str(e),
                )
            },
        )
        return False
