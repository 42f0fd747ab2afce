"""Worker route receiving notification tasks.

Delivery channels (messaging, e-mail) plug in downstream; this handler
validates the envelope and records the dispatch.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from kosly.api.task_auth import require_task_auth
from kosly.notifications.dispatcher import EVENTS
from kosly.observability.correlation import get_correlation_id
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context
from kosly.tasks.contracts import TaskEnvelopeV1

router = APIRouter(prefix="/tasks/notifications", tags=["tasks"], dependencies=[Depends(require_task_auth)])

logger = get_logger(__name__)


@router.post("/dispatch")
async def dispatch(request: Request) -> JSONResponse:
    correlation_id = get_correlation_id()

    try:
        data: dict[str, Any] = await request.json()
        envelope = TaskEnvelopeV1.from_dict(data if isinstance(data, dict) else {})
    except ValueError as e:
        logger.warning(
            "invalid notification task",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid envelope"})

    if envelope.task_name not in EVENTS:
        logger.warning(
            "unknown notification event",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, event=envelope.task_name)},
        )
        return JSONResponse(status_code=400, content={"ok": False, "error": "unknown event"})

    logger.info(
        "notification dispatched",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                task_id=envelope.task_id,
                event=envelope.task_name,
                subject_id=envelope.payload.get("subject_id"),
            )
        },
    )
    return JSONResponse(status_code=200, content={"ok": True, "event": envelope.task_name})
