"""HTTP backend for tasks - POSTs tasks straight to the worker.

Used where api and worker run as separate containers on one network.
"""

import os
from datetime import datetime

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.id_token import fetch_id_token

from kosly.observability.logging import get_logger

logger = get_logger(__name__)

# Must match task_auth.LOCAL_DEV_AUDIENCE
LOCAL_DEV_AUDIENCE = "kosly-tasks-local"


def _worker_base_url() -> str:
    return os.environ.get("WORKER_BASE_URL", "http://worker:8000").rstrip("/")


def _fetch_oidc_token(audience: str) -> str | None:
    """Fetch a GCP ID token for audience, or None when unavailable.

    Relies on the metadata server or application default credentials.
    """
    try:
        return fetch_id_token(GoogleRequest(), audience)
    except GoogleAuthError as e:
        logger.error(
            "failed to fetch OIDC ID token",
            extra={"extra_fields": {"audience": audience, "error": str(e)}},
        )
        return None


def _auth_headers(task_id: str, url_path: str) -> dict[str, str] | None:
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") == LOCAL_DEV_AUDIENCE:
        secret = os.environ.get("INTERNAL_TASK_SECRET", "")
        return {"X-Internal-Task-Secret": secret} if secret else {}

    token = _fetch_oidc_token(os.environ.get("TASKS_OIDC_AUDIENCE") or _worker_base_url())
    if not token:
        logger.error(
            "HTTP task enqueue aborted: OIDC token unavailable",
            extra={"extra_fields": {"task_id": task_id, "url_path": url_path}},
        )
        return None
    return {"Authorization": f"Bearer {token}"}


def enqueue_http(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """POST payload to the worker.

    Returns:
        True if the worker answered 2xx, False otherwise. Scheduled tasks
        are not supported here and are dropped with a warning.
    """
    if schedule_time is not None:
        logger.warning(
            "HTTP backend does not support scheduled tasks",
            extra={"extra_fields": {"task_id": task_id, "url_path": url_path}},
        )
        return False

    auth = _auth_headers(task_id, url_path)
    if auth is None:
        return False

    url = f"{_worker_base_url()}{url_path}"
    headers = {
        "Content-Type": "application/json",
        "X-Correlation-ID": correlation_id or "",
        "X-Task-Id": task_id,
        **auth,
    }
    timeout = int(os.environ.get("TASKS_HTTP_TIMEOUT", "30"))

    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(
            "HTTP task enqueue failed",
            extra={"extra_fields": {"task_id": task_id, "url_path": url_path, "error": str(e)}},
        )
        return False

    logger.info(
        "HTTP task enqueued",
        extra={"extra_fields": {"task_id": task_id, "url_path": url_path}},
    )
    return True
