"""Tasks client - hands internal work to the worker service.

Backends selectable via TASKS_BACKEND env var:
- inline (default): records the task without sending it (dev/tests)
- http: POSTs straight to the worker
- cloud_tasks: creates a Google Cloud Tasks HTTP task
"""

import os
from datetime import datetime


class TasksClient:
    """Enqueues worker tasks, deduplicated by task_id within the process.

    The backend is read from TASKS_BACKEND when the client is built, so
    tests can switch it with monkeypatch.setenv before construction.
    """

    def __init__(self, backend: str | None = None) -> None:
        self._backend = backend or os.environ.get("TASKS_BACKEND", "inline")
        self._seen_ids: set[str] = set()
        self._recorded: list[dict] = []

    @property
    def backend(self) -> str:
        return self._backend

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
        schedule_time: datetime | None = None,
    ) -> bool:
        """Enqueue a POST of payload to url_path on the worker.

        Args:
            task_id: Unique identifier; a repeated id is a no-op.
            url_path: Worker endpoint path (e.g. "/tasks/notifications/dispatch").
            payload: Task data (must not contain PII).
            correlation_id: Optional correlation ID for tracing.
            schedule_time: Optional future execution time.

        Returns:
            True if the task was accepted by the backend, False if the
            task_id was already seen or delivery failed.

        Raises:
            ValueError: If TASKS_BACKEND is unknown.
        """
        if task_id in self._seen_ids:
            return False

        if self._backend == "inline":
            self._seen_ids.add(task_id)
            self._recorded.append({
                "task_id": task_id,
                "url_path": url_path,
                "payload": payload,
                "correlation_id": correlation_id,
                "schedule_time": schedule_time,
            })
            return True

        if self._backend == "http":
            from kosly.tasks.http_backend import enqueue_http
            accepted = enqueue_http(task_id, url_path, payload, correlation_id, schedule_time)
        elif self._backend == "cloud_tasks":
            from kosly.tasks.cloud_tasks_backend import enqueue_cloud_task
            accepted = enqueue_cloud_task(task_id, url_path, payload, correlation_id, schedule_time)
        else:
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")

        # Failed deliveries may be retried under the same id.
        if accepted:
            self._seen_ids.add(task_id)
        return accepted

    def was_enqueued(self, task_id: str) -> bool:
        return task_id in self._seen_ids

    def recorded_tasks(self) -> list[dict]:
        """Tasks captured by the inline backend."""
        return list(self._recorded)

    def clear(self) -> None:
        self._seen_ids.clear()
        self._recorded.clear()
