"""Tests for the tasks subsystem: client, envelope, backends, dispatcher."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from kosly.notifications import dispatcher
from kosly.tasks.client import TasksClient
from kosly.tasks.contracts import TaskEnvelopeV1


class TestTasksClient:
    def test_inline_records_task(self):
        client = TasksClient(backend="inline")

        result = client.enqueue_http("task-1", "/tasks/x", {"key": "value"}, correlation_id="cid-1")

        assert result is True
        assert client.recorded_tasks() == [
            {
                "task_id": "task-1",
                "url_path": "/tasks/x",
                "payload": {"key": "value"},
                "correlation_id": "cid-1",
                "schedule_time": None,
            }
        ]

    def test_same_task_id_is_noop(self):
        client = TasksClient(backend="inline")

        assert client.enqueue_http("same-id", "/tasks/x", {"x": 1}) is True
        assert client.enqueue_http("same-id", "/tasks/x", {"x": 2}) is False
        assert len(client.recorded_tasks()) == 1

    def test_was_enqueued_and_clear(self):
        client = TasksClient(backend="inline")
        assert client.was_enqueued("task-1") is False

        client.enqueue_http("task-1", "/tasks/x", {})
        assert client.was_enqueued("task-1") is True

        client.clear()
        assert client.was_enqueued("task-1") is False
        assert client.recorded_tasks() == []

    def test_backend_from_env(self, monkeypatch):
        monkeypatch.setenv("TASKS_BACKEND", "http")
        assert TasksClient().backend == "http"

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown TASKS_BACKEND"):
            TasksClient(backend="carrier-pigeon").enqueue_http("t", "/tasks/x", {})

    def test_failed_delivery_can_be_retried(self):
        client = TasksClient(backend="http")
        with patch("kosly.tasks.http_backend.enqueue_http", side_effect=[False, True]) as mock_enqueue:
            assert client.enqueue_http("t1", "/tasks/x", {}) is False
            assert client.enqueue_http("t1", "/tasks/x", {}) is True
        assert mock_enqueue.call_count == 2
        assert client.was_enqueued("t1") is True

    def test_cloud_tasks_backend_selected(self):
        client = TasksClient(backend="cloud_tasks")
        with patch("kosly.tasks.cloud_tasks_backend.enqueue_cloud_task", return_value=True) as mock_enqueue:
            assert client.enqueue_http("t1", "/tasks/x", {"a": 1}, correlation_id="c") is True
        mock_enqueue.assert_called_once_with("t1", "/tasks/x", {"a": 1}, "c", None)


class TestTaskEnvelopeV1:
    def test_to_dict(self):
        envelope = TaskEnvelopeV1(task_name="booking.created", payload={"subject_id": "b1"}, task_id="t-1")
        assert envelope.to_dict() == {
            "version": "v1",
            "task_name": "booking.created",
            "payload": {"subject_id": "b1"},
            "task_id": "t-1",
        }

    def test_from_dict(self):
        envelope = TaskEnvelopeV1.from_dict(
            {"version": "v1", "task_name": "payout.approved", "payload": {"subject_id": "p1"}, "task_id": "t"}
        )
        assert envelope.task_name == "payout.approved"
        assert envelope.payload == {"subject_id": "p1"}

    def test_from_dict_rejects_wrong_version(self):
        with pytest.raises(ValueError, match="Unsupported version"):
            TaskEnvelopeV1.from_dict({"version": "v2", "task_name": "x"})

    def test_from_dict_requires_task_name(self):
        with pytest.raises(ValueError, match="task_name is required"):
            TaskEnvelopeV1.from_dict({"version": "v1"})

    def test_frozen(self):
        envelope = TaskEnvelopeV1(task_name="test", payload={}, task_id="id-1")
        with pytest.raises(AttributeError):
            envelope.task_name = "changed"  # type: ignore[misc]


class TestHttpBackend:
    @pytest.fixture(autouse=True)
    def _env(self, monkeypatch):
        monkeypatch.setenv("WORKER_BASE_URL", "http://worker:8000/")
        monkeypatch.delenv("TASKS_OIDC_AUDIENCE", raising=False)

    def test_posts_with_oidc_token(self):
        from kosly.tasks.http_backend import enqueue_http

        with patch("kosly.tasks.http_backend._fetch_oidc_token", return_value="tok") as mock_token, \
             patch("kosly.tasks.http_backend.requests.post") as mock_post:
            assert enqueue_http("t1", "/tasks/x", {"a": 1}, correlation_id="cid") is True

        mock_token.assert_called_once_with("http://worker:8000")
        args, kwargs = mock_post.call_args
        assert args[0] == "http://worker:8000/tasks/x"
        assert kwargs["json"] == {"a": 1}
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["headers"]["X-Correlation-ID"] == "cid"
        assert kwargs["headers"]["X-Task-Id"] == "t1"

    def test_local_dev_uses_shared_secret(self, monkeypatch):
        from kosly.tasks.http_backend import LOCAL_DEV_AUDIENCE, enqueue_http

        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", LOCAL_DEV_AUDIENCE)
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")
        with patch("kosly.tasks.http_backend._fetch_oidc_token") as mock_token, \
             patch("kosly.tasks.http_backend.requests.post") as mock_post:
            assert enqueue_http("t1", "/tasks/x", {}) is True

        mock_token.assert_not_called()
        assert mock_post.call_args.kwargs["headers"]["X-Internal-Task-Secret"] == "s3cret"

    def test_no_token_aborts(self):
        from kosly.tasks.http_backend import enqueue_http

        with patch("kosly.tasks.http_backend._fetch_oidc_token", return_value=None), \
             patch("kosly.tasks.http_backend.requests.post") as mock_post:
            assert enqueue_http("t1", "/tasks/x", {}) is False
        mock_post.assert_not_called()

    def test_worker_error_returns_false(self):
        from kosly.tasks.http_backend import enqueue_http

        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("500")
        with patch("kosly.tasks.http_backend._fetch_oidc_token", return_value="tok"), \
             patch("kosly.tasks.http_backend.requests.post", return_value=response):
            assert enqueue_http("t1", "/tasks/x", {}) is False

    def test_scheduled_tasks_unsupported(self):
        from kosly.tasks.http_backend import enqueue_http

        with patch("kosly.tasks.http_backend.requests.post") as mock_post:
            result = enqueue_http("t1", "/tasks/x", {}, schedule_time=datetime(2030, 1, 1, tzinfo=timezone.utc))
        assert result is False
        mock_post.assert_not_called()


class TestDispatcher:
    def test_notify_builds_envelope(self):
        assert dispatcher.notify(dispatcher.PAYOUT_APPROVED, "po-1", {"amount": 100}) is True

        (task,) = dispatcher.get_tasks_client().recorded_tasks()
        assert task["task_id"] == "notify:payout.approved:po-1"
        assert task["url_path"] == dispatcher.DISPATCH_PATH
        assert task["payload"] == {
            "version": "v1",
            "task_name": "payout.approved",
            "payload": {"subject_id": "po-1", "amount": 100},
            "task_id": "notify:payout.approved:po-1",
        }

    def test_same_transition_notified_once(self):
        assert dispatcher.notify(dispatcher.BOOKING_EXPIRED, "b1") is True
        assert dispatcher.notify(dispatcher.BOOKING_EXPIRED, "b1") is False

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError, match="unknown notification event"):
            dispatcher.notify("booking.teleported", "b1")

    def test_enqueue_failure_is_swallowed(self):
        with patch.object(dispatcher.get_tasks_client(), "enqueue_http", side_effect=RuntimeError("down")):
            assert dispatcher.notify(dispatcher.BOOKING_CREATED, "b1") is False
