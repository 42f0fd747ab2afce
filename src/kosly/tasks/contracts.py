"""Task contracts v1 - worker payloads, free of PII.

Every task sent to the worker is wrapped in a TaskEnvelopeV1 so the
worker can reject payloads from an incompatible producer.
"""

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class TaskEnvelopeV1:
    """Versioned task wrapper.

    Attributes:
        version: Contract version (always "v1").
        task_name: Task type, e.g. "notification.dispatch".
        payload: Task data; ids and amounts only, never names or contacts.
        task_id: Unique identifier, also used for deduplication.
    """

    version: Literal["v1"] = field(default="v1", init=False)
    task_name: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    task_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "task_name": self.task_name,
            "payload": self.payload,
            "task_id": self.task_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskEnvelopeV1":
        """Raises ValueError on a missing or unsupported version."""
        if data.get("version") != "v1":
            raise ValueError(f"Unsupported version: {data.get('version')}")
        if not data.get("task_name"):
            raise ValueError("task_name is required")
        return cls(
            task_name=data["task_name"],
            payload=data.get("payload") or {},
            task_id=data.get("task_id", ""),
        )
