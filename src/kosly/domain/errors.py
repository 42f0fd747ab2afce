"""Typed failures raised by the booking and ledger engine.

The API layer maps each class to an HTTP status; the engine itself never
swallows them.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for engine failures."""


class NotFound(EngineError):
    """Entity absent, or not visible to the caller."""

    def __init__(self, entity: str, entity_id: str | None = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found")


class InvalidTransition(EngineError):
    """State machine violation."""

    def __init__(self, entity: str, from_status: str, to_status: str, reason: str | None = None) -> None:
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        message = f"{entity} cannot move from {from_status} to {to_status}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class RoomUnavailable(EngineError):
    """Requested range overlaps a live booking on the same room."""

    def __init__(self, room_id: str, conflicting_booking_id: str | None = None) -> None:
        self.room_id = room_id
        self.conflicting_booking_id = conflicting_booking_id
        super().__init__(f"Room {room_id} is not available for the requested dates")


class InvalidLeaseParameters(EngineError):
    """Unknown lease type, non-positive price or empty stay."""


class InvalidAmount(EngineError):
    """Amount is non-positive, or a discount falls outside [0, total]."""


class InsufficientBalance(EngineError):
    def __init__(self, requested: int, available: int) -> None:
        self.requested = requested
        self.available = available
        super().__init__(f"Requested {requested} exceeds available balance {available}")


class MissingProof(EngineError):
    """Payout approval without transfer proof attachments."""


class MissingReason(EngineError):
    """Rejection without a reason."""


class AmountMismatch(EngineError):
    def __init__(self, order_id: str, expected: int, received: int) -> None:
        self.order_id = order_id
        self.expected = expected
        self.received = received
        super().__init__(f"Order {order_id}: expected amount {expected}, received {received}")


class InvalidAccount(EngineError):
    """Archived, system or foreign ledger account used where disallowed."""


class NoApprovedBankAccount(EngineError):
    pass


class PendingRequestExists(EngineError):
    """Operator already has a bank account request awaiting review."""


class Forbidden(EngineError):
    """Caller's role may not perform this operation at all."""
