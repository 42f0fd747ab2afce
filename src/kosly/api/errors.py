"""Translation of engine errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException

from kosly.domain.errors import (
    AmountMismatch,
    EngineError,
    Forbidden,
    InsufficientBalance,
    InvalidAccount,
    InvalidAmount,
    InvalidLeaseParameters,
    InvalidTransition,
    MissingProof,
    MissingReason,
    NoApprovedBankAccount,
    NotFound,
    PendingRequestExists,
    RoomUnavailable,
)

# First matching class wins.
_STATUS_BY_ERROR: tuple[tuple[type[EngineError], int], ...] = (
    (NotFound, 404),
    (Forbidden, 403),
    (InvalidTransition, 409),
    (RoomUnavailable, 409),
    (PendingRequestExists, 409),
    (InsufficientBalance, 422),
    (InvalidLeaseParameters, 400),
    (InvalidAmount, 400),
    (MissingProof, 400),
    (MissingReason, 400),
    (AmountMismatch, 400),
    (InvalidAccount, 400),
    (NoApprovedBankAccount, 400),
)


def status_for(exc: EngineError) -> int:
    for error_class, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return status_code
    return 400


def to_http(exc: EngineError) -> HTTPException:
    """HTTPException carrying the error class name and message.

    Usage:
        except EngineError as exc:
            raise to_http(exc) from exc
    """
    return HTTPException(
        status_code=status_for(exc),
        detail={"error": type(exc).__name__, "message": str(exc)},
    )
