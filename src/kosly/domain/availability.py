"""Room availability check.

Two bookings on the same room conflict iff their [check_in, check_out)
ranges intersect and neither is CANCELLED or EXPIRED. A stay ending on the
day another starts is not a conflict.

Callers must run assert_room_available and the booking insert in the same
transaction. The room advisory lock serializes concurrent create/renew
calls for one room; the bookings exclusion constraint backs it up at the
database level.
"""

from __future__ import annotations

from datetime import date

from psycopg2.extensions import cursor as PgCursor

from kosly.infra.db import advisory_xact_lock
from kosly.infra.repositories import bookings_repository
from kosly.observability.logging import get_logger
from kosly.observability.redaction import safe_log_context

from .bookings import OCCUPYING_STATUSES
from .errors import RoomUnavailable

logger = get_logger(__name__)

_LOCK_NAMESPACE = "room"


def find_conflict(
    cur: PgCursor,
    *,
    room_id: str,
    check_in: date,
    check_out: date,
) -> str | None:
    """Id of the first live booking overlapping the range, or None."""
    conflict = bookings_repository.find_overlapping_booking(
        cur,
        room_id=room_id,
        check_in=check_in,
        check_out=check_out,
        statuses=sorted(s.value for s in OCCUPYING_STATUSES),
    )
    if conflict is None:
        return None

    logger.warning(
        "room conflict detected",
        extra={
            "extra_fields": safe_log_context(
                room_id=room_id,
                requested_check_in=check_in.isoformat(),
                requested_check_out=check_out.isoformat(),
                conflicting_booking_id=conflict["id"],
            )
        },
    )
    return conflict["id"]


def assert_room_available(
    cur: PgCursor,
    *,
    room_id: str,
    check_in: date,
    check_out: date,
) -> None:
    """Lock the room for this transaction and raise RoomUnavailable on overlap."""
    advisory_xact_lock(cur, _LOCK_NAMESPACE, room_id)
    conflicting_id = find_conflict(
        cur,
        room_id=room_id,
        check_in=check_in,
        check_out=check_out,
    )
    if conflicting_id is not None:
        raise RoomUnavailable(room_id, conflicting_id)
