"""Caller identity and the ownership predicate shared by every mutating operation.

The engine trusts the Caller it is handed; authentication happens upstream.
Records outside the caller's operator scope are reported as NotFound so their
existence is not leaked.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from .errors import Forbidden, NotFound


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    STAFF = "STAFF"
    OPERATOR = "OPERATOR"
    SUPERADMIN = "SUPERADMIN"


@dataclass(frozen=True)
class Caller:
    id: str
    role: Role
    operator_id: str | None = None

    @property
    def is_superadmin(self) -> bool:
        return self.role == Role.SUPERADMIN

    @property
    def is_operator_side(self) -> bool:
        """Operator owner or staff acting for that operator."""
        return self.role in (Role.OPERATOR, Role.STAFF)


def owns(caller: Caller, operator_id: str | None, *, customer_id: str | None = None) -> bool:
    """Single ownership predicate.

    - superadmin sees everything
    - operator and staff see records of their own operator
    - customers see records they are the customer of
    """
    if caller.is_superadmin:
        return True
    if caller.is_operator_side:
        return caller.operator_id is not None and caller.operator_id == operator_id
    if caller.role == Role.CUSTOMER:
        return customer_id is not None and customer_id == caller.id
    return False


def require_owner(
    caller: Caller,
    record: Mapping[str, Any] | None,
    entity: str,
    entity_id: str | None = None,
) -> Mapping[str, Any]:
    """Return record if the caller owns it, else raise NotFound.

    record must carry "operator_id" and may carry "customer_id".
    """
    if record is None or not owns(
        caller,
        record.get("operator_id"),
        customer_id=record.get("customer_id"),
    ):
        raise NotFound(entity, entity_id)
    return record


def require_role(caller: Caller, *roles: Role) -> None:
    if caller.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise Forbidden(f"role {caller.role.value} may not perform this action (allowed: {allowed})")


def resolve_operator_id(caller: Caller, requested: str | None = None) -> str:
    """Operator whose records the caller is acting on.

    Operator-side callers are pinned to their own operator; a different
    requested id is reported as NotFound. Superadmins must name one.
    """
    if caller.is_superadmin:
        if not requested:
            raise NotFound("operator")
        return requested
    if caller.is_operator_side and caller.operator_id:
        if requested and requested != caller.operator_id:
            raise NotFound("operator", requested)
        return caller.operator_id
    raise Forbidden(f"role {caller.role.value} has no operator scope")
