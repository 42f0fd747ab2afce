"""Shared test helper functions for Kosly tests.

This module contains helpers that can be imported by both conftest.py and
individual test files. These are NOT fixtures - they are regular functions
and classes.

- RSA/JWT helpers for the OIDC auth tests
- FakeStore: in-memory stand-in for the infra repositories, so engine
  scenarios run without Postgres
"""

from __future__ import annotations

import base64
import time
import uuid
from datetime import date, datetime, timezone
from typing import Any

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from kosly.domain.errors import RoomUnavailable

# ── JWT ──────────────────────────────────────────────────


def _generate_rsa_keypair():
    """Generate RSA key pair for test JWT signing."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )
    return private_key, private_key.public_key()


def _create_jwks(public_key, kid: str = "test-key-1") -> dict:
    public_numbers = public_key.public_numbers()

    def int_to_base64(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return (
            base64.urlsafe_b64encode(n.to_bytes(byte_length, "big"))
            .rstrip(b"=")
            .decode()
        )

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": kid,
                "n": int_to_base64(public_numbers.n),
                "e": int_to_base64(public_numbers.e),
            }
        ]
    }


def _create_token(
    private_key,
    kid: str = "test-key-1",
    sub: str = "user-123",
    iss: str = "https://auth.example.com",
    aud: str = "kosly-api",
    exp: int | None = None,
    azp: str | None = None,
) -> str:
    now = int(time.time())
    payload = {
        "sub": sub,
        "iss": iss,
        "aud": aud,
        "exp": exp if exp is not None else now + 3600,
        "iat": now,
    }
    if azp:
        payload["azp"] = azp
    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})


# ── In-memory repositories ───────────────────────────────


def _new_id() -> str:
    return str(uuid.uuid4())


def _overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    return a_start < b_end and b_start < a_end


class FakeStore:
    """Rows kept in dicts, exposed through the repository function names.

    install(monkeypatch) swaps every repository function used by the
    domain layer for the matching method here. Returned rows are copies,
    as they would be from a real cursor.
    """

    def __init__(self) -> None:
        self.rooms: dict[str, dict[str, Any]] = {}
        self.bookings: dict[str, dict[str, Any]] = {}
        self.status_logs: list[dict[str, Any]] = []
        self.payments: dict[str, dict[str, Any]] = {}
        self.accounts: dict[str, dict[str, Any]] = {}
        self.entries: list[dict[str, Any]] = []
        self.payouts: dict[str, dict[str, Any]] = {}
        self.attachments: list[dict[str, Any]] = []
        self.bank_accounts: dict[str, dict[str, Any]] = {}
        self.clock: datetime | None = None

    def now(self) -> datetime:
        return self.clock or datetime.now(timezone.utc)

    # ── seeding ──

    def add_room(
        self,
        *,
        operator_id: str,
        property_id: str | None = None,
        monthly_price: int | None = 1_000_000,
        deposit_type: str | None = None,
        deposit_value: int | None = None,
        is_active: bool = True,
        **prices: int | None,
    ) -> dict[str, Any]:
        room = {
            "id": _new_id(),
            "property_id": property_id or _new_id(),
            "operator_id": operator_id,
            "room_number": "101",
            "daily_price": prices.get("daily_price"),
            "weekly_price": prices.get("weekly_price"),
            "monthly_price": monthly_price,
            "quarterly_price": prices.get("quarterly_price"),
            "yearly_price": prices.get("yearly_price"),
            "deposit_type": deposit_type,
            "deposit_value": deposit_value,
            "is_active": is_active,
        }
        self.rooms[room["id"]] = room
        return dict(room)

    def add_bank_account(self, *, operator_id: str, status: str = "APPROVED") -> dict[str, Any]:
        account = self.insert_bank_account(
            None,
            operator_id=operator_id,
            bank_code="BCA",
            bank_name="Bank Central Asia",
            account_number="1234567890",
            account_holder="Kos Owner",
        )
        self.bank_accounts[account["id"]]["status"] = status
        return dict(self.bank_accounts[account["id"]])

    # ── bookings_repository ──

    def get_room(self, cur, room_id):
        room = self.rooms.get(room_id)
        return dict(room) if room else None

    def get_booking(self, cur, booking_id, *, for_update=False):
        booking = self.bookings.get(booking_id)
        return dict(booking) if booking else None

    def find_overlapping_booking(
        self, cur, *, room_id, check_in, check_out, statuses
    ):
        for booking in self.bookings.values():
            if (
                booking["room_id"] == room_id
                and booking["status"] in statuses
                and _overlaps(booking["check_in_date"], booking["check_out_date"], check_in, check_out)
            ):
                return dict(booking)
        return None

    def insert_booking(self, cur, **fields):
        # Mirrors the bookings_no_overlap exclusion constraint.
        for other in self.bookings.values():
            if (
                other["room_id"] == fields["room_id"]
                and other["status"] not in ("CANCELLED", "EXPIRED")
                and _overlaps(
                    other["check_in_date"],
                    other["check_out_date"],
                    fields["check_in_date"],
                    fields["check_out_date"],
                )
            ):
                raise RoomUnavailable(fields["room_id"])

        now = self.now()
        booking = {
            **fields,
            "id": _new_id(),
            "operator_id": self.rooms[fields["room_id"]]["operator_id"],
            "checked_in_at": None,
            "checked_in_by": None,
            "checked_out_at": None,
            "checked_out_by": None,
            "created_at": now,
            "updated_at": now,
        }
        self.bookings[booking["id"]] = booking
        return dict(booking)

    def update_status(
        self, cur, *, booking_id, from_status, to_status, payment_status=None, stamp=None, actor_id=None
    ):
        booking = self.bookings.get(booking_id)
        if booking is None or booking["status"] != from_status:
            return False
        booking["status"] = to_status
        booking["updated_at"] = self.now()
        if payment_status is not None:
            booking["payment_status"] = payment_status
        if stamp is not None:
            booking[f"{stamp}_at"] = self.now()
            booking[f"{stamp}_by"] = actor_id
        return True

    def insert_status_log(self, cur, *, booking_id, from_status, to_status, changed_by, note=None):
        self.status_logs.append({
            "booking_id": booking_id,
            "from_status": from_status,
            "to_status": to_status,
            "changed_by": changed_by,
            "note": note,
        })

    def list_bookings(
        self, cur, *, operator_id=None, property_id=None, customer_id=None, status=None, limit=50, offset=0
    ):
        rows = [
            dict(b) for b in self.bookings.values()
            if (operator_id is None or b["operator_id"] == operator_id)
            and (property_id is None or b["property_id"] == property_id)
            and (customer_id is None or b["customer_id"] == customer_id)
            and (status is None or b["status"] == status)
        ]
        return rows[offset:offset + limit]

    def count_by_status(self, cur, *, operator_id, property_id=None):
        counts: dict[str, int] = {}
        for b in self.bookings.values():
            if operator_id is not None and b["operator_id"] != operator_id:
                continue
            if property_id is not None and b["property_id"] != property_id:
                continue
            counts[b["status"]] = counts.get(b["status"], 0) + 1
        return counts

    def list_expirable(self, cur, *, today, created_before):
        rows = []
        for b in self.bookings.values():
            past_check_in = b["status"] in ("UNPAID", "DEPOSIT_PAID") and b["check_in_date"] < today
            live_payment = any(
                p["booking_id"] == b["id"] and p["status"] == "PENDING"
                for p in self.payments.values()
            )
            stale_unpaid = b["status"] == "UNPAID" and b["created_at"] < created_before and not live_payment
            if past_check_in or stale_unpaid:
                rows.append(dict(b))
        return rows

    # ── payments_repository ──

    def insert_payment(
        self,
        cur,
        *,
        booking_id,
        payer_id,
        payment_type,
        order_id,
        amount,
        status,
        settlement_account_id,
        expires_at=None,
        transaction_time=None,
    ):
        now = self.now()
        payment = {
            "id": _new_id(),
            "booking_id": booking_id,
            "payer_id": payer_id,
            "payment_type": payment_type,
            "order_id": order_id,
            "amount": amount,
            "status": status,
            "transaction_time": transaction_time,
            "settlement_account_id": settlement_account_id,
            "expires_at": expires_at,
            "redirect_url": None,
            "created_at": now,
            "updated_at": now,
        }
        self.payments[payment["id"]] = payment
        return dict(payment)

    def get_payment_by_order_id(self, cur, order_id, *, for_update=False):
        for payment in self.payments.values():
            if payment["order_id"] == order_id:
                return dict(payment)
        return None

    def get_open_payment(self, cur, *, booking_id, payment_type, now):
        for payment in self.payments.values():
            if (
                payment["booking_id"] == booking_id
                and payment["payment_type"] == payment_type
                and payment["status"] == "PENDING"
                and (payment["expires_at"] is None or payment["expires_at"] > now)
            ):
                return dict(payment)
        return None

    def get_successful_payment(self, cur, *, booking_id, payment_type):
        for payment in self.payments.values():
            if (
                payment["booking_id"] == booking_id
                and payment["payment_type"] == payment_type
                and payment["status"] == "SUCCESS"
            ):
                return dict(payment)
        return None

    def mark_result(self, cur, *, payment_id, status, transaction_time):
        payment = self.payments.get(payment_id)
        if payment is None or payment["status"] != "PENDING":
            return False
        payment["status"] = status
        payment["transaction_time"] = transaction_time
        return True

    def set_redirect_url(self, cur, *, payment_id, redirect_url):
        self.payments[payment_id]["redirect_url"] = redirect_url

    def expire_overdue_payments(self, cur, *, now):
        expired = []
        for payment in self.payments.values():
            if payment["status"] == "PENDING" and payment["expires_at"] is not None and payment["expires_at"] < now:
                payment["status"] = "EXPIRED"
                expired.append(payment["id"])
        return expired

    def expire_open_payments(self, cur, *, booking_id, exclude_payment_id=None):
        expired = []
        for payment in self.payments.values():
            if (
                payment["booking_id"] == booking_id
                and payment["status"] == "PENDING"
                and payment["id"] != exclude_payment_id
            ):
                payment["status"] = "EXPIRED"
                expired.append(payment["id"])
        return expired

    def list_payments(self, cur, *, booking_id):
        return [dict(p) for p in self.payments.values() if p["booking_id"] == booking_id]

    # ── ledger_repository ──

    def get_account(self, cur, account_id, *, for_update=False):
        account = self.accounts.get(account_id)
        return dict(account) if account else None

    def get_account_by_name(self, cur, *, operator_id, name):
        for account in self.accounts.values():
            if account["operator_id"] == operator_id and account["name"] == name:
                return dict(account)
        return None

    def insert_account(self, cur, *, operator_id, name, kind, is_system):
        if self.get_account_by_name(cur, operator_id=operator_id, name=name) is not None:
            return None
        account = {
            "id": _new_id(),
            "operator_id": operator_id,
            "name": name,
            "kind": kind,
            "is_system": is_system,
            "is_archived": False,
            "created_at": self.now(),
        }
        self.accounts[account["id"]] = account
        return dict(account)

    def archive_account(self, cur, account_id):
        self.accounts[account_id]["is_archived"] = True

    def list_accounts(self, cur, *, operator_id, include_archived=False):
        return [
            dict(a) for a in self.accounts.values()
            if a["operator_id"] == operator_id and (include_archived or not a["is_archived"])
        ]

    def insert_entry(
        self,
        cur,
        *,
        operator_id,
        account_id,
        direction,
        amount,
        entry_date,
        note,
        ref_type,
        ref_id,
        property_id,
        created_by,
    ):
        if ref_type in ("PAYMENT", "PAYOUT") and self.get_entry_by_ref(cur, ref_type=ref_type, ref_id=ref_id):
            return None
        entry = {
            "id": _new_id(),
            "operator_id": operator_id,
            "account_id": account_id,
            "direction": direction,
            "amount": amount,
            "entry_date": entry_date,
            "note": note,
            "ref_type": ref_type,
            "ref_id": ref_id,
            "property_id": property_id,
            "created_by": created_by,
            "created_at": self.now(),
        }
        self.entries.append(entry)
        return dict(entry)

    def get_entry_by_ref(self, cur, *, ref_type, ref_id):
        for entry in self.entries:
            if entry["ref_type"] == ref_type and entry["ref_id"] == ref_id:
                return dict(entry)
        return None

    def account_balance(self, cur, account_id):
        return sum(
            e["amount"] if e["direction"] == "IN" else -e["amount"]
            for e in self.entries
            if e["account_id"] == account_id
        )

    def _entries_in_range(self, account_id, date_from, date_to):
        return [
            e for e in self.entries
            if e["account_id"] == account_id
            and (date_from is None or e["entry_date"] >= date_from)
            and (date_to is None or e["entry_date"] <= date_to)
        ]

    def account_totals(self, cur, *, account_id, date_from=None, date_to=None):
        rows = self._entries_in_range(account_id, date_from, date_to)
        cash_in = sum(e["amount"] for e in rows if e["direction"] == "IN")
        cash_out = sum(e["amount"] for e in rows if e["direction"] == "OUT")
        return cash_in, cash_out

    def list_entries(self, cur, *, account_id, date_from=None, date_to=None, limit=100, offset=0):
        rows = [dict(e) for e in self._entries_in_range(account_id, date_from, date_to)]
        return rows[offset:offset + limit]

    def payments_missing_entries(self, cur, *, operator_id):
        missing = []
        for payment in self.payments.values():
            booking = self.bookings[payment["booking_id"]]
            if booking["operator_id"] != operator_id or payment["status"] != "SUCCESS":
                continue
            if self.get_entry_by_ref(cur, ref_type="PAYMENT", ref_id=payment["id"]):
                continue
            missing.append({
                "id": payment["id"],
                "booking_id": payment["booking_id"],
                "amount": payment["amount"],
                "payment_type": payment["payment_type"],
                "settlement_account_id": payment["settlement_account_id"],
                "transaction_time": payment["transaction_time"],
                "property_id": booking["property_id"],
                "booking_code": booking["booking_code"],
            })
        return missing

    # ── payouts_repository ──

    def insert_payout(
        self, cur, *, operator_id, source_account_id, bank_account_id, amount, notes, balance_before, requested_by
    ):
        payout = {
            "id": _new_id(),
            "operator_id": operator_id,
            "source_account_id": source_account_id,
            "bank_account_id": bank_account_id,
            "amount": amount,
            "status": "PENDING",
            "notes": notes,
            "balance_before": balance_before,
            "rejection_reason": None,
            "requested_by": requested_by,
            "processed_by": None,
            "processed_at": None,
            "created_at": self.now(),
        }
        self.payouts[payout["id"]] = payout
        return dict(payout)

    def get_payout(self, cur, payout_id, *, for_update=False):
        payout = self.payouts.get(payout_id)
        return dict(payout) if payout else None

    def pending_total(self, cur, *, operator_id):
        return sum(
            p["amount"] for p in self.payouts.values()
            if p["operator_id"] == operator_id and p["status"] == "PENDING"
        )

    def set_payout_status(self, cur, *, payout_id, status, processed_by, rejection_reason=None):
        payout = self.payouts.get(payout_id)
        if payout is None or payout["status"] != "PENDING":
            return False
        payout.update(
            status=status,
            processed_by=processed_by,
            processed_at=self.now(),
            rejection_reason=rejection_reason,
        )
        return True

    def insert_attachments(self, cur, *, payout_id, attachments):
        stored = []
        for attachment in attachments:
            row = {
                "id": _new_id(),
                "payout_id": payout_id,
                "file_url": attachment["file_url"],
                "file_name": attachment.get("file_name"),
                "file_type": attachment.get("file_type"),
            }
            self.attachments.append(row)
            stored.append({k: v for k, v in row.items() if k != "payout_id"})
        return stored

    def list_attachments(self, cur, *, payout_id):
        return [
            {k: v for k, v in a.items() if k != "payout_id"}
            for a in self.attachments
            if a["payout_id"] == payout_id
        ]

    def list_payouts(self, cur, *, operator_id=None, status=None, limit=50, offset=0):
        rows = [
            dict(p) for p in self.payouts.values()
            if (operator_id is None or p["operator_id"] == operator_id)
            and (status is None or p["status"] == status)
        ]
        return rows[offset:offset + limit]

    # ── bank_accounts_repository ──

    def insert_bank_account(self, cur, *, operator_id, bank_code, bank_name, account_number, account_holder):
        account = {
            "id": _new_id(),
            "operator_id": operator_id,
            "bank_code": bank_code,
            "bank_name": bank_name,
            "account_number": account_number,
            "account_holder": account_holder,
            "status": "PENDING",
            "reviewed_by": None,
            "reviewed_at": None,
            "rejection_reason": None,
            "created_at": self.now(),
        }
        self.bank_accounts[account["id"]] = account
        return dict(account)

    def get_bank_account(self, cur, bank_account_id, *, for_update=False):
        account = self.bank_accounts.get(bank_account_id)
        return dict(account) if account else None

    def find_bank_account_by_status(self, cur, *, operator_id, status):
        for account in self.bank_accounts.values():
            if account["operator_id"] == operator_id and account["status"] == status:
                return dict(account)
        return None

    def set_bank_account_status(
        self, cur, *, bank_account_id, from_status, to_status, reviewed_by, rejection_reason=None
    ):
        account = self.bank_accounts.get(bank_account_id)
        if account is None or account["status"] != from_status:
            return False
        account.update(
            status=to_status,
            reviewed_by=reviewed_by,
            reviewed_at=self.now(),
            rejection_reason=rejection_reason,
        )
        return True

    def delete_bank_account(self, cur, bank_account_id):
        for payout in self.payouts.values():
            if payout["bank_account_id"] == bank_account_id:
                payout["bank_account_id"] = None
        del self.bank_accounts[bank_account_id]

    def list_bank_accounts(self, cur, *, operator_id=None, status=None):
        return [
            dict(a) for a in self.bank_accounts.values()
            if (operator_id is None or a["operator_id"] == operator_id)
            and (status is None or a["status"] == status)
        ]

    # ── wiring ──

    def install(self, monkeypatch) -> None:
        from kosly.infra.repositories import (
            bank_accounts_repository,
            bookings_repository,
            ledger_repository,
            payments_repository,
            payouts_repository,
        )

        for name in (
            "get_room", "get_booking", "find_overlapping_booking", "insert_booking",
            "update_status", "insert_status_log", "list_bookings", "count_by_status",
            "list_expirable",
        ):
            monkeypatch.setattr(bookings_repository, name, getattr(self, name))

        for name in (
            "insert_payment", "get_payment_by_order_id", "get_open_payment",
            "get_successful_payment", "mark_result", "set_redirect_url", "list_payments",
            "expire_open_payments",
        ):
            monkeypatch.setattr(payments_repository, name, getattr(self, name))
        monkeypatch.setattr(payments_repository, "expire_overdue", self.expire_overdue_payments)

        for name in (
            "get_account", "get_account_by_name", "insert_account", "archive_account",
            "list_accounts", "insert_entry", "get_entry_by_ref", "account_balance",
            "account_totals", "list_entries", "payments_missing_entries",
        ):
            monkeypatch.setattr(ledger_repository, name, getattr(self, name))

        for name in (
            "insert_payout", "get_payout", "pending_total", "insert_attachments",
            "list_attachments", "list_payouts",
        ):
            monkeypatch.setattr(payouts_repository, name, getattr(self, name))
        monkeypatch.setattr(payouts_repository, "set_status", self.set_payout_status)

        for name in ("insert_bank_account", "get_bank_account", "delete_bank_account", "list_bank_accounts"):
            monkeypatch.setattr(bank_accounts_repository, name, getattr(self, name))
        monkeypatch.setattr(bank_accounts_repository, "find_by_status", self.find_bank_account_by_status)
        monkeypatch.setattr(bank_accounts_repository, "set_status", self.set_bank_account_status)
