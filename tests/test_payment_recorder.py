"""Payment recorder: opening gateway payments and applying their results.

Runs against FakeStore, so booking, payment and ledger effects of one
notification can be asserted together.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from kosly.domain import booking_engine, ledger, payment_recorder
from kosly.domain.errors import AmountMismatch, InvalidAmount, InvalidTransition, NotFound
from kosly.infra.settings import EngineSettings

NOW = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
PAID_AT = datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def booking(store, cur, callers, operator_id):
    """UNPAID monthly booking on a room with a 30% deposit policy."""
    room = store.add_room(operator_id=operator_id, deposit_type="PERCENTAGE", deposit_value=30)
    return booking_engine.create_booking(
        cur,
        callers["customer"],
        room_id=room["id"],
        lease_type="MONTHLY",
        check_in_date=date(2024, 1, 10),
        today=date(2024, 1, 1),
    )["booking"]


def _open(cur, caller, booking_id, payment_type, now=NOW):
    return payment_recorder.open_payment(
        cur,
        caller,
        booking_id=booking_id,
        payment_type=payment_type,
        now=now,
        settings=EngineSettings(),
    )


def _sales_balance(cur, operator_id):
    return ledger.balance(cur, ledger.get_sales_account(cur, operator_id)["id"])


class TestGenerateOrderId:
    def test_gateway_order(self):
        order_id = payment_recorder.generate_order_id(
            "3f2a9c1b-0000-0000-0000-000000000000", "DEPOSIT", now=NOW
        )
        prefix, short_id, stamp = order_id.split("-")
        assert prefix == "DEP"
        assert short_id == "3F2A9C1B"
        assert stamp.isalnum()

    def test_manual_order(self):
        order_id = payment_recorder.generate_order_id("abc", "FULL", manual=True, now=NOW)
        assert order_id.startswith("MANFULL-ABC-")


class TestExpectedAmount:
    def test_deposit(self):
        assert payment_recorder.expected_amount(
            {"id": "b1", "deposit_amount": 300_000, "total_amount": 1_000_000}, "DEPOSIT"
        ) == 300_000

    def test_full_subtracts_discount_and_paid_deposit(self):
        booking = {"id": "b1", "total_amount": 1_000_000, "discount_amount": 100_000}
        assert payment_recorder.expected_amount(booking, "FULL", deposit_paid=300_000) == 600_000

    def test_deposit_without_policy(self):
        with pytest.raises(InvalidAmount):
            payment_recorder.expected_amount({"id": "b1", "deposit_amount": None}, "DEPOSIT")

    def test_nothing_left(self):
        with pytest.raises(InvalidAmount):
            payment_recorder.expected_amount(
                {"id": "b1", "total_amount": 1_000_000, "discount_amount": 1_000_000}, "FULL"
            )


class TestOpenPayment:
    def test_opens_pending_full_payment(self, store, cur, callers, booking):
        opened = _open(cur, callers["customer"], booking["id"], "FULL")

        payment = opened["payment"]
        assert opened["created"] is True
        assert payment["status"] == "PENDING"
        assert payment["amount"] == 1_000_000
        assert payment["order_id"].startswith("FULL-")
        assert payment["expires_at"] == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert store.accounts[payment["settlement_account_id"]]["name"] == "Sales"

    def test_reopen_returns_live_payment(self, store, cur, callers, booking):
        first = _open(cur, callers["customer"], booking["id"], "FULL")
        second = _open(cur, callers["customer"], booking["id"], "FULL")

        assert second["created"] is False
        assert second["payment"]["id"] == first["payment"]["id"]
        assert len(store.payments) == 1

    def test_expired_payment_is_replaced(self, store, cur, callers, booking):
        first = _open(cur, callers["customer"], booking["id"], "FULL")
        later = datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc)

        second = _open(cur, callers["customer"], booking["id"], "FULL", now=later)

        assert second["created"] is True
        assert second["payment"]["id"] != first["payment"]["id"]

    def test_deposit_expiry_window(self, store, cur, callers, booking):
        opened = _open(cur, callers["customer"], booking["id"], "DEPOSIT")
        assert opened["payment"]["amount"] == 300_000
        assert opened["payment"]["expires_at"] == datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)

    def test_confirmed_booking_not_payable(self, store, cur, callers, booking):
        opened = _open(cur, callers["customer"], booking["id"], "FULL")
        payment_recorder.record_result(cur, order_id=opened["payment"]["order_id"], status="SUCCESS", amount=1_000_000)

        with pytest.raises(InvalidTransition):
            _open(cur, callers["customer"], booking["id"], "FULL")

    def test_foreign_customer_not_found(self, store, cur, booking):
        from kosly.domain.authz import Caller, Role

        with pytest.raises(NotFound):
            _open(cur, Caller(id="intruder", role=Role.CUSTOMER), booking["id"], "FULL")


class TestRecordResult:
    def test_full_payment_confirms_booking(self, store, cur, callers, booking, operator_id):
        order_id = _open(cur, callers["customer"], booking["id"], "FULL")["payment"]["order_id"]

        result = payment_recorder.record_result(
            cur, order_id=order_id, status="SUCCESS", amount=1_000_000, transaction_time=PAID_AT
        )

        assert result["status"] == "success"
        assert result["booking"]["status"] == "CONFIRMED"
        assert store.bookings[booking["id"]]["payment_status"] == "SUCCESS"
        entry = result["ledger_entry"]
        assert entry["direction"] == "IN"
        assert entry["amount"] == 1_000_000
        assert entry["ref_type"] == "PAYMENT"
        assert entry["entry_date"] == date(2024, 1, 1)
        assert entry["created_by"] is None
        assert _sales_balance(cur, operator_id) == 1_000_000

    def test_deposit_then_remainder(self, store, cur, callers, booking, operator_id):
        deposit = _open(cur, callers["customer"], booking["id"], "DEPOSIT")["payment"]
        payment_recorder.record_result(cur, order_id=deposit["order_id"], status="SUCCESS", amount=300_000)
        assert store.bookings[booking["id"]]["status"] == "DEPOSIT_PAID"
        assert store.bookings[booking["id"]]["payment_status"] == "DEPOSIT_PAID"

        remainder = _open(cur, callers["customer"], booking["id"], "FULL")["payment"]
        assert remainder["amount"] == 700_000
        payment_recorder.record_result(cur, order_id=remainder["order_id"], status="SUCCESS", amount=700_000)

        assert store.bookings[booking["id"]]["status"] == "CONFIRMED"
        assert _sales_balance(cur, operator_id) == 1_000_000

    def test_full_opened_before_deposit_is_repriced(self, store, cur, callers, booking, operator_id):
        deposit = _open(cur, callers["customer"], booking["id"], "DEPOSIT")["payment"]
        early_full = _open(cur, callers["customer"], booking["id"], "FULL")["payment"]
        assert early_full["amount"] == 1_000_000

        payment_recorder.record_result(cur, order_id=deposit["order_id"], status="SUCCESS", amount=300_000)
        assert store.payments[early_full["id"]]["status"] == "EXPIRED"

        reopened = _open(cur, callers["customer"], booking["id"], "FULL")
        assert reopened["created"] is True
        assert reopened["payment"]["amount"] == 700_000

        payment_recorder.record_result(
            cur, order_id=reopened["payment"]["order_id"], status="SUCCESS", amount=700_000
        )
        assert store.bookings[booking["id"]]["status"] == "CONFIRMED"
        assert _sales_balance(cur, operator_id) == 1_000_000

    def test_stale_open_order_not_reused(self, store, cur, callers, booking):
        early_full = _open(cur, callers["customer"], booking["id"], "FULL")["payment"]
        deposit = _open(cur, callers["customer"], booking["id"], "DEPOSIT")["payment"]
        # Leave the early FULL order live, as if settlement had not swept it.
        store.payments[deposit["id"]]["status"] = "SUCCESS"
        store.bookings[booking["id"]]["status"] = "DEPOSIT_PAID"

        reopened = _open(cur, callers["customer"], booking["id"], "FULL")

        assert reopened["created"] is True
        assert reopened["payment"]["amount"] == 700_000
        assert store.payments[early_full["id"]]["status"] == "EXPIRED"

    def test_settled_full_closes_open_deposit(self, store, cur, callers, booking, operator_id):
        deposit = _open(cur, callers["customer"], booking["id"], "DEPOSIT")["payment"]
        full = _open(cur, callers["customer"], booking["id"], "FULL")["payment"]

        payment_recorder.record_result(cur, order_id=full["order_id"], status="SUCCESS", amount=1_000_000)
        late = payment_recorder.record_result(cur, order_id=deposit["order_id"], status="SUCCESS", amount=300_000)

        assert late["status"] == "already_processed"
        assert store.payments[deposit["id"]]["status"] == "EXPIRED"
        assert _sales_balance(cur, operator_id) == 1_000_000

    def test_redelivery_is_idempotent(self, store, cur, callers, booking, operator_id):
        order_id = _open(cur, callers["customer"], booking["id"], "FULL")["payment"]["order_id"]

        payment_recorder.record_result(cur, order_id=order_id, status="SUCCESS", amount=1_000_000)
        again = payment_recorder.record_result(cur, order_id=order_id, status="SUCCESS", amount=1_000_000)

        assert again["status"] == "already_processed"
        assert len(store.entries) == 1
        assert _sales_balance(cur, operator_id) == 1_000_000

    def test_amount_mismatch(self, store, cur, callers, booking):
        payment = _open(cur, callers["customer"], booking["id"], "FULL")["payment"]

        with pytest.raises(AmountMismatch) as exc_info:
            payment_recorder.record_result(cur, order_id=payment["order_id"], status="SUCCESS", amount=999)

        assert exc_info.value.expected == 1_000_000
        assert store.payments[payment["id"]]["status"] == "PENDING"
        assert store.entries == []

    def test_unknown_order(self, store, cur):
        with pytest.raises(NotFound):
            payment_recorder.record_result(cur, order_id="FULL-NOPE-1", status="SUCCESS", amount=1)

    def test_pending_changes_nothing(self, store, cur, callers, booking):
        payment = _open(cur, callers["customer"], booking["id"], "FULL")["payment"]

        result = payment_recorder.record_result(cur, order_id=payment["order_id"], status="PENDING", amount=None)

        assert result["status"] == "pending"
        assert store.payments[payment["id"]]["status"] == "PENDING"

    @pytest.mark.parametrize("status", ["FAILED", "EXPIRED"])
    def test_closed_without_settlement(self, store, cur, callers, booking, status):
        payment = _open(cur, callers["customer"], booking["id"], "FULL")["payment"]

        result = payment_recorder.record_result(cur, order_id=payment["order_id"], status=status, amount=1_000_000)

        assert result["status"] == status.lower()
        assert store.payments[payment["id"]]["status"] == status
        assert store.bookings[booking["id"]]["status"] == "UNPAID"
        assert store.entries == []

    def test_late_payment_on_cancelled_booking_still_booked(self, store, cur, callers, booking, operator_id):
        payment = _open(cur, callers["customer"], booking["id"], "FULL")["payment"]
        booking_engine.cancel_booking(cur, callers["customer"], booking["id"])

        result = payment_recorder.record_result(
            cur, order_id=payment["order_id"], status="SUCCESS", amount=1_000_000
        )

        assert result["status"] == "success"
        assert store.bookings[booking["id"]]["status"] == "CANCELLED"
        assert _sales_balance(cur, operator_id) == 1_000_000
