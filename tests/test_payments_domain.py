"""Tests for gateway order creation (repositories and gateway mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from helpers import fake_txn, payment_row
from neolease.domain.order_state import OrderRef
from neolease.domain.payments import create_payment_order, receipt_for
from neolease.errors import (
    GatewayError,
    InvalidStateError,
    OrderNotFoundError,
    ValidationFailedError,
)

USER_ID = "11111111-1111-1111-1111-111111111111"
ORDER_ID = "33333333-3333-3333-3333-333333333333"
REF = OrderRef.of("rental", ORDER_ID)


@pytest.fixture
def env():
    _txn, cur = fake_txn()
    gateway = MagicMock()
    gateway.key_id = "rzp_test_key"
    gateway.create_order.return_value = {"id": "order_NEW", "amount": 150000, "currency": "INR"}
    with patch("neolease.domain.payments.txn", _txn), \
         patch("neolease.domain.payments.orders_repo") as orders_repo, \
         patch("neolease.domain.payments.payments_repo") as payments_repo:
        orders_repo.lock_order.return_value = {
            "id": ORDER_ID, "user_id": USER_ID, "status": "draft", "payment_id": None,
        }
        orders_repo.get_order_summary.return_value = {
            "id": ORDER_ID, "user_id": USER_ID, "status": "draft", "total_cents": 150000,
        }
        payments_repo.get_pending_payment_for_order.return_value = None
        payments_repo.insert_payment.return_value = "44444444-4444-4444-4444-444444444444"
        yield MagicMock(cur=cur, gateway=gateway, orders=orders_repo, payments=payments_repo)


def _create(env, user_id=USER_ID):
    return create_payment_order(user_id, REF, gateway=env.gateway)


class TestCreatePaymentOrder:
    def test_creates_pending_payment_and_gateway_order(self, env):
        result = _create(env)

        assert result == {
            "payment_id": "44444444-4444-4444-4444-444444444444",
            "provider_order_id": "order_NEW",
            "amount_cents": 150000,
            "currency": "INR",
            "key_id": "rzp_test_key",
            "reused": False,
        }
        env.payments.insert_payment.assert_called_once_with(
            env.cur,
            user_id=USER_ID,
            order_kind="rental",
            order_id=ORDER_ID,
            amount_cents=150000,
            currency="INR",
        )
        gateway_kwargs = env.gateway.create_order.call_args.kwargs
        assert gateway_kwargs["receipt"] == "rcpt_44444444444444444444444444444444"
        assert gateway_kwargs["notes"]["order_kind"] == "rental"
        env.payments.set_provider_order_id.assert_called_once_with(
            env.cur, "44444444-4444-4444-4444-444444444444", "order_NEW"
        )

    def test_amount_comes_from_order_total(self, env):
        env.orders.get_order_summary.return_value["total_cents"] = 99900
        assert _create(env)["amount_cents"] == 99900
        assert env.gateway.create_order.call_args.kwargs["amount_cents"] == 99900

    def test_reuses_pending_payment(self, env):
        env.payments.get_pending_payment_for_order.return_value = payment_row(
            id="existing", provider_order_id="order_OLD"
        )
        result = _create(env)
        assert result["reused"] is True
        assert result["provider_order_id"] == "order_OLD"
        env.gateway.create_order.assert_not_called()
        env.payments.insert_payment.assert_not_called()

    def test_stale_pending_payment_not_reused(self, env):
        env.payments.get_pending_payment_for_order.return_value = payment_row(amount_cents=1)
        assert _create(env)["reused"] is False

    def test_gateway_failure_deletes_local_record(self, env):
        env.gateway.create_order.side_effect = GatewayError("Payment gateway unavailable")
        with pytest.raises(GatewayError):
            _create(env)
        env.payments.delete_payment.assert_called_once_with(
            env.cur, "44444444-4444-4444-4444-444444444444"
        )
        env.payments.set_provider_order_id.assert_not_called()

    def test_other_users_order(self, env):
        with pytest.raises(OrderNotFoundError):
            _create(env, user_id="someone-else")
        env.payments.insert_payment.assert_not_called()

    def test_missing_order(self, env):
        env.orders.lock_order.return_value = None
        with pytest.raises(OrderNotFoundError):
            _create(env)

    def test_order_must_be_draft(self, env):
        env.orders.lock_order.return_value["status"] = "confirmed"
        with pytest.raises(InvalidStateError):
            _create(env)

    def test_zero_total_rejected(self, env):
        env.orders.get_order_summary.return_value["total_cents"] = 0
        with pytest.raises(ValidationFailedError):
            _create(env)


def test_receipt_is_deterministic_and_short():
    payment_id = "44444444-4444-4444-4444-444444444444"
    assert receipt_for(payment_id) == receipt_for(payment_id)
    assert len(receipt_for(payment_id)) <= 40
