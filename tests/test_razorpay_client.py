"""Tests for the Razorpay SDK wrapper (no network; SDK client mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests
from razorpay.errors import BadRequestError, ServerError

from neolease.errors import GatewayError
from neolease.razorpay.client import RazorpayClient


@pytest.fixture
def sdk():
    with patch("neolease.razorpay.client.razorpay.Client") as client_cls:
        yield client_cls


@pytest.fixture
def client(sdk):
    return RazorpayClient("rzp_test_key", "rzp_test_secret", timeout=5)


@pytest.fixture(autouse=True)
def _no_sleep():
    with patch("neolease.razorpay.client.time.sleep"):
        yield


class TestConstruction:
    def test_missing_credentials(self, monkeypatch):
        monkeypatch.delenv("RAZORPAY_KEY_ID", raising=False)
        monkeypatch.delenv("RAZORPAY_KEY_SECRET", raising=False)
        with pytest.raises(RuntimeError):
            RazorpayClient()

    def test_reads_environment(self, sdk, monkeypatch):
        monkeypatch.setenv("RAZORPAY_KEY_ID", "rzp_env_key")
        monkeypatch.setenv("RAZORPAY_KEY_SECRET", "rzp_env_secret")
        assert RazorpayClient().key_id == "rzp_env_key"
        sdk.assert_called_once_with(auth=("rzp_env_key", "rzp_env_secret"))


class TestCreateOrder:
    def test_success(self, client, sdk):
        orders = sdk.return_value.order
        orders.create.return_value = {
            "id": "order_1",
            "amount": 150000,
            "currency": "INR",
            "status": "created",
        }

        order = client.create_order(
            amount_cents=150000, currency="inr", receipt="rcpt_abc", notes={"k": "v"}
        )

        assert order == {"id": "order_1", "amount": 150000, "currency": "INR", "status": "created"}
        orders.create.assert_called_once_with(
            data={
                "amount": 150000,
                "currency": "INR",
                "receipt": "rcpt_abc",
                "notes": {"k": "v"},
            },
            timeout=5,
        )

    def test_retries_once_on_timeout_with_same_receipt(self, client, sdk):
        orders = sdk.return_value.order
        orders.create.side_effect = [
            requests.Timeout("slow"),
            {"id": "order_2", "status": "created"},
        ]
        order = client.create_order(amount_cents=100, currency="INR", receipt="rcpt_same")
        assert order["id"] == "order_2"
        assert orders.create.call_count == 2
        receipts = [c.kwargs["data"]["receipt"] for c in orders.create.call_args_list]
        assert receipts == ["rcpt_same", "rcpt_same"]

    def test_gives_up_after_one_retry(self, client, sdk):
        orders = sdk.return_value.order
        orders.create.side_effect = requests.ConnectionError("down")
        with pytest.raises(GatewayError):
            client.create_order(amount_cents=100, currency="INR", receipt="rcpt_x")
        assert orders.create.call_count == 2

    def test_retries_on_server_error(self, client, sdk):
        orders = sdk.return_value.order
        orders.create.side_effect = [ServerError("upstream"), {"id": "order_3"}]
        assert client.create_order(amount_cents=100, currency="INR", receipt="r")["id"] == "order_3"

    def test_bad_request_not_retried(self, client, sdk):
        orders = sdk.return_value.order
        orders.create.side_effect = BadRequestError("amount too small")
        with pytest.raises(GatewayError) as exc_info:
            client.create_order(amount_cents=100, currency="INR", receipt="r")
        assert orders.create.call_count == 1
        assert exc_info.value.http_status == 502


class TestCreateRefund:
    def test_success(self, client, sdk):
        payments = sdk.return_value.payment
        payments.refund.return_value = {"id": "rfnd_1", "amount": 5000, "status": "processed"}

        refund = client.create_refund(provider_payment_id="pay_1", amount_cents=5000)

        assert refund == {"id": "rfnd_1", "amount": 5000, "status": "processed"}
        payments.refund.assert_called_once_with("pay_1", {"amount": 5000}, timeout=5)

    def test_sends_notes(self, client, sdk):
        payments = sdk.return_value.payment
        payments.refund.return_value = {"id": "rfnd_2"}
        client.create_refund(
            provider_payment_id="pay_1", amount_cents=100, notes={"refund_type": "partial"}
        )
        assert payments.refund.call_args.args[1] == {
            "amount": 100,
            "notes": {"refund_type": "partial"},
        }

    def test_rejected_refund_is_gateway_error(self, client, sdk):
        payments = sdk.return_value.payment
        payments.refund.side_effect = BadRequestError("already refunded")
        with pytest.raises(GatewayError):
            client.create_refund(provider_payment_id="pay_1", amount_cents=100)
        assert payments.refund.call_count == 1
