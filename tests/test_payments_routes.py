"""Tests for /payments routes (auth and domain calls mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from helpers import AUTH_HEADER, payment_row
from neolease.api.factory import create_app
from neolease.domain.order_state import OrderKind, OrderRef
from neolease.errors import (
    AlreadyRefundedError,
    DuplicateCaptureError,
    GatewayError,
    PaymentAlreadyVerifiedError,
    PaymentVerificationFailedError,
)

ORDER_ID = "33333333-3333-3333-3333-333333333333"
PAYMENT_ID = "22222222-2222-2222-2222-222222222222"


@pytest.fixture
def client():
    return TestClient(create_app(role="public"))


@pytest.fixture
def gateway():
    gw = MagicMock()
    with patch("neolease.api.routes.payments._get_gateway", return_value=gw):
        yield gw


class TestCreatePaymentOrderRoute:
    def test_requires_auth(self, client):
        response = client.post("/payments/orders", json={"order_type": "rental", "order_id": ORDER_ID})
        assert response.status_code == 401

    def test_creates_order(self, client, gateway, as_user, fake_user):
        created = {
            "payment_id": "pay-local-1",
            "provider_order_id": "order_1",
            "amount_cents": 150000,
            "currency": "INR",
            "key_id": "rzp_test_key",
            "reused": False,
        }
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.payments.create_payment_order", return_value=created
        ) as create:
            response = client.post(
                "/payments/orders",
                json={"order_type": "rental", "order_id": ORDER_ID},
                headers=AUTH_HEADER,
            )

        assert response.status_code == 201
        assert response.json() == created
        args, kwargs = create.call_args
        assert args == (fake_user.id, OrderRef(OrderKind.RENTAL, ORDER_ID))
        assert kwargs["gateway"] is gateway
        assert kwargs["currency"] == "INR"

    def test_amount_is_not_accepted_from_client(self, client, gateway, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.payments.create_payment_order", return_value={}
        ) as create:
            client.post(
                "/payments/orders",
                json={"order_type": "booking", "order_id": ORDER_ID, "amount_cents": 1},
                headers=AUTH_HEADER,
            )
        assert "amount_cents" not in create.call_args.kwargs

    def test_unknown_order_type_is_422(self, client, gateway, as_user, fake_user):
        with as_user(fake_user):
            response = client.post(
                "/payments/orders",
                json={"order_type": "subscription", "order_id": ORDER_ID},
                headers=AUTH_HEADER,
            )
        assert response.status_code == 422

    def test_gateway_error_is_502(self, client, gateway, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.payments.create_payment_order",
            side_effect=GatewayError("Payment gateway unavailable"),
        ):
            response = client.post(
                "/payments/orders",
                json={"order_type": "rental", "order_id": ORDER_ID},
                headers=AUTH_HEADER,
            )
        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "GATEWAY_ERROR"

    def test_unconfigured_gateway_is_500(self, client, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments._get_gateway", side_effect=RuntimeError("no creds")
        ):
            response = client.post(
                "/payments/orders",
                json={"order_type": "rental", "order_id": ORDER_ID},
                headers=AUTH_HEADER,
            )
        assert response.status_code == 500


class TestVerifyRoute:
    BODY = {
        "provider_order_id": "order_1",
        "provider_payment_id": "pay_1",
        "provider_signature": "abc123",
    }

    @pytest.fixture(autouse=True)
    def _key_secret(self, monkeypatch):
        monkeypatch.setenv("RAZORPAY_KEY_SECRET", "rzp_test_key_secret")

    def test_verified(self, client, as_user, fake_user):
        verified = {
            "verified": True,
            "payment": payment_row(status="completed"),
            "order_type": "rental",
            "rental_order_id": ORDER_ID,
            "order_transition": "transitioned",
        }
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.reconciliation.verify_client_payment",
            return_value=verified,
        ) as verify:
            response = client.post("/payments/verify", json=self.BODY, headers=AUTH_HEADER)

        assert response.status_code == 200
        assert response.json()["verified"] is True
        assert verify.call_args.kwargs["key_secret"] == "rzp_test_key_secret"
        assert verify.call_args.args == (fake_user.id,)

    def test_signature_mismatch(self, client, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.reconciliation.verify_client_payment",
            side_effect=PaymentVerificationFailedError(),
        ):
            response = client.post("/payments/verify", json=self.BODY, headers=AUTH_HEADER)
        assert response.status_code == 400
        assert response.json()["detail"] == {
            "code": "PAYMENT_VERIFICATION_FAILED",
            "message": "Invalid payment signature",
        }

    def test_already_verified(self, client, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.reconciliation.verify_client_payment",
            side_effect=PaymentAlreadyVerifiedError("pay-local-1"),
        ):
            response = client.post("/payments/verify", json=self.BODY, headers=AUTH_HEADER)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "PAYMENT_ALREADY_VERIFIED"

    def test_duplicate_capture_is_409_with_issue(self, client, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.reconciliation.verify_client_payment",
            side_effect=DuplicateCaptureError("pay-local-1", "issue-1"),
        ):
            response = client.post("/payments/verify", json=self.BODY, headers=AUTH_HEADER)
        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "DUPLICATE_CAPTURE"
        assert detail["issue_id"] == "issue-1"

    def test_missing_field_is_422(self, client, as_user, fake_user):
        with as_user(fake_user):
            response = client.post(
                "/payments/verify",
                json={"provider_order_id": "order_1"},
                headers=AUTH_HEADER,
            )
        assert response.status_code == 422

    def test_missing_key_secret_is_500(self, client, as_user, fake_user, monkeypatch):
        monkeypatch.delenv("RAZORPAY_KEY_SECRET")
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.reconciliation.verify_client_payment"
        ) as verify:
            response = client.post("/payments/verify", json=self.BODY, headers=AUTH_HEADER)
        assert response.status_code == 500
        verify.assert_not_called()


class TestRefundRoute:
    def test_refund(self, client, gateway, as_user, fake_user):
        refund = payment_row(id="refund-1", amount_cents=-150000, status="refunded")
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.refunds.refund_payment", return_value=refund
        ) as refund_payment:
            response = client.post(
                "/payments/refunds",
                json={"payment_id": PAYMENT_ID, "amount_cents": 5000, "reason": "rain"},
                headers=AUTH_HEADER,
            )
        assert response.status_code == 201
        assert response.json()["amount_cents"] == -150000
        kwargs = refund_payment.call_args.kwargs
        assert kwargs["actor"] == fake_user.actor
        assert kwargs["amount_cents"] == 5000
        assert kwargs["reason"] == "rain"
        assert refund_payment.call_args.args == (PAYMENT_ID,)

    def test_already_refunded(self, client, gateway, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.refunds.refund_payment",
            side_effect=AlreadyRefundedError("Payment already refunded"),
        ):
            response = client.post(
                "/payments/refunds", json={"payment_id": PAYMENT_ID}, headers=AUTH_HEADER
            )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "ALREADY_REFUNDED"


class TestGetPaymentRoute:
    def test_found(self, client, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.payments.get_payment", return_value=payment_row()
        ) as get_payment:
            response = client.get(f"/payments/{PAYMENT_ID}", headers=AUTH_HEADER)
        assert response.status_code == 200
        get_payment.assert_called_once_with(
            PAYMENT_ID, viewer_id=fake_user.id, viewer_role="user"
        )

    def test_not_visible(self, client, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.payments.get_payment", return_value=None
        ):
            response = client.get(f"/payments/{PAYMENT_ID}", headers=AUTH_HEADER)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "PAYMENT_NOT_FOUND"

    def test_malformed_id_is_422(self, client, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.payments.get_payment"
        ) as get_payment:
            response = client.get("/payments/not-a-uuid", headers=AUTH_HEADER)
        assert response.status_code == 422
        get_payment.assert_not_called()


class TestMalformedIds:
    def test_order_id_must_be_uuid(self, client, gateway, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.payments.create_payment_order"
        ) as create:
            response = client.post(
                "/payments/orders",
                json={"order_type": "rental", "order_id": "not-a-uuid"},
                headers=AUTH_HEADER,
            )
        assert response.status_code == 422
        create.assert_not_called()

    def test_refund_payment_id_must_be_uuid(self, client, gateway, as_user, fake_user):
        with as_user(fake_user), patch(
            "neolease.api.routes.payments.refunds.refund_payment"
        ) as refund_payment:
            response = client.post(
                "/payments/refunds", json={"payment_id": "pay-local-1"}, headers=AUTH_HEADER
            )
        assert response.status_code == 422
        refund_payment.assert_not_called()
