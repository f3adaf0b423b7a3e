"""Tests for OIDC JWT authentication."""

from __future__ import annotations

import time
from unittest.mock import patch

import pytest
import requests
from fastapi.testclient import TestClient

from helpers import OIDC_ENV, _create_jwks, _create_token, _generate_rsa_keypair, payment_row
from neolease.api.auth import CurrentUser
from neolease.api.factory import create_app

PAYMENT_URL = "/payments/22222222-2222-2222-2222-222222222222"


@pytest.fixture
def rsa_keypair():
    return _generate_rsa_keypair()


@pytest.fixture
def jwks(rsa_keypair):
    _, public_key = rsa_keypair
    return _create_jwks(public_key)


@pytest.fixture
def mock_jwks_fetch(jwks):
    with patch("neolease.api.auth._fetch_jwks", return_value=jwks) as mock:
        yield mock


@pytest.fixture
def mock_db_user():
    """Only subject user-123 exists."""

    def _load(external_subject: str):
        if external_subject == "user-123":
            return CurrentUser(
                id="11111111-1111-1111-1111-111111111111",
                external_subject="user-123",
                email="test@example.com",
                name="Test User",
            )
        return None

    with patch("neolease.api.auth._load_user", side_effect=_load) as mock:
        yield mock


@pytest.fixture
def client():
    with patch.dict("os.environ", OIDC_ENV), patch(
        "neolease.api.routes.payments.payments.get_payment", return_value=payment_row()
    ):
        yield TestClient(create_app(role="public"))


def _get(client, token: str):
    return client.get(PAYMENT_URL, headers={"Authorization": f"Bearer {token}"})


class TestAuthHeader:
    def test_missing_auth_header(self, client):
        response = client.get(PAYMENT_URL)
        assert response.status_code == 401
        assert "Missing authorization header" in response.json()["detail"]

    def test_basic_scheme_rejected(self, client):
        response = client.get(PAYMENT_URL, headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert response.status_code == 401
        assert "Invalid authorization header" in response.json()["detail"]

    def test_malformed_token(self, client, mock_jwks_fetch):
        response = _get(client, "abc")
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"


class TestTokenValidation:
    def test_valid_token(self, client, rsa_keypair, mock_jwks_fetch, mock_db_user):
        private_key, _ = rsa_keypair
        response = _get(client, _create_token(private_key))
        assert response.status_code == 200
        mock_db_user.assert_called_once_with("user-123")

    def test_expired_token(self, client, rsa_keypair, mock_jwks_fetch, mock_db_user):
        private_key, _ = rsa_keypair
        token = _create_token(private_key, exp=int(time.time()) - 60)
        response = _get(client, token)
        assert response.status_code == 401
        assert response.json()["detail"] == "Token expired"

    def test_wrong_issuer(self, client, rsa_keypair, mock_jwks_fetch, mock_db_user):
        private_key, _ = rsa_keypair
        response = _get(client, _create_token(private_key, iss="https://evil.example.com"))
        assert response.status_code == 401

    def test_wrong_audience(self, client, rsa_keypair, mock_jwks_fetch, mock_db_user):
        private_key, _ = rsa_keypair
        response = _get(client, _create_token(private_key, aud="other-api"))
        assert response.status_code == 401

    def test_foreign_signing_key(self, client, mock_jwks_fetch, mock_db_user):
        other_key, _ = _generate_rsa_keypair()
        response = _get(client, _create_token(other_key))
        assert response.status_code == 401
        # Bad signature forces one refresh in case keys rotated.
        assert mock_jwks_fetch.call_count == 2

    def test_unknown_kid_refreshes_once(self, client, rsa_keypair, mock_jwks_fetch, mock_db_user):
        private_key, _ = rsa_keypair
        response = _get(client, _create_token(private_key, kid="rotated-key"))
        assert response.status_code == 401
        assert mock_jwks_fetch.call_count == 2

    def test_jwks_is_cached(self, client, rsa_keypair, mock_jwks_fetch, mock_db_user):
        private_key, _ = rsa_keypair
        token = _create_token(private_key)
        assert _get(client, token).status_code == 200
        assert _get(client, token).status_code == 200
        assert mock_jwks_fetch.call_count == 1

    def test_unauthorized_party(self, client, rsa_keypair, mock_jwks_fetch, mock_db_user):
        private_key, _ = rsa_keypair
        with patch.dict("os.environ", {"OIDC_AUTHORIZED_PARTIES": "https://app.example.com"}):
            response = _get(client, _create_token(private_key, azp="https://evil.example.com"))
        assert response.status_code == 401


class TestUserResolution:
    def test_unknown_user_is_403(self, client, rsa_keypair, mock_jwks_fetch, mock_db_user):
        private_key, _ = rsa_keypair
        response = _get(client, _create_token(private_key, sub="ghost"))
        assert response.status_code == 403
        assert response.json()["detail"] == "User not found"


class TestJwksUnavailable:
    def test_unreachable_jwks_is_503(self, client, rsa_keypair, mock_db_user):
        private_key, _ = rsa_keypair
        with patch(
            "neolease.api.auth._fetch_jwks", side_effect=requests.ConnectionError("down")
        ):
            response = _get(client, _create_token(private_key))
        assert response.status_code == 503

    def test_missing_oidc_config_is_401(self, rsa_keypair):
        private_key, _ = rsa_keypair
        with patch.dict("os.environ", {}, clear=True):
            client = TestClient(create_app(role="public"))
            response = _get(client, _create_token(private_key))
        assert response.status_code == 401
        assert response.json()["detail"] == "OIDC not configured"
