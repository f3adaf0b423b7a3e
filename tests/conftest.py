"""Shared pytest fixtures for Neolease tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_oidc_jwks_cache():
    """Reset the process-wide JWKS cache to avoid cross-test contamination.

    The cache outlives a single test; a JWKS cached by one test would not
    match the keys generated by the next one.
    """
    from neolease.api.auth import jwks_cache

    jwks_cache.clear()
    yield
    jwks_cache.clear()


@pytest.fixture
def fake_user():
    """An authenticated end user as resolved by get_current_user."""
    from neolease.api.auth import CurrentUser

    return CurrentUser(
        id="11111111-1111-1111-1111-111111111111",
        external_subject="user-123",
        email="renter@example.com",
        name="Test Renter",
        role="user",
    )


@pytest.fixture
def as_user():
    """Patch token verification and user lookup for a given CurrentUser.

    Usage:
        with as_user(fake_user):
            client.get(..., headers=AUTH_HEADER)
    """
    from contextlib import contextmanager
    from unittest.mock import patch

    @contextmanager
    def _as(user):
        with patch("neolease.api.auth.verify_token", return_value=user.external_subject), \
             patch("neolease.api.auth._load_user", return_value=user):
            yield user

    return _as
