"""Authentication for worker task routes (scheduled sweeps).

Production callers (Cloud Scheduler / Cloud Tasks) present a Google-signed
OIDC ID token. In local dev (TASKS_OIDC_AUDIENCE == "neolease-tasks-local")
the X-Internal-Task-Secret header is accepted instead.
"""

from __future__ import annotations

import hmac
import os

from fastapi import Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

logger = get_logger(__name__)

LOCAL_DEV_AUDIENCE = "neolease-tasks-local"
INTERNAL_SECRET_HEADER = "X-Internal-Task-Secret"


def _bearer(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):]


def verify_task_oidc(token: str) -> bool:
    """Verify a Google OIDC ID token for the worker audience.

    Fails closed when TASKS_OIDC_AUDIENCE is not configured. If
    TASKS_OIDC_SERVICE_ACCOUNT is set, the token email must match it.
    """
    if not token:
        return False

    audience = os.environ.get("TASKS_OIDC_AUDIENCE")
    if not audience:
        logger.error(
            "TASKS_OIDC_AUDIENCE not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
        )
        return False

    try:
        claims = id_token.verify_oauth2_token(token, google_requests.Request(), audience=audience)
    except ValueError as e:
        logger.warning(
            "task OIDC token verification failed",
            extra={"extra_fields": safe_log_context(error=str(e), expected_audience=audience)},
        )
        return False

    expected_email = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    if expected_email and claims.get("email", "") != expected_email:
        logger.warning(
            "task OIDC service account mismatch",
            extra={"extra_fields": safe_log_context(reason="service_account_mismatch")},
        )
        return False
    return True


def verify_task_auth(request: Request) -> bool:
    """True if the request carries valid worker credentials."""
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") == LOCAL_DEV_AUDIENCE:
        expected = os.environ.get("INTERNAL_TASK_SECRET", "")
        presented = request.headers.get(INTERNAL_SECRET_HEADER, "")
        if expected and hmac.compare_digest(presented, expected):
            return True

    token = _bearer(request)
    if not token:
        logger.warning(
            "task auth failed: missing Bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False
    return verify_task_oidc(token)

