"""Translation of domain errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException

from neolease.errors import DomainError
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

logger = get_logger(__name__)


def to_http(exc: DomainError, *, correlation_id: str | None = None) -> HTTPException:
    """HTTPException carrying the error's stable code and message."""
    logger.info(
        "domain error",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                code=exc.code,
                http_status=exc.http_status,
            )
        },
    )
    return HTTPException(status_code=exc.http_status, detail=exc.to_detail())
