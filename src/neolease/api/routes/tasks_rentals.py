"""Worker routes for rental sweeps."""

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from neolease.api.task_auth import verify_task_auth
from neolease.domain.orders import mark_overdue_rentals
from neolease.observability.correlation import get_correlation_id
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/rentals", tags=["tasks"])

logger = get_logger(__name__)


@router.post("/mark-overdue")
def handle_mark_overdue(request: Request) -> JSONResponse:
    """Move active rentals past their end date to overdue.

    Safe to call repeatedly: rentals already overdue are no longer candidates.
    """
    correlation_id = get_correlation_id()

    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    counts = mark_overdue_rentals(correlation_id=correlation_id)

    logger.info(
        "overdue sweep finished",
        extra={"extra_fields": safe_log_context(correlationId=correlation_id, **counts)},
    )
    return JSONResponse(status_code=200, content={"ok": True, **counts})
