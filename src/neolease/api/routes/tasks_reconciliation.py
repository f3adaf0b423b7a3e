"""Worker routes for payment reconciliation."""

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from neolease.api.task_auth import verify_task_auth
from neolease.domain.reconciliation import retry_open_issues
from neolease.observability.correlation import get_correlation_id
from neolease.observability.logging import get_logger
from neolease.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/reconciliation", tags=["tasks"])

logger = get_logger(__name__)


@router.post("/sweep")
def handle_sweep(request: Request) -> JSONResponse:
    """Retry order transitions for completed payments whose order lagged."""
    correlation_id = get_correlation_id()

    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    counts = retry_open_issues(correlation_id=correlation_id)
    return JSONResponse(status_code=200, content={"ok": True, **counts})
