"""Public-facing routes (APP_ROLE=public)."""

from fastapi import APIRouter

from neolease.api.routes import bookings, payments, rentals, webhooks_razorpay

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(rentals.router)
router.include_router(bookings.router)
router.include_router(payments.router)
router.include_router(webhooks_razorpay.router)
