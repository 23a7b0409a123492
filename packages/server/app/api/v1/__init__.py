"""
API v1 Router

Actors authenticate with a bearer JWT; the payment callback and sweep
trigger use shared-secret headers instead.
"""

from fastapi import APIRouter
from . import documents, fulfillers, maintenance, payments, requests

router = APIRouter()

router.include_router(requests.router, prefix="/requests", tags=["Requests"])
router.include_router(
    documents.request_documents_router,
    prefix="/requests/{request_id}/documents",
    tags=["Documents"],
)
router.include_router(documents.router, prefix="/documents", tags=["Documents"])
router.include_router(fulfillers.router, prefix="/fulfillers", tags=["Fulfillers"])
router.include_router(payments.router, prefix="/payments", tags=["Payments"])
router.include_router(maintenance.router, prefix="/maintenance", tags=["Maintenance"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/requests",
            "/requests/nearby",
            "/requests/{requestId}/claim",
            "/requests/{requestId}/transition",
            "/requests/{requestId}/documents",
            "/documents/{documentId}/download-grant",
            "/fulfillers/me/location",
            "/fulfillers/nearby",
            "/payments/callback",
            "/maintenance/sweep",
        ],
    }
