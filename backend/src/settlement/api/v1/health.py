"""Health check endpoints."""
import time

from fastapi import APIRouter, status

from settlement import __version__
from settlement.config import settings

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict:
    """
    Liveness probe.

    Does not check external dependencies.
    """
    return {
        "status": "healthy",
        "service": "settlement",
        "provider": f"PayPal {settings.paypal_mode}",
        "timestamp": int(time.time() * 1000),
        "version": __version__,
    }
