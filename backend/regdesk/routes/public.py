# /regdesk/routes/public.py

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from datetime import datetime

from regdesk.config.settings import settings
from regdesk.utils.dependencies import verify_api_key
from regdesk.services.session_store import session_store

# Health checks, the root endpoint, and the Prometheus metrics endpoint
# (protected by the API key when one is configured).

router = APIRouter()

@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Registration Desk WhatsApp Intake",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment
    }

@router.get("/health", summary="Basic Health Check")
async def health_check():
    """Basic health check for load balancers."""
    return {"status": "healthy", "timestamp": datetime.utcnow()}

@router.get("/health/ready", summary="Readiness Probe")
async def readiness_check():
    """Readiness check: the session backend must answer."""
    try:
        if not await session_store.ping():
            raise RuntimeError("session backend did not answer ping")
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Service not ready: {e}")
    return {"status": "ready", "session_backend": settings.session_backend}

@router.get("/health/live", summary="Liveness Probe")
async def liveness_check():
    """Liveness check."""
    return {"status": "alive"}

@router.get("/metrics", tags=["Monitoring"])
async def metrics(request: Request, _: bool = Depends(verify_api_key)):
    """Secured Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
