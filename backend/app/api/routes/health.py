from fastapi import APIRouter, Request

from app.config import settings
from app.core.observability import uptime_seconds, utc_now_iso

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Healthcheck")
def healthcheck(request: Request):
    """Liveness check; keep the payload stable for monitoring systems."""

    services = getattr(request.app.state, "offer_services", None)
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "time": utc_now_iso(),
        "uptime_seconds": round(uptime_seconds(), 2),
        "version": getattr(settings, "build_version", None),
        "offer_services": services is not None,
        "realtime_enabled": bool(services.realtime_enabled) if services is not None else None,
    }
