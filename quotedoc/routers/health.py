# quotedoc/routers/health.py
from fastapi import APIRouter

# Kubernetes-style liveness & readiness endpoints.
router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
def live():
    """Liveness probe. No dependency checks here."""
    return {"status": "ok"}


@router.get("/ready")
def ready():
    """Readiness probe. The engine has no external dependencies to wait for."""
    return {"status": "ok"}
