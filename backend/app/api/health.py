import time

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from backend.app.db.repo.configs_repo import get_default_config
from backend.app.db.session import get_db

router = APIRouter()


@router.get("/health")
def health():
    """Constant-time health check; touches neither the config store nor providers."""
    return {"status": "healthy"}


@router.get("/health/deep")
def health_deep(request: Request, db: Session = Depends(get_db)):
    """Config store connectivity plus whether chat turns will hit a real provider."""
    start_time = time.time()
    try:
        db.execute(text("SELECT 1")).scalar()
        default = get_default_config(db)
    except Exception:
        raise HTTPException(
            status_code=503,
            detail={"code": "DEEP_HEALTH_FAILED", "message": "Config store unavailable"},
        )
    latency_ms = (time.time() - start_time) * 1000
    return {
        "status": "healthy",
        "config_store": {"ok": True, "latency_ms": round(latency_ms, 2)},
        "default_provider": default.kind if default else None,
        "demo_mode": default is None,
        "provider_kinds": [kind.value for kind in request.app.state.registry.kinds()],
    }
