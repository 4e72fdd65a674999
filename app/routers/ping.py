import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from app.core.deps import get_db
from app.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ping", tags=["health"])

@router.get("")
def ping():
    return "pong"

@router.get("/stores")
def ping_stores(request: Request, db: Session = Depends(get_db)):
    checks = {"references": "ok", "documents": "ok"}
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Reference store health check failed", exc_info=True)
        checks["references"] = "unavailable"

    try:
        request.app.state.document_store.ping()
    except StoreUnavailable:
        checks["documents"] = "unavailable"

    healthy = all(v == "ok" for v in checks.values())
    return JSONResponse(status_code=200 if healthy else 503, content=checks)
