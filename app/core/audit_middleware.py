import logging
import time
from datetime import datetime, timezone
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy import select
from app.models.audit import AuditLog
from app.models.user import User
from app.core.security import decode_token

logger = logging.getLogger(__name__)

def lookup_user_id(session_factory, email):
    with session_factory() as db:
        return db.scalar(select(User.id).where(User.email == email))

class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        session_factory = request.app.state.session_factory
        user_id = None
        auth = request.headers.get("authorization")
        if auth and auth.startswith("Bearer "):
            try:
                payload = decode_token(auth.split(" ", 1)[1])
            except Exception:
                payload = {}
            email = payload.get("sub")
            if email:
                try:
                    user_id = lookup_user_id(session_factory, email)
                except Exception:
                    logger.warning("Could not resolve audit user for %s %s", request.method, request.url.path,
                                   exc_info=True)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - started) * 1000)

        try:
            with session_factory() as db:
                db.add(AuditLog(
                    user_id=user_id,
                    method=request.method,
                    path=request.url.path,
                    query=request.url.query[:1024] if request.url.query else None,
                    status_code=response.status_code,
                    ip=(request.client.host if request.client else None),
                    user_agent=(request.headers.get("user-agent") or "")[:255],
                    duration_ms=duration_ms,
                    created_at=datetime.now(timezone.utc),
                ))
                db.commit()
        except Exception:
            logger.warning("Failed to write audit row for %s %s", request.method, request.url.path, exc_info=True)

        return response
