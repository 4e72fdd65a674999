import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import select
from datetime import datetime, timezone

from app.core.deps import get_db, load_actor
from app.core.security import verify_password, create_access_token
from app.schemas.auth import LoginIn, TokenOut
from app.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = db.scalar(select(User).where(User.email == payload.email))
    if not user or not verify_password(payload.password, user.password_hash):
        logger.info("Failed login for %s", payload.email)
        raise HTTPException(status_code=400, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is inactive")
    user.last_login = datetime.now(timezone.utc)
    db.commit()
    actor = load_actor(user, db)
    token = create_access_token(user.email, roles=sorted(actor.roles))
    return TokenOut(access_token=token)
