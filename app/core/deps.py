from functools import partial

from fastapi import BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from sqlalchemy import select
from app.core.config import settings
from app.core.security import decode_token
from app.models.user import User
from app.models.role import Permission, Role, user_roles, role_permissions
from app.services.achievement_coordinator import AchievementCoordinator
from app.services.authorization import Actor, AuthorizationGuard
from app.services.directory import StudentDirectory
from app.services.document_store import DocumentStore
from app.services.notifier import DatabaseNotifier
from app.services.reference_store import ReferenceStore
from app.services.verification_workflow import VerificationWorkflow

bearer = HTTPBearer()

def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()

def get_current_user(creds: HTTPAuthorizationCredentials = Depends(bearer),
                     db: Session = Depends(get_db)) -> User:
    token = creds.credentials
    try:
        payload = decode_token(token)
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    email = payload.get("sub")
    user = db.scalar(select(User).where(User.email == email))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user

def load_actor(user: User, db: Session) -> Actor:
    role_names = db.scalars(
        select(Role.name)
        .join(user_roles, user_roles.c.role_id == Role.id)
        .where(user_roles.c.user_id == user.id)
    ).all()
    codes = db.scalars(
        select(Permission.code)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .join(user_roles, user_roles.c.role_id == role_permissions.c.role_id)
        .where(user_roles.c.user_id == user.id)
    ).all()
    return Actor(id=user.id, roles=frozenset(role_names), permissions=frozenset(codes))

def get_actor(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Actor:
    return load_actor(user, db)

def require_permission(code: str):
    def checker(actor: Actor = Depends(get_actor)):
        if actor.is_admin:
            return True
        if code not in actor.permissions:
            raise HTTPException(status_code=403, detail=f"Forbidden: {code}")
        return True
    return checker

class Pagination:
    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(settings.PAGE_SIZE_DEFAULT, ge=1, le=settings.PAGE_SIZE_MAX),
    ):
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.document_store

def get_directory(db: Session = Depends(get_db)) -> StudentDirectory:
    return StudentDirectory(db)

def get_coordinator(db: Session = Depends(get_db),
                    documents: DocumentStore = Depends(get_document_store)) -> AchievementCoordinator:
    return AchievementCoordinator(documents, ReferenceStore(db))

def get_workflow(request: Request,
                 background: BackgroundTasks,
                 coordinator: AchievementCoordinator = Depends(get_coordinator),
                 directory: StudentDirectory = Depends(get_directory)) -> VerificationWorkflow:
    return VerificationWorkflow(
        coordinator=coordinator,
        guard=AuthorizationGuard(directory),
        directory=directory,
        notifier=DatabaseNotifier(request.app.state.session_factory),
        schedule=background.add_task,
        recipients=partial(StudentDirectory.open, request.app.state.session_factory),
    )
