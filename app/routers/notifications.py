from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.core.deps import Pagination, get_current_user, get_db, require_permission
from app.models.user import User
from app.schemas.notification import MarkedReadOut, NotificationOut, NotificationPage, UnreadCountOut
from app.services.notifier import NotificationService

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
    dependencies=[Depends(require_permission("notifications:read"))],
)


@router.get("", response_model=NotificationPage)
def list_notifications(
    pagination: Pagination = Depends(),
    me: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items, total = NotificationService(db).list_for(me.id, offset=pagination.offset, limit=pagination.limit)
    return NotificationPage(
        items=[NotificationOut.model_validate(n) for n in items],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
    )


@router.get("/unread", response_model=list[NotificationOut])
def unread_notifications(me: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [NotificationOut.model_validate(n) for n in NotificationService(db).unread_for(me.id)]


@router.get("/unread/count", response_model=UnreadCountOut)
def unread_count(me: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return UnreadCountOut(count=NotificationService(db).unread_count(me.id))


@router.post("/read-all", response_model=MarkedReadOut)
def mark_all_read(me: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return MarkedReadOut(updated=NotificationService(db).mark_all_read(me.id))


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_read(notification_id: int, me: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return NotificationOut.model_validate(NotificationService(db).mark_read(me.id, notification_id))
