import logging
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def enqueue(
        self,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        payload: dict[str, Any] | None = None,
    ) -> None: ...


class DatabaseNotifier:
    """Stores notifications in their own session.

    Delivery runs after the response has been sent, when the request session
    is already closed, so it must never borrow it.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def enqueue(self, user_id, type, title, message, payload=None) -> None:
        with self._session_factory() as db:
            db.add(Notification(
                user_id=user_id,
                type=NotificationType(type),
                title=title,
                message=message,
                payload=payload or {},
                is_read=False,
            ))
            db.commit()
        logger.info("Notification %s queued for user %s", NotificationType(type).value, user_id)


class NotificationService:
    def __init__(self, db: Session):
        self.db = db

    def list_for(self, user_id: int, offset: int = 0, limit: int = 10) -> tuple[list[Notification], int]:
        total = self.db.scalar(
            select(func.count()).select_from(Notification).where(Notification.user_id == user_id)
        ) or 0
        items = self.db.scalars(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
        ).all()
        return list(items), total

    def unread_for(self, user_id: int) -> list[Notification]:
        return list(self.db.scalars(
            select(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        ).all())

    def unread_count(self, user_id: int) -> int:
        return self.db.scalar(
            select(func.count()).select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        ) or 0

    def mark_read(self, user_id: int, notification_id: int) -> Notification:
        item = self.db.get(Notification, notification_id)
        if item is None or item.user_id != user_id:
            raise NotFound("Notification not found")
        if not item.is_read:
            item.is_read = True
            item.read_at = datetime.now(timezone.utc)
            self.db.commit()
            self.db.refresh(item)
        return item

    def mark_all_read(self, user_id: int) -> int:
        result = self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount
