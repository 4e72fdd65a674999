"""Reference store adapter: status-bearing achievement rows in PostgreSQL."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import InvalidState, NotFound, StoreUnavailable
from app.models.achievement import (
    AchievementReference,
    AchievementStatus,
    AchievementStatusHistory,
    TRANSITIONS,
)

logger = logging.getLogger(__name__)


class ReferenceStore:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str, reference_id: int | None = None) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError:
            logger.exception("Reference store %s failed (reference_id=%s)", operation, reference_id)
            self.db.rollback()
            raise StoreUnavailable("Achievement reference store is unavailable") from None

    def create(self, student_id: int, document_id: str, created_by: int | None = None) -> AchievementReference:
        with self._guard("create"):
            ref = AchievementReference(
                student_id=student_id,
                document_id=document_id,
                status=AchievementStatus.draft,
                rejection_note="",
            )
            self.db.add(ref)
            self.db.flush()
            self.db.add(AchievementStatusHistory(
                reference_id=ref.id,
                old_status=None,
                new_status=AchievementStatus.draft,
                changed_by=created_by,
            ))
            self.db.commit()
            self.db.refresh(ref)
        return ref

    def get(self, reference_id: int) -> AchievementReference | None:
        with self._guard("get", reference_id):
            ref = self.db.get(AchievementReference, reference_id)
            if ref is not None:
                self.db.refresh(ref)
        return ref

    def transition(
        self,
        reference_id: int,
        expected: AchievementStatus,
        new: AchievementStatus,
        changed_by: int | None = None,
        note: str | None = None,
        **values: Any,
    ) -> AchievementReference:
        """Move a reference from ``expected`` to ``new`` in one conditional UPDATE.

        The status precondition is evaluated by the database at write time, so
        of two concurrent callers only one can win; the other sees InvalidState.
        The history row is committed in the same transaction.
        """
        if new not in TRANSITIONS[expected]:
            raise InvalidState(f"Cannot move an achievement from {expected.value} to {new.value}")

        with self._guard("transition", reference_id):
            result = self.db.execute(
                update(AchievementReference)
                .where(
                    AchievementReference.id == reference_id,
                    AchievementReference.status == expected,
                )
                .values(status=new, updated_at=datetime.now(timezone.utc), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                current = self.db.get(AchievementReference, reference_id)
                if current is None:
                    raise NotFound()
                self.db.refresh(current)
                raise InvalidState(
                    f"Achievement is {current.status.value}; expected {expected.value}"
                )

            self.db.add(AchievementStatusHistory(
                reference_id=reference_id,
                old_status=expected,
                new_status=new,
                changed_by=changed_by,
                note=note,
            ))
            self.db.commit()

            ref = self.db.get(AchievementReference, reference_id)
            self.db.refresh(ref)
        return ref

    def list_references(
        self,
        student_ids: Iterable[int] | None = None,
        status: AchievementStatus | None = None,
        include_deleted: bool = False,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[AchievementReference], int]:
        conditions = []
        if student_ids is not None:
            conditions.append(AchievementReference.student_id.in_(list(student_ids)))
        if status is not None:
            conditions.append(AchievementReference.status == status)
        elif not include_deleted:
            conditions.append(AchievementReference.status != AchievementStatus.deleted)

        with self._guard("list"):
            total = self.db.scalar(
                select(func.count()).select_from(AchievementReference).where(*conditions)
            ) or 0
            refs = self.db.scalars(
                select(AchievementReference)
                .where(*conditions)
                .order_by(AchievementReference.created_at.desc(), AchievementReference.id.asc())
                .offset(offset)
                .limit(limit)
            ).all()
        return list(refs), total

    def history(self, reference_id: int) -> list[AchievementStatusHistory]:
        with self._guard("history", reference_id):
            return list(self.db.scalars(
                select(AchievementStatusHistory)
                .where(AchievementStatusHistory.reference_id == reference_id)
                .order_by(AchievementStatusHistory.id.asc())
            ).all())
