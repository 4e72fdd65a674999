import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.errors import StoreUnavailable
from app.models.student import Lecturer, Student

logger = logging.getLogger(__name__)


class StudentDirectory:
    """Student/advisor lookups.

    Keeps the two identities apart: a student's ``advisor_id`` is a
    ``lecturers.id``, while actors are identified by ``users.id``.
    """

    def __init__(self, db: Session):
        self.db = db

    @classmethod
    @contextmanager
    def open(cls, session_factory: Callable[[], Session]) -> Iterator["StudentDirectory"]:
        with session_factory() as db:
            yield cls(db)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError:
            logger.exception("Directory %s failed", operation)
            self.db.rollback()
            raise StoreUnavailable("Student directory is unavailable") from None

    def get_student(self, student_id: int) -> Student | None:
        with self._guard("get_student"):
            return self.db.get(Student, student_id)

    def resolve_owner(self, student_id: int) -> int | None:
        with self._guard("resolve_owner"):
            return self.db.scalar(select(Student.user_id).where(Student.id == student_id))

    def resolve_advisor(self, student_id: int) -> int | None:
        with self._guard("resolve_advisor"):
            return self.db.scalar(select(Student.advisor_id).where(Student.id == student_id))

    def student_name(self, student_id: int) -> str | None:
        with self._guard("student_name"):
            student = self.db.get(Student, student_id)
            return student.user.full_name if student and student.user else None

    def student_for_user(self, user_id: int) -> Student | None:
        with self._guard("student_for_user"):
            return self.db.scalar(select(Student).where(Student.user_id == user_id))

    def lecturer_for_user(self, user_id: int) -> Lecturer | None:
        with self._guard("lecturer_for_user"):
            return self.db.scalar(select(Lecturer).where(Lecturer.user_id == user_id))

    def advisor_user_id(self, lecturer_id: int) -> int | None:
        with self._guard("advisor_user_id"):
            return self.db.scalar(select(Lecturer.user_id).where(Lecturer.id == lecturer_id))

    def roster(self, lecturer_id: int) -> list[Student]:
        with self._guard("roster"):
            return list(self.db.scalars(
                select(Student)
                .options(selectinload(Student.user))
                .where(Student.advisor_id == lecturer_id)
                .order_by(Student.id)
            ).all())
