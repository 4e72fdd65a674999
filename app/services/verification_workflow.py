"""Achievement lifecycle: draft -> submitted -> verified | rejected, draft -> deleted.

Every entry point authorizes before it touches a store, checks the status
precondition, then lets the reference store apply the transition
conditionally. Notifications are handed to ``schedule`` and are never
allowed to fail or slow down a transition.
"""
import logging
from contextlib import nullcontext
from datetime import date, datetime, timezone
from typing import Any, Callable, ContextManager, NamedTuple, Sequence

from app.core.errors import Forbidden, InvalidArgument, InvalidState
from app.models.achievement import AchievementReference, AchievementStatus, AchievementStatusHistory
from app.models.notification import NotificationType
from app.models.role import ROLE_LECTURER
from app.models.student import Student
from app.schemas.achievement import AchievementPatch, AttachmentIn
from app.services.achievement_coordinator import AchievementCoordinator, AchievementRecord
from app.services.authorization import Actor, AuthorizationGuard, Relation
from app.services.directory import StudentDirectory
from app.services.notifier import Notifier

logger = logging.getLogger(__name__)

Scheduler = Callable[..., Any]


def run_inline(func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    func(*args, **kwargs)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueItem(NamedTuple):
    record: AchievementRecord
    student: Student


class Notice(NamedTuple):
    user_id: int
    type: NotificationType
    title: str
    message: str
    payload: dict[str, Any]


class VerificationWorkflow:
    """Authorized achievement operations.

    ``recipients`` opens the directory used to address notifications. Over
    HTTP delivery runs after the response, so it gets a session of its own;
    by default the request directory is reused.
    """

    def __init__(
        self,
        coordinator: AchievementCoordinator,
        guard: AuthorizationGuard,
        directory: StudentDirectory,
        notifier: Notifier,
        schedule: Scheduler = run_inline,
        clock: Callable[[], datetime] = utcnow,
        recipients: Callable[[], ContextManager[StudentDirectory]] | None = None,
    ):
        self.coordinator = coordinator
        self.guard = guard
        self.directory = directory
        self.notifier = notifier
        self.schedule = schedule
        self.clock = clock
        self.recipients = recipients or (lambda: nullcontext(self.directory))

    # -- owner operations -----------------------------------------------

    def create(
        self,
        actor: Actor,
        type: str,
        title: str,
        description: str = "",
        details: dict[str, Any] | None = None,
        attachments: Sequence[AttachmentIn] = (),
        tags: Sequence[str] = (),
        achieved_date: date | None = None,
        student_id: int | None = None,
    ) -> AchievementRecord:
        if student_id is None:
            student = self.directory.student_for_user(actor.id)
            if student is None:
                raise Forbidden("Only students can create achievements")
            student_id = student.id
        elif self.directory.get_student(student_id) is None:
            raise InvalidArgument(f"Student {student_id} does not exist")

        self.guard.require(actor, student_id, Relation.owner,
                           message="You can only create achievements for yourself")
        return self.coordinator.create(
            owner_student_id=student_id,
            type=type,
            title=title,
            description=description,
            raw_details=details,
            attachments=attachments,
            tags=tags,
            achieved_date=achieved_date,
            created_by=actor.id,
        )

    def view(self, reference_id: int, actor: Actor) -> AchievementRecord:
        ref = self.coordinator.reference(reference_id)
        self.guard.require(actor, ref.student_id, Relation.owner, Relation.advisor)
        return self.coordinator.get(reference_id)

    def edit(self, reference_id: int, actor: Actor, patch: AchievementPatch) -> AchievementRecord:
        ref = self.coordinator.reference(reference_id)
        self.guard.require(actor, ref.student_id, Relation.owner,
                           message="You can only edit your own achievements")
        return self.coordinator.update(reference_id, patch)

    def upload_target(self, reference_id: int, actor: Actor) -> AchievementReference:
        """Checks that ``actor`` may attach a file before any bytes are stored."""
        ref = self.coordinator.reference(reference_id)
        self.guard.require(actor, ref.student_id, Relation.owner,
                           message="You can only upload attachments to your own achievements")
        self._expect(ref, AchievementStatus.draft)
        return ref

    def attach(self, reference_id: int, actor: Actor, attachment: AttachmentIn) -> AchievementRecord:
        ref = self.coordinator.reference(reference_id)
        self.guard.require(actor, ref.student_id, Relation.owner,
                           message="You can only upload attachments to your own achievements")
        return self.coordinator.add_attachment(reference_id, attachment)

    def remove(self, reference_id: int, actor: Actor) -> AchievementReference:
        ref = self.coordinator.reference(reference_id)
        self.guard.require(actor, ref.student_id, Relation.owner,
                           message="You can only delete your own achievements")
        return self.coordinator.delete(reference_id, changed_by=actor.id)

    def history(
        self, reference_id: int, actor: Actor
    ) -> tuple[AchievementReference, list[AchievementStatusHistory]]:
        ref, rows = self.coordinator.history(reference_id)
        self.guard.require(actor, ref.student_id, Relation.owner, Relation.advisor)
        return ref, rows

    def list_own(self, actor: Actor, offset: int = 0, limit: int = 10) -> tuple[list[AchievementRecord], int]:
        student = self.directory.student_for_user(actor.id)
        if student is None:
            raise Forbidden("Only students have their own achievements")
        return self.coordinator.list_records(student_ids=[student.id], offset=offset, limit=limit)

    def list_all(
        self,
        actor: Actor,
        status: AchievementStatus | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[AchievementRecord], int]:
        if not actor.is_admin:
            raise Forbidden("Only administrators can list every achievement")
        return self.coordinator.list_records(status=status, offset=offset, limit=limit)

    # -- transitions --------------------------------------------------------

    def submit(self, reference_id: int, actor: Actor) -> AchievementReference:
        document, ref = self.coordinator.get(reference_id)
        self.guard.require(actor, ref.student_id, Relation.owner,
                           message="You can only submit your own achievements")
        self._expect(ref, AchievementStatus.draft)

        ref = self.coordinator.transition(
            reference_id,
            AchievementStatus.draft,
            AchievementStatus.submitted,
            changed_by=actor.id,
            submitted_at=self.clock(),
        )
        logger.info("Achievement %s submitted by user %s", reference_id, actor.id)

        self._notify(self._advisor_notice, ref.id, ref.student_id, document.title)
        return ref

    def verify(self, reference_id: int, actor: Actor, comments: str | None = None) -> AchievementReference:
        document, ref = self.coordinator.get(reference_id)
        self.guard.require(actor, ref.student_id, Relation.advisor,
                           message="You can only verify achievements of your own advisees")
        self._expect(ref, AchievementStatus.submitted)

        ref = self.coordinator.transition(
            reference_id,
            AchievementStatus.submitted,
            AchievementStatus.verified,
            changed_by=actor.id,
            note=comments or None,
            verified_at=self.clock(),
            verified_by=actor.id,
        )
        logger.info("Achievement %s verified by user %s", reference_id, actor.id)

        self._notify(
            self._owner_notice,
            ref.id,
            ref.student_id,
            NotificationType.achievement_verified,
            "Achievement Verified",
            f"Congratulations! Your achievement '{document.title}' has been verified",
            {"achievement_id": ref.id, "verified_by": actor.id, "comments": comments},
        )
        return ref

    def reject(self, reference_id: int, actor: Actor, note: str) -> AchievementReference:
        document, ref = self.coordinator.get(reference_id)
        self.guard.require(actor, ref.student_id, Relation.advisor,
                           message="You can only reject achievements of your own advisees")
        note = (note or "").strip()
        if not note:
            raise InvalidArgument("A rejection note is required")
        self._expect(ref, AchievementStatus.submitted)

        ref = self.coordinator.transition(
            reference_id,
            AchievementStatus.submitted,
            AchievementStatus.rejected,
            changed_by=actor.id,
            note=note,
            verified_at=self.clock(),
            verified_by=actor.id,
            rejection_note=note,
        )
        logger.info("Achievement %s rejected by user %s", reference_id, actor.id)

        self._notify(
            self._owner_notice,
            ref.id,
            ref.student_id,
            NotificationType.achievement_rejected,
            "Achievement Rejected",
            f"Your achievement '{document.title}' has been rejected. Reason: {note}",
            {"achievement_id": ref.id, "rejection_note": note, "verified_by": actor.id},
        )
        return ref

    # -- advisor queue ------------------------------------------------------

    def advisee_queue(self, actor: Actor, offset: int = 0, limit: int = 10) -> tuple[list[QueueItem], int]:
        lecturer = self.directory.lecturer_for_user(actor.id) if actor.has_role(ROLE_LECTURER) else None
        if lecturer is None:
            raise Forbidden("Only lecturers can access advisee achievements")
        return self.get_advisee_queue(lecturer.id, offset=offset, limit=limit)

    def get_advisee_queue(self, advisor_id: int, offset: int = 0, limit: int = 10) -> tuple[list[QueueItem], int]:
        # The roster comes from the directory, never from the client.
        roster = {student.id: student for student in self.directory.roster(advisor_id)}
        if not roster:
            return [], 0
        records, total = self.coordinator.list_records(
            student_ids=roster.keys(),
            status=AchievementStatus.submitted,
            offset=offset,
            limit=limit,
        )
        return [QueueItem(record, roster[record.reference.student_id]) for record in records], total

    # -- helpers --------------------------------------------------------------

    @staticmethod
    def _expect(ref: AchievementReference, status: AchievementStatus) -> None:
        if ref.status != status:
            raise InvalidState(f"Achievement is {ref.status.value}; expected {status.value}")

    # Recipients are resolved at delivery time, after the transition has been
    # committed, so a lookup failure is a delivery failure like any other.

    @staticmethod
    def _advisor_notice(directory: StudentDirectory, reference_id: int, student_id: int, title: str) -> Notice | None:
        advisor_id = directory.resolve_advisor(student_id)
        advisor_user_id = directory.advisor_user_id(advisor_id) if advisor_id is not None else None
        if advisor_user_id is None:
            logger.info("Student %s has no advisor; nobody to notify about achievement %s", student_id, reference_id)
            return None
        student_name = directory.student_name(student_id)
        return Notice(
            advisor_user_id,
            NotificationType.achievement_submitted,
            "New Achievement Submitted",
            f"{student_name or 'A student'} submitted a new achievement: {title}",
            {
                "achievement_id": reference_id,
                "student_id": student_id,
                "student_name": student_name,
            },
        )

    @staticmethod
    def _owner_notice(directory: StudentDirectory, reference_id: int, student_id: int,
                      type, title, message, payload) -> Notice | None:
        owner_user_id = directory.resolve_owner(student_id)
        if owner_user_id is None:
            logger.warning("No user linked to student %s; skipping %s notification", student_id, type.value)
            return None
        return Notice(owner_user_id, type, title, message, payload)

    def _notify(self, compose: Callable[..., Notice | None], reference_id: int, *args: Any) -> None:
        try:
            self.schedule(self._deliver, compose, reference_id, *args)
        except Exception:
            logger.warning("Could not schedule notification for achievement %s", reference_id, exc_info=True)

    def _deliver(self, compose: Callable[..., Notice | None], reference_id: int, *args: Any) -> None:
        try:
            with self.recipients() as directory:
                notice = compose(directory, reference_id, *args)
            if notice is not None:
                self.notifier.enqueue(*notice)
        except Exception:
            logger.warning("Delivering notification for achievement %s failed", reference_id, exc_info=True)
