"""Keeps achievement documents and their references paired across two stores.

The document store (MongoDB) is the source of truth for content; the
reference store (PostgreSQL) is the source of truth for ownership and
status. There is no transaction spanning both, so every two-write sequence
is ordered so that a failure halfway leaves the safer inconsistency:

* create writes the document first, then the reference. If the reference
  write fails the document is deleted again. If that compensating delete
  fails too, an orphan document remains and is reported on the
  ``app.consistency`` logger for the reconciliation sweep.
* delete tombstones the reference first, then soft-deletes the document.
  If the second write fails the document stays visible to audit reads
  only, and the mismatch is reported the same way.

Neither sequence has a suspension point between its two writes.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, NamedTuple, Sequence

from app.core.errors import (
    AchievementError,
    DocumentMissing,
    InvalidArgument,
    InvalidState,
    NotFound,
    ReferenceCreateFailed,
)
from app.core.logging import consistency_logger
from app.models.achievement import AchievementReference, AchievementStatus, AchievementStatusHistory
from app.schemas.achievement import (
    AchievementDocument,
    AchievementPatch,
    Attachment,
    AttachmentIn,
)
from app.services.document_store import DocumentStore
from app.services.reference_store import ReferenceStore
from app.services.scoring import parse_type, score

logger = logging.getLogger(__name__)
alarms = consistency_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AchievementRecord(NamedTuple):
    document: AchievementDocument
    reference: AchievementReference


class AchievementCoordinator:
    def __init__(
        self,
        documents: DocumentStore,
        references: ReferenceStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.documents = documents
        self.references = references
        self.clock = clock

    # -- create ---------------------------------------------------------

    def create(
        self,
        owner_student_id: int,
        type: str,
        title: str,
        description: str = "",
        raw_details: dict[str, Any] | None = None,
        attachments: Sequence[AttachmentIn] = (),
        tags: Sequence[str] = (),
        achieved_date: date | None = None,
        created_by: int | None = None,
    ) -> AchievementRecord:
        achievement_type = parse_type(type)
        if not title or not title.strip():
            raise InvalidArgument("Title is required")

        scored = score(achievement_type, raw_details)
        now = self.clock()
        document = AchievementDocument(
            owner_student_id=owner_student_id,
            type=achievement_type,
            title=title.strip(),
            description=description or "",
            details=scored.details,
            attachments=[Attachment(**a.model_dump(), uploaded_at=now) for a in attachments],
            tags=list(tags),
            achieved_date=achieved_date,
            points=scored.points,
            created_at=now,
            updated_at=now,
        )

        # Nothing to compensate if this first write fails.
        document_id = self.documents.insert(document)

        try:
            reference = self.references.create(owner_student_id, document_id, created_by=created_by)
        except AchievementError as exc:
            self._compensate_create(document_id, owner_student_id)
            raise ReferenceCreateFailed() from exc

        logger.info(
            "Created achievement reference=%s document=%s student=%s points=%s",
            reference.id, document_id, owner_student_id, document.points,
        )
        return AchievementRecord(document.model_copy(update={"document_id": document_id}), reference)

    def _compensate_create(self, document_id: str, owner_student_id: int) -> None:
        try:
            deleted = self.documents.delete(document_id)
        except Exception:
            # The caller still receives ReferenceCreateFailed; the orphan is left for reconciliation.
            alarms.critical(
                "Orphan achievement document %s: reference create failed and compensating delete raised",
                document_id,
                exc_info=True,
                extra={"document_id": document_id, "student_id": owner_student_id},
            )
            return
        if not deleted:
            alarms.critical(
                "Orphan achievement document %s: compensating delete matched nothing",
                document_id,
                extra={"document_id": document_id, "student_id": owner_student_id},
            )
            return
        logger.warning("Rolled back achievement document %s after reference create failed", document_id)

    # -- reads ------------------------------------------------------------

    def reference(self, reference_id: int) -> AchievementReference:
        ref = self.references.get(reference_id)
        if ref is None or ref.status == AchievementStatus.deleted:
            raise NotFound()
        return ref

    def _document_for(self, ref: AchievementReference, include_deleted: bool = False) -> AchievementDocument:
        document = self.documents.get(ref.document_id, include_deleted=include_deleted)
        if document is None:
            alarms.critical(
                "Achievement reference %s points at missing document %s",
                ref.id, ref.document_id,
                extra={"reference_id": ref.id, "document_id": ref.document_id},
            )
            raise DocumentMissing()
        if document.owner_student_id != ref.student_id:
            alarms.critical(
                "Achievement reference %s (student %s) points at document %s owned by student %s",
                ref.id, ref.student_id, ref.document_id, document.owner_student_id,
                extra={"reference_id": ref.id, "document_id": ref.document_id},
            )
            raise DocumentMissing("Achievement content does not match its reference")
        return document

    def get(self, reference_id: int) -> AchievementRecord:
        ref = self.reference(reference_id)
        return AchievementRecord(self._document_for(ref), ref)

    def list_records(
        self,
        student_ids: Iterable[int] | None = None,
        status: AchievementStatus | None = None,
        include_deleted: bool = False,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[AchievementRecord], int]:
        refs, total = self.references.list_references(
            student_ids=student_ids,
            status=status,
            include_deleted=include_deleted,
            offset=offset,
            limit=limit,
        )
        records = []
        for ref in refs:
            try:
                document = self._document_for(ref, include_deleted=ref.status == AchievementStatus.deleted)
            except DocumentMissing:
                # Already alarmed; one broken pair must not hide the rest of the page.
                continue
            records.append(AchievementRecord(document, ref))
        return records, total

    def history(self, reference_id: int) -> tuple[AchievementReference, list[AchievementStatusHistory]]:
        ref = self.references.get(reference_id)
        if ref is None:
            raise NotFound()
        return ref, self.references.history(reference_id)

    # -- draft edits --------------------------------------------------------

    def _draft(self, reference_id: int) -> AchievementRecord:
        record = self.get(reference_id)
        if record.reference.status != AchievementStatus.draft:
            raise InvalidState(
                f"Only draft achievements can be changed; this one is {record.reference.status.value}"
            )
        return record

    def update(self, reference_id: int, patch: AchievementPatch) -> AchievementRecord:
        document, ref = self._draft(reference_id)
        sent = patch.model_fields_set

        changes: dict[str, Any] = {}
        if "type" in sent and patch.type is not None and parse_type(patch.type) != document.type:
            raise InvalidArgument("Achievement type cannot be changed after creation")
        if "title" in sent and patch.title is not None:
            if not patch.title.strip():
                raise InvalidArgument("Title is required")
            changes["title"] = patch.title.strip()
        if "description" in sent and patch.description is not None:
            changes["description"] = patch.description
        if "tags" in sent and patch.tags is not None:
            changes["tags"] = list(patch.tags)
        if "achieved_date" in sent:
            changes["achieved_date"] = patch.achieved_date
        if "details" in sent and patch.details is not None:
            scored = score(document.type, patch.details)
            changes["details"] = scored.details
            changes["points"] = scored.points

        if changes and not self.documents.update(ref.document_id, changes):
            alarms.critical(
                "Achievement document %s vanished during update of reference %s",
                ref.document_id, ref.id,
                extra={"reference_id": ref.id, "document_id": ref.document_id},
            )
            raise DocumentMissing()

        for attachment in patch.attachments or []:
            self._append(ref, Attachment(**attachment.model_dump(), uploaded_at=self.clock()))

        return self.get(reference_id)

    def add_attachment(self, reference_id: int, attachment: AttachmentIn) -> AchievementRecord:
        _, ref = self._draft(reference_id)
        self._append(ref, Attachment(**attachment.model_dump(), uploaded_at=self.clock()))
        return self.get(reference_id)

    def _append(self, ref: AchievementReference, attachment: Attachment) -> None:
        if not self.documents.append_attachment(ref.document_id, attachment):
            alarms.critical(
                "Achievement document %s vanished while attaching to reference %s",
                ref.document_id, ref.id,
                extra={"reference_id": ref.id, "document_id": ref.document_id},
            )
            raise DocumentMissing()

    # -- delete -----------------------------------------------------------

    def delete(self, reference_id: int, changed_by: int | None = None) -> AchievementReference:
        ref = self.reference(reference_id)
        if ref.status != AchievementStatus.draft:
            raise InvalidState(f"Only draft achievements can be deleted; this one is {ref.status.value}")

        ref = self.references.transition(
            reference_id,
            AchievementStatus.draft,
            AchievementStatus.deleted,
            changed_by=changed_by,
        )

        try:
            soft_deleted = self.documents.soft_delete(ref.document_id, self.clock())
        except AchievementError:
            alarms.critical(
                "Achievement reference %s is tombstoned but document %s is still live",
                ref.id, ref.document_id,
                exc_info=True,
                extra={"reference_id": ref.id, "document_id": ref.document_id},
            )
            return ref
        if not soft_deleted:
            alarms.critical(
                "Achievement reference %s tombstoned; document %s was not found to soft-delete",
                ref.id, ref.document_id,
                extra={"reference_id": ref.id, "document_id": ref.document_id},
            )
        logger.info("Deleted achievement reference=%s document=%s", ref.id, ref.document_id)
        return ref

    # -- status -------------------------------------------------------------

    def transition(
        self,
        reference_id: int,
        expected: AchievementStatus,
        new: AchievementStatus,
        changed_by: int | None = None,
        note: str | None = None,
        **values: Any,
    ) -> AchievementReference:
        return self.references.transition(reference_id, expected, new, changed_by=changed_by, note=note, **values)
