import logging
from contextlib import contextmanager
from datetime import datetime, timezone

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from app.core.errors import Forbidden, InvalidArgument, InvalidState, NotFound, StoreUnavailable
from app.models.achievement import AchievementReference, AchievementStatus
from app.models.notification import NotificationType
from app.schemas.achievement import AchievementPatch, AttachmentIn
from app.services.directory import StudentDirectory


@pytest.fixture
def draft(workflow, people):
    record = workflow.create(
        people.alice_actor,
        type="competition",
        title="ACM ICPC regional",
        details={"competition_level": "international", "rank": 1},
    )
    return record.reference


@pytest.fixture
def submitted(workflow, people, draft, notifier):
    workflow.submit(draft.id, people.alice_actor)
    notifier.sent.clear()
    return draft


def test_student_creates_own_draft(workflow, people):
    document, reference = workflow.create(
        people.alice_actor,
        type="competition",
        title="Olympiad",
        details={"competition_level": "international", "rank": 1},
    )
    assert document.points == 400
    assert reference.status == AchievementStatus.draft
    assert reference.student_id == people.alice.id


def test_student_cannot_create_for_someone_else(workflow, people, documents):
    with pytest.raises(Forbidden):
        workflow.create(people.bob_actor, type="other", title="Not mine", student_id=people.alice.id)
    assert documents.calls == []


def test_admin_creates_on_behalf_of_student(workflow, people):
    _, reference = workflow.create(people.admin, type="other", title="Dean's list", student_id=people.bob.id)
    assert reference.student_id == people.bob.id


def test_lecturer_without_student_record_cannot_create(workflow, people):
    with pytest.raises(Forbidden):
        workflow.create(people.advisor, type="other", title="Mine")


def test_submit_notifies_advisor(workflow, people, draft, notifier):
    ref = workflow.submit(draft.id, people.alice_actor)
    assert ref.status == AchievementStatus.submitted
    assert ref.submitted_at is not None
    assert len(notifier.sent) == 1
    sent = notifier.sent[0]
    assert sent["user_id"] == people.lecturer_user.id
    assert sent["type"] == NotificationType.achievement_submitted
    assert sent["payload"]["achievement_id"] == draft.id


def test_submit_without_advisor_sends_nothing(db, workflow, people, draft, notifier):
    people.alice.advisor_id = None
    db.commit()
    workflow.submit(draft.id, people.alice_actor)
    assert notifier.sent == []


def test_only_owner_submits(workflow, people, draft):
    with pytest.raises(Forbidden):
        workflow.submit(draft.id, people.advisor)
    with pytest.raises(Forbidden):
        workflow.submit(draft.id, people.bob_actor)


def test_submit_twice_is_invalid_state(workflow, people, submitted):
    with pytest.raises(InvalidState):
        workflow.submit(submitted.id, people.alice_actor)


def test_unrelated_advisor_cannot_verify(workflow, people, submitted, coordinator):
    with pytest.raises(Forbidden):
        workflow.verify(submitted.id, people.stranger_lecturer)
    assert coordinator.reference(submitted.id).status == AchievementStatus.submitted


def test_assigned_advisor_verifies(workflow, people, submitted, notifier):
    ref = workflow.verify(submitted.id, people.advisor, comments="Well done")
    assert ref.status == AchievementStatus.verified
    assert ref.verified_by == people.lecturer_user.id
    assert ref.verified_at is not None
    assert [(n["user_id"], n["type"]) for n in notifier.sent] == [
        (people.alice_user.id, NotificationType.achievement_verified)
    ]


def test_second_verify_fails_and_changes_nothing(workflow, people, submitted, coordinator):
    first = workflow.verify(submitted.id, people.advisor)
    verified_at, verified_by = first.verified_at, first.verified_by
    with pytest.raises(InvalidState):
        workflow.verify(submitted.id, people.admin)
    ref = coordinator.reference(submitted.id)
    assert (ref.verified_at, ref.verified_by) == (verified_at, verified_by)


def test_admin_verifies_any_submission(workflow, people, submitted):
    assert workflow.verify(submitted.id, people.admin).verified_by == people.admin_user.id


def test_verify_draft_is_invalid_state(workflow, people, draft):
    with pytest.raises(InvalidState):
        workflow.verify(draft.id, people.advisor)


def test_reject_requires_note(workflow, people, submitted, coordinator):
    with pytest.raises(InvalidArgument):
        workflow.reject(submitted.id, people.advisor, "")
    with pytest.raises(InvalidArgument):
        workflow.reject(submitted.id, people.advisor, "   ")
    assert coordinator.reference(submitted.id).status == AchievementStatus.submitted

    ref = workflow.reject(submitted.id, people.advisor, "missing certificate")
    assert ref.status == AchievementStatus.rejected
    assert ref.rejection_note == "missing certificate"
    assert ref.verified_by == people.lecturer_user.id


def test_rejected_is_terminal(workflow, people, submitted):
    workflow.reject(submitted.id, people.advisor, "missing certificate")
    with pytest.raises(InvalidState):
        workflow.verify(submitted.id, people.advisor)
    with pytest.raises(InvalidState):
        workflow.edit(submitted.id, people.alice_actor, AchievementPatch(title="Try again"))


def test_rejection_notifies_student_with_reason(workflow, people, submitted, notifier):
    workflow.reject(submitted.id, people.advisor, "missing certificate")
    assert notifier.sent[0]["type"] == NotificationType.achievement_rejected
    assert "missing certificate" in notifier.sent[0]["message"]


def test_notifier_failure_never_fails_transition(workflow, people, draft, notifier, caplog):
    notifier.fail = RuntimeError("smtp down")
    with caplog.at_level(logging.WARNING):
        ref = workflow.submit(draft.id, people.alice_actor)
    assert ref.status == AchievementStatus.submitted
    assert any(r.levelno == logging.WARNING and "notification" in r.getMessage() for r in caplog.records)


def test_scheduler_failure_never_fails_transition(workflow, people, draft):
    def broken_schedule(*args, **kwargs):
        raise RuntimeError("queue full")

    workflow.schedule = broken_schedule
    assert workflow.submit(draft.id, people.alice_actor).status == AchievementStatus.submitted


def test_history_records_every_transition(workflow, people, submitted):
    workflow.verify(submitted.id, people.advisor, comments="ok")
    _, rows = workflow.history(submitted.id, people.alice_actor)
    assert [(r.old_status, r.new_status) for r in rows] == [
        (None, AchievementStatus.draft),
        (AchievementStatus.draft, AchievementStatus.submitted),
        (AchievementStatus.submitted, AchievementStatus.verified),
    ]
    assert rows[-1].changed_by == people.lecturer_user.id
    assert rows[-1].note == "ok"


def test_unrelated_actors_are_forbidden_and_write_nothing(workflow, people, draft, documents, coordinator, notifier):
    calls_before = list(documents.calls)
    attempts = [
        lambda: workflow.edit(draft.id, people.bob_actor, AchievementPatch(title="x")),
        lambda: workflow.attach(draft.id, people.bob_actor, AttachmentIn(filename="a.pdf", url="/a.pdf")),
        lambda: workflow.remove(draft.id, people.bob_actor),
        lambda: workflow.submit(draft.id, people.bob_actor),
        lambda: workflow.submit(draft.id, people.stranger_lecturer),
        lambda: workflow.verify(draft.id, people.bob_actor),
        lambda: workflow.reject(draft.id, people.stranger_lecturer, "no"),
        lambda: workflow.view(draft.id, people.stranger_lecturer),
    ]
    for attempt in attempts:
        with pytest.raises(Forbidden):
            attempt()

    writes = {"insert", "update", "append_attachment", "soft_delete", "delete"}
    assert not writes & set(documents.calls[len(calls_before):])
    _, rows = coordinator.history(draft.id)
    assert len(rows) == 1
    assert coordinator.reference(draft.id).status == AchievementStatus.draft
    assert notifier.sent == []


def test_advisor_can_view_but_not_edit(workflow, people, draft):
    document, _ = workflow.view(draft.id, people.advisor)
    assert document.title == "ACM ICPC regional"
    with pytest.raises(Forbidden):
        workflow.edit(draft.id, people.advisor, AchievementPatch(title="x"))


def test_owner_deletes_draft(workflow, people, draft):
    assert workflow.remove(draft.id, people.alice_actor).status == AchievementStatus.deleted
    with pytest.raises(NotFound):
        workflow.view(draft.id, people.alice_actor)


def test_advisee_queue_lists_only_own_submitted(workflow, people, submitted):
    workflow.create(people.alice_actor, type="other", title="Still a draft")
    bob_record = workflow.create(people.bob_actor, type="other", title="Bob's")
    workflow.submit(bob_record.reference.id, people.bob_actor)

    items, total = workflow.advisee_queue(people.advisor)
    assert total == 1
    assert items[0].record.reference.id == submitted.id
    assert items[0].student.id == people.alice.id

    items, total = workflow.advisee_queue(people.stranger_lecturer)
    assert [i.record.reference.id for i in items] == [bob_record.reference.id]


def test_advisee_queue_requires_lecturer(workflow, people):
    with pytest.raises(Forbidden):
        workflow.advisee_queue(people.alice_actor)


def test_listings(workflow, people, draft):
    workflow.create(people.bob_actor, type="other", title="Bob's")
    records, total = workflow.list_own(people.alice_actor)
    assert total == 1 and records[0].reference.id == draft.id

    _, total = workflow.list_all(people.admin)
    assert total == 2
    with pytest.raises(Forbidden):
        workflow.list_all(people.advisor)


def _unreachable(*args, **kwargs):
    raise OperationalError("SELECT students", {}, Exception("connection refused"))


def test_advisor_lookup_failure_after_submit_is_only_logged(workflow, people, draft, notifier, coordinator,
                                                            monkeypatch, caplog):
    monkeypatch.setattr(workflow.directory, "resolve_advisor", _unreachable)
    with caplog.at_level(logging.WARNING):
        ref = workflow.submit(draft.id, people.alice_actor)
    assert ref.status == AchievementStatus.submitted
    assert coordinator.reference(draft.id).status == AchievementStatus.submitted
    assert notifier.sent == []
    assert any("notification" in r.getMessage() for r in caplog.records if r.levelno == logging.WARNING)


def test_owner_lookup_failure_after_verify_is_only_logged(workflow, people, submitted, notifier, monkeypatch):
    # The admin passes the guard without touching the directory.
    monkeypatch.setattr(workflow.directory, "resolve_owner", _unreachable)
    ref = workflow.verify(submitted.id, people.admin)
    assert ref.status == AchievementStatus.verified
    assert notifier.sent == []


def test_recipients_are_resolved_through_their_own_directory(db, workflow, people, draft, notifier):
    opened = []

    @contextmanager
    def recipients():
        opened.append(True)
        yield StudentDirectory(db)

    workflow.recipients = recipients
    workflow.submit(draft.id, people.alice_actor)
    assert opened == [True]
    assert notifier.sent[0]["payload"]["student_name"] == "Alice"


def test_directory_outage_before_a_write_is_store_unavailable(workflow, people, draft, coordinator, monkeypatch):
    monkeypatch.setattr(workflow.directory.db, "scalar", _unreachable)
    with pytest.raises(StoreUnavailable) as excinfo:
        workflow.submit(draft.id, people.alice_actor)
    assert "connection refused" not in str(excinfo.value)
    monkeypatch.undo()
    assert coordinator.reference(draft.id).status == AchievementStatus.draft


def test_advisee_queue_breaks_created_at_ties_by_id(db, workflow, people):
    refs = []
    for title in ("First", "Second", "Third"):
        ref = workflow.create(people.alice_actor, type="other", title=title).reference
        workflow.submit(ref.id, people.alice_actor)
        refs.append(ref)
    db.execute(
        update(AchievementReference)
        .where(AchievementReference.id.in_([r.id for r in refs]))
        .values(created_at=datetime(2024, 6, 1, tzinfo=timezone.utc))
    )
    db.commit()

    items, total = workflow.get_advisee_queue(people.lecturer.id)
    assert total == 3
    assert [i.record.reference.id for i in items] == sorted(r.id for r in refs)
