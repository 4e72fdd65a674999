import functools
import os
import tempfile
from copy import deepcopy
from datetime import datetime, timezone

import pytest

# Set environment variables before importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="achievements-media-"))

from bson import ObjectId
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.errors import StoreUnavailable
from app.db.tables import create_tables, drop_tables
from app.models.role import ROLE_ADMIN, ROLE_LECTURER, ROLE_STUDENT
from app.models.student import Lecturer, Student
from app.schemas.achievement import AchievementDocument, Attachment
import app.seed as seed
from app.seed import ensure_roles, ensure_user
from app.services.achievement_coordinator import AchievementCoordinator
from app.services.authorization import Actor, AuthorizationGuard
from app.services.directory import StudentDirectory
from app.services.reference_store import ReferenceStore
from app.services.verification_workflow import VerificationWorkflow

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


class InMemoryDocumentStore:
    """Dict-backed document store. ``fail`` maps an operation name to the exception it raises."""

    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.fail: dict[str, Exception] = {}
        self.calls: list[str] = []

    def _check(self, operation: str):
        self.calls.append(operation)
        if operation in self.fail:
            raise self.fail[operation]

    def insert(self, document: AchievementDocument) -> str:
        self._check("insert")
        document_id = str(ObjectId())
        self.docs[document_id] = document.model_dump(exclude={"document_id"})
        return document_id

    def get(self, document_id, include_deleted=False):
        self._check("get")
        data = self.docs.get(document_id)
        if data is None or (data["soft_deleted"] and not include_deleted):
            return None
        return AchievementDocument.model_validate({**deepcopy(data), "document_id": document_id})

    def _live(self, document_id):
        data = self.docs.get(document_id)
        return data if data is not None and not data["soft_deleted"] else None

    def update(self, document_id, fields) -> bool:
        self._check("update")
        data = self._live(document_id)
        if data is None:
            return False
        for key, value in fields.items():
            data[key] = value.model_dump() if hasattr(value, "model_dump") else deepcopy(value)
        data["updated_at"] = datetime.now(timezone.utc)
        return True

    def append_attachment(self, document_id, attachment: Attachment) -> bool:
        self._check("append_attachment")
        data = self._live(document_id)
        if data is None:
            return False
        data["attachments"].append(attachment.model_dump())
        return True

    def soft_delete(self, document_id, deleted_at) -> bool:
        self._check("soft_delete")
        data = self.docs.get(document_id)
        if data is None:
            return False
        data.update(soft_deleted=True, deleted_at=deleted_at, updated_at=deleted_at)
        return True

    def delete(self, document_id) -> bool:
        self._check("delete")
        return self.docs.pop(document_id, None) is not None

    def ping(self) -> bool:
        self._check("ping")
        return True


class FailingReferenceStore(ReferenceStore):
    def create(self, student_id, document_id, created_by=None):
        raise StoreUnavailable("Achievement reference store is unavailable")


class RecordingNotifier:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail: Exception | None = None

    def enqueue(self, user_id, type, title, message, payload=None):
        if self.fail is not None:
            raise self.fail
        self.sent.append({"user_id": user_id, "type": type, "title": title, "message": message, "payload": payload})


@pytest.fixture(scope="session", autouse=True)
def fast_password_hashing():
    """Hash each distinct test password once."""
    cached = functools.lru_cache(maxsize=None)(seed.hash_password)
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(seed, "hash_password", cached)
        yield


@pytest.fixture
def db():
    create_tables(engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_tables(engine)


@pytest.fixture
def people(db):
    """Admin, a lecturer advising ``alice``, another lecturer and two students."""
    roles = ensure_roles(db)
    admin = ensure_user(db, roles, "admin@university.edu", "Admin123!", "Admin", ROLE_ADMIN)
    lect_user = ensure_user(db, roles, "lecturer@university.edu", "Lecturer123!", "Maria Sidorova", ROLE_LECTURER)
    other_lect_user = ensure_user(db, roles, "other@university.edu", "Lecturer123!", "Ivan Petrov", ROLE_LECTURER)
    alice_user = ensure_user(db, roles, "alice@university.edu", "Student123!", "Alice", ROLE_STUDENT)
    bob_user = ensure_user(db, roles, "bob@university.edu", "Student123!", "Bob", ROLE_STUDENT)

    # Offset lecturer ids from user ids so the two identities cannot be confused.
    filler = ensure_user(db, roles, "filler@university.edu", "Filler123!", "Filler", ROLE_LECTURER)
    db.add(Lecturer(id=40, user_id=filler.id, lecturer_number="LEC000"))
    lecturer = Lecturer(id=41, user_id=lect_user.id, lecturer_number="LEC001", department="CS")
    other_lecturer = Lecturer(id=42, user_id=other_lect_user.id, lecturer_number="LEC002")
    db.add_all([lecturer, other_lecturer])
    db.flush()

    alice = Student(id=7, user_id=alice_user.id, student_number="STU001", program="IS", advisor_id=lecturer.id)
    bob = Student(id=8, user_id=bob_user.id, student_number="STU002", program="AM", advisor_id=other_lecturer.id)
    db.add_all([alice, bob])
    db.commit()

    def actor(user, *role_names, permissions=()):
        return Actor(id=user.id, roles=frozenset(role_names), permissions=frozenset(permissions))

    class People:
        pass

    p = People()
    p.admin_user, p.lecturer_user, p.other_lecturer_user = admin, lect_user, other_lect_user
    p.alice_user, p.bob_user = alice_user, bob_user
    p.lecturer, p.other_lecturer = lecturer, other_lecturer
    p.alice, p.bob = alice, bob
    p.admin = actor(admin, ROLE_ADMIN)
    p.advisor = actor(lect_user, ROLE_LECTURER)
    p.stranger_lecturer = actor(other_lect_user, ROLE_LECTURER)
    p.alice_actor = actor(alice_user, ROLE_STUDENT)
    p.bob_actor = actor(bob_user, ROLE_STUDENT)
    return p


@pytest.fixture
def documents():
    return InMemoryDocumentStore()


@pytest.fixture
def coordinator(db, documents):
    return AchievementCoordinator(documents, ReferenceStore(db))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def workflow(db, coordinator, notifier):
    directory = StudentDirectory(db)
    return VerificationWorkflow(
        coordinator=coordinator,
        guard=AuthorizationGuard(directory),
        directory=directory,
        notifier=notifier,
    )


@pytest.fixture
def failing_coordinator(db, documents):
    """Coordinator whose reference writes always fail."""
    return AchievementCoordinator(documents, FailingReferenceStore(db))


@pytest.fixture
def session_factory(db):
    return TestSessionLocal
