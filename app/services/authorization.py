from dataclasses import dataclass, field
from enum import Enum

from app.core.errors import Forbidden
from app.models.role import ROLE_ADMIN, ROLE_LECTURER, ROLE_STUDENT
from app.services.directory import StudentDirectory

# Holding this permission makes an actor an administrator for achievement purposes.
ADMIN_PERMISSION = "achievements:verify_all"


class Relation(str, Enum):
    owner = "owner"
    advisor = "advisor"
    admin = "admin"


@dataclass(frozen=True)
class Actor:
    id: int
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, name: str) -> bool:
        return name in self.roles

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles or ADMIN_PERMISSION in self.permissions

    @property
    def role(self) -> str | None:
        for name in (ROLE_ADMIN, ROLE_LECTURER, ROLE_STUDENT):
            if name in self.roles:
                return name
        return next(iter(sorted(self.roles)), None)


class AuthorizationGuard:
    """Decides whether an actor may act on a student's achievements.

    Nothing is cached: every check re-reads the current relationships.
    """

    def __init__(self, directory: StudentDirectory):
        self.directory = directory

    def can_act(self, actor: Actor, relation: Relation, target_student_id: int) -> bool:
        if actor.is_admin:
            return True
        if relation is Relation.owner:
            owner = self.directory.resolve_owner(target_student_id)
            return owner is not None and owner == actor.id
        if relation is Relation.advisor:
            if not actor.has_role(ROLE_LECTURER):
                return False
            lecturer = self.directory.lecturer_for_user(actor.id)
            if lecturer is None:
                return False
            advisor_id = self.directory.resolve_advisor(target_student_id)
            return advisor_id is not None and advisor_id == lecturer.id
        return False

    def require(self, actor: Actor, target_student_id: int, *relations: Relation, message: str | None = None) -> None:
        if not any(self.can_act(actor, relation, target_student_id) for relation in relations):
            raise Forbidden(message or "You are not allowed to act on this achievement")
