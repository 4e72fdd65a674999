import pytest

from app.core.errors import Forbidden
from app.models.role import ROLE_LECTURER, ROLE_STUDENT
from app.services.authorization import ADMIN_PERMISSION, Actor, AuthorizationGuard, Relation
from app.services.directory import StudentDirectory


@pytest.fixture
def guard(db):
    return AuthorizationGuard(StudentDirectory(db))


def test_owner_relation(guard, people):
    assert guard.can_act(people.alice_actor, Relation.owner, people.alice.id)
    assert not guard.can_act(people.bob_actor, Relation.owner, people.alice.id)


def test_advisor_is_matched_by_lecturer_record_not_user_id(guard, people):
    assert people.lecturer.id != people.lecturer_user.id
    assert guard.can_act(people.advisor, Relation.advisor, people.alice.id)
    assert not guard.can_act(people.stranger_lecturer, Relation.advisor, people.alice.id)


def test_advisor_relation_requires_lecturer_role(guard, people):
    without_role = Actor(id=people.lecturer_user.id, roles=frozenset({ROLE_STUDENT}))
    assert not guard.can_act(without_role, Relation.advisor, people.alice.id)


def test_admin_can_do_anything(guard, people):
    for relation in Relation:
        assert guard.can_act(people.admin, relation, people.alice.id)


def test_verify_all_permission_counts_as_admin(guard, people):
    delegate = Actor(id=people.other_lecturer_user.id, roles=frozenset({ROLE_LECTURER}),
                     permissions=frozenset({ADMIN_PERMISSION}))
    assert delegate.is_admin
    assert guard.can_act(delegate, Relation.advisor, people.alice.id)


def test_unknown_student_denies_everyone_but_admin(guard, people):
    assert not guard.can_act(people.alice_actor, Relation.owner, 999)
    assert not guard.can_act(people.advisor, Relation.advisor, 999)
    assert guard.can_act(people.admin, Relation.owner, 999)


def test_advisor_change_takes_effect_immediately(db, guard, people):
    assert guard.can_act(people.advisor, Relation.advisor, people.alice.id)
    people.alice.advisor_id = people.other_lecturer.id
    db.commit()
    assert not guard.can_act(people.advisor, Relation.advisor, people.alice.id)
    assert guard.can_act(people.stranger_lecturer, Relation.advisor, people.alice.id)


def test_require_raises_forbidden(guard, people):
    with pytest.raises(Forbidden):
        guard.require(people.bob_actor, people.alice.id, Relation.owner, Relation.advisor)
    guard.require(people.alice_actor, people.alice.id, Relation.owner, Relation.advisor)


def test_role_precedence_for_display():
    actor = Actor(id=1, roles=frozenset({ROLE_STUDENT, ROLE_LECTURER}))
    assert actor.role == ROLE_LECTURER
    assert Actor(id=2).role is None
