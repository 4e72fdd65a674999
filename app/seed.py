import logging

from sqlalchemy.orm import Session
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.db.session import SessionLocal, engine
from app.db.tables import create_tables
from app.core.logging import setup_logging
from app.core.security import hash_password

from app.models.role import Role, Permission, role_permissions, user_roles, ROLE_ADMIN, ROLE_LECTURER, ROLE_STUDENT
from app.models.user import User
from app.models.student import Lecturer, Student

logger = logging.getLogger(__name__)

PERMS = [
    "achievements:create", "achievements:read", "achievements:update", "achievements:delete",
    "achievements:verify", "achievements:verify_all",
    "notifications:read",
]

ROLES = [ROLE_ADMIN, ROLE_LECTURER, ROLE_STUDENT]

ROLE_GRANTS = {
    ROLE_ADMIN: PERMS,
    ROLE_LECTURER: ["achievements:read", "achievements:verify", "notifications:read"],
    ROLE_STUDENT: [
        "achievements:create", "achievements:read", "achievements:update", "achievements:delete",
        "notifications:read",
    ],
}

def _insert(db: Session, table):
    return (sqlite_insert if db.get_bind().dialect.name == "sqlite" else pg_insert)(table)

def upsert_user_role(db: Session, user_id: int, role_id: int):
    stmt = (
        _insert(db, user_roles)
        .values(user_id=user_id, role_id=role_id)
        .on_conflict_do_nothing(index_elements=["user_id", "role_id"])
    )
    db.execute(stmt)

def upsert_role_perm(db: Session, role_id: int, perm_id: int):
    stmt = (
        _insert(db, role_permissions)
        .values(role_id=role_id, permission_id=perm_id)
        .on_conflict_do_nothing(index_elements=["role_id", "permission_id"])
    )
    db.execute(stmt)

def ensure_roles(db: Session) -> dict[str, Role]:
    existing_roles = {r.name for r in db.scalars(select(Role)).all()}
    for r in ROLES:
        if r not in existing_roles:
            db.add(Role(name=r, description=r.capitalize()))
    db.flush()

    existing_perms = {p.code for p in db.scalars(select(Permission)).all()}
    for p in PERMS:
        if p not in existing_perms:
            db.add(Permission(code=p, description=p))
    db.flush()

    roles = {r.name: r for r in db.scalars(select(Role)).all()}
    perms = {p.code: p for p in db.scalars(select(Permission)).all()}

    for role_name, codes in ROLE_GRANTS.items():
        for code in codes:
            upsert_role_perm(db, roles[role_name].id, perms[code].id)
    return roles

def ensure_user(db: Session, roles: dict[str, Role], email: str, pwd: str, full_name: str, role_name: str) -> User:
    u = db.scalar(select(User).where(User.email == email))
    if not u:
        u = User(
            email=email,
            password_hash=hash_password(pwd),
            full_name=full_name,
            is_active=True,
        )
        db.add(u)
        db.flush()
    upsert_user_role(db, u.id, roles[role_name].id)
    return u

def ensure(db: Session):
    roles = ensure_roles(db)

    ensure_user(db, roles, "admin@university.edu", "Admin123!", "System Administrator", ROLE_ADMIN)
    lecturer_user = ensure_user(db, roles, "lecturer@university.edu", "Lecturer123!", "Maria Sidorova", ROLE_LECTURER)
    first_user = ensure_user(db, roles, "student@university.edu", "Student123!", "Alexey Smirnov", ROLE_STUDENT)
    second_user = ensure_user(db, roles, "student2@university.edu", "Student123!", "Daria Volkova", ROLE_STUDENT)

    lecturer = db.scalar(select(Lecturer).where(Lecturer.user_id == lecturer_user.id))
    if not lecturer:
        lecturer = Lecturer(user_id=lecturer_user.id, lecturer_number="LEC001", department="Computer Science")
        db.add(lecturer)
        db.flush()

    if not db.scalar(select(Student).where(Student.user_id == first_user.id)):
        db.add(Student(
            user_id=first_user.id,
            student_number="STU001",
            program="Information Systems",
            academic_year="2023",
            advisor_id=lecturer.id,
        ))

    # Second student has no advisor yet: submissions go unnoticed until one is assigned.
    if not db.scalar(select(Student).where(Student.user_id == second_user.id)):
        db.add(Student(
            user_id=second_user.id,
            student_number="STU002",
            program="Applied Mathematics",
            academic_year="2024",
        ))

def main():
    setup_logging()
    create_tables(engine)
    with SessionLocal() as db:
        ensure(db)
        db.commit()
    logger.info("Seed data is in place")

if __name__ == "__main__":
    main()
