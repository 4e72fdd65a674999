from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.core.deps import get_db, get_current_user, load_actor
from app.schemas.user import MeOut, MeStudent, MeLecturer
from app.services.directory import StudentDirectory

router = APIRouter(tags=["users"])

@router.get("/me", response_model=MeOut)
def me_alias(me=Depends(get_current_user), db: Session = Depends(get_db)):
    actor = load_actor(me, db)
    directory = StudentDirectory(db)

    student = directory.student_for_user(me.id)
    lecturer = directory.lecturer_for_user(me.id)

    return MeOut(
        id=me.id,
        email=me.email,
        full_name=me.full_name,
        role=actor.role,
        roles=sorted(actor.roles),
        permissions=sorted(actor.permissions),
        student=MeStudent(
            id=student.id,
            student_number=student.student_number,
            program=student.program,
            academic_year=student.academic_year,
            advisor_id=student.advisor_id,
        ) if student else None,
        lecturer=MeLecturer(
            id=lecturer.id,
            lecturer_number=lecturer.lecturer_number,
            department=lecturer.department,
        ) if lecturer else None,
    )
