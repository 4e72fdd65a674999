from fastapi import APIRouter, Depends
from app.core.deps import Pagination, get_actor, get_workflow, require_permission
from app.schemas.achievement import (
    AchievementOut,
    QueueItemOut,
    QueuePage,
    RejectIn,
    StudentSummary,
    TransitionOut,
    VerifyIn,
)
from app.services.authorization import Actor
from app.services.verification_workflow import VerificationWorkflow

router = APIRouter(tags=["verification"])


@router.post("/achievements/{achievement_id}/submit", response_model=TransitionOut)
def submit_achievement(
    achievement_id: int,
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    return TransitionOut.from_reference(workflow.submit(achievement_id, actor))


@router.post("/achievements/{achievement_id}/verify", response_model=TransitionOut,
             dependencies=[Depends(require_permission("achievements:verify"))])
def verify_achievement(
    achievement_id: int,
    payload: VerifyIn | None = None,
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    comments = payload.comments if payload else None
    return TransitionOut.from_reference(workflow.verify(achievement_id, actor, comments=comments))


@router.post("/achievements/{achievement_id}/reject", response_model=TransitionOut,
             dependencies=[Depends(require_permission("achievements:verify"))])
def reject_achievement(
    achievement_id: int,
    payload: RejectIn,
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    return TransitionOut.from_reference(workflow.reject(achievement_id, actor, payload.note))


@router.get("/advisees/achievements", response_model=QueuePage)
def advisee_achievements(
    pagination: Pagination = Depends(),
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    items, total = workflow.advisee_queue(actor, offset=pagination.offset, limit=pagination.limit)
    return QueuePage(
        items=[
            QueueItemOut(
                **AchievementOut.from_record(item.record).model_dump(),
                student=StudentSummary(
                    id=item.student.id,
                    student_number=item.student.student_number,
                    program=item.student.program,
                    full_name=item.student.user.full_name if item.student.user else None,
                    email=item.student.user.email if item.student.user else None,
                ),
            )
            for item in items
        ],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
    )
