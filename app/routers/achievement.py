from typing import Optional
from fastapi import APIRouter, Depends, File, Query, UploadFile
from app.core.deps import Pagination, get_actor, get_workflow, require_permission
from app.core.errors import AchievementError
from app.core.files import delete_file_if_local, save_attachment_file
from app.models.achievement import AchievementStatus
from app.schemas.achievement import (
    AchievementCreate,
    AchievementHistoryOut,
    AchievementOut,
    AchievementPage,
    AchievementPatch,
    StatusHistoryOut,
    TransitionOut,
)
from app.services.authorization import Actor
from app.services.verification_workflow import VerificationWorkflow

router = APIRouter(prefix="/achievements", tags=["achievements"])


def _page(records, total: int, pagination: Pagination) -> AchievementPage:
    return AchievementPage(
        items=[AchievementOut.from_record(r) for r in records],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
    )


@router.post("", response_model=AchievementOut, status_code=201,
             dependencies=[Depends(require_permission("achievements:create"))])
def create_achievement(
    payload: AchievementCreate,
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    record = workflow.create(
        actor,
        type=payload.type,
        title=payload.title,
        description=payload.description,
        details=payload.details,
        attachments=payload.attachments,
        tags=payload.tags,
        achieved_date=payload.achieved_date,
        student_id=payload.student_id,
    )
    return AchievementOut.from_record(record)


@router.get("", response_model=AchievementPage,
            dependencies=[Depends(require_permission("achievements:read"))])
def list_achievements(
    status: Optional[AchievementStatus] = Query(None),
    pagination: Pagination = Depends(),
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    records, total = workflow.list_all(actor, status=status, offset=pagination.offset, limit=pagination.limit)
    return _page(records, total, pagination)


@router.get("/mine", response_model=AchievementPage)
def list_my_achievements(
    pagination: Pagination = Depends(),
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    records, total = workflow.list_own(actor, offset=pagination.offset, limit=pagination.limit)
    return _page(records, total, pagination)


@router.get("/{achievement_id}", response_model=AchievementOut)
def get_achievement(
    achievement_id: int,
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    return AchievementOut.from_record(workflow.view(achievement_id, actor))


@router.put("/{achievement_id}", response_model=AchievementOut,
            dependencies=[Depends(require_permission("achievements:update"))])
def update_achievement(
    achievement_id: int,
    payload: AchievementPatch,
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    return AchievementOut.from_record(workflow.edit(achievement_id, actor, payload))


@router.delete("/{achievement_id}", response_model=TransitionOut,
               dependencies=[Depends(require_permission("achievements:delete"))])
def delete_achievement(
    achievement_id: int,
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    return TransitionOut.from_reference(workflow.remove(achievement_id, actor))


@router.post("/{achievement_id}/attachments", response_model=AchievementOut,
             dependencies=[Depends(require_permission("achievements:update"))])
def upload_attachment(
    achievement_id: int,
    file: UploadFile = File(...),
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    ref = workflow.upload_target(achievement_id, actor)
    attachment = save_attachment_file(ref.student_id, file)
    try:
        record = workflow.attach(achievement_id, actor, attachment)
    except AchievementError:
        delete_file_if_local(attachment.url)
        raise
    return AchievementOut.from_record(record)


@router.get("/{achievement_id}/history", response_model=AchievementHistoryOut)
def achievement_history(
    achievement_id: int,
    actor: Actor = Depends(get_actor),
    workflow: VerificationWorkflow = Depends(get_workflow),
):
    ref, rows = workflow.history(achievement_id, actor)
    return AchievementHistoryOut(
        achievement_id=ref.id,
        current_status=ref.status.value,
        history=[StatusHistoryOut.model_validate(row) for row in rows],
    )
