from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from app.models.achievement import AchievementStatus


class AchievementType(str, Enum):
    academic = "academic"
    competition = "competition"
    organization = "organization"
    publication = "publication"
    certification = "certification"
    other = "other"


# Detail variants. Dates inside details are kept as ISO strings; anything the
# scorer cannot interpret lands in custom_fields untouched.

class DetailsBase(BaseModel):
    event_date: Optional[str] = None
    location: Optional[str] = None
    organizer: Optional[str] = None
    score: Optional[float] = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class AcademicDetails(DetailsBase):
    kind: Literal["academic"] = "academic"
    semester: Optional[int] = None
    gpa: Optional[float] = None


class CompetitionDetails(DetailsBase):
    kind: Literal["competition"] = "competition"
    competition_name: Optional[str] = None
    competition_level: Optional[str] = None
    rank: Optional[int] = None
    medal_type: Optional[str] = None


class OrganizationDetails(DetailsBase):
    kind: Literal["organization"] = "organization"
    organization_name: Optional[str] = None
    position: Optional[str] = None
    period_start: Optional[str] = None
    period_end: Optional[str] = None


class PublicationDetails(DetailsBase):
    kind: Literal["publication"] = "publication"
    publication_type: Optional[str] = None
    publication_title: Optional[str] = None
    authors: list[str] = Field(default_factory=list)
    publisher: Optional[str] = None
    issn: Optional[str] = None
    journal_name: Optional[str] = None


class CertificationDetails(DetailsBase):
    kind: Literal["certification"] = "certification"
    certification_name: Optional[str] = None
    issued_by: Optional[str] = None
    certification_number: Optional[str] = None
    valid_until: Optional[str] = None


class OtherDetails(DetailsBase):
    kind: Literal["other"] = "other"


AchievementDetails = Annotated[
    Union[
        AcademicDetails,
        CompetitionDetails,
        OrganizationDetails,
        PublicationDetails,
        CertificationDetails,
        OtherDetails,
    ],
    Field(discriminator="kind"),
]


class AttachmentIn(BaseModel):
    filename: str = Field(min_length=1)
    url: str = Field(min_length=1)
    content_type: str = "application/octet-stream"


class Attachment(AttachmentIn):
    uploaded_at: datetime


class AchievementDocument(BaseModel):
    """Content-bearing record kept in the document store."""

    document_id: Optional[str] = None
    owner_student_id: int
    type: AchievementType
    title: str
    description: str = ""
    details: AchievementDetails
    attachments: list[Attachment] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    achieved_date: Optional[date] = None
    points: int = 0
    soft_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class AchievementCreate(BaseModel):
    # Kept as a plain string so an unknown type surfaces as invalid_type, not a 422.
    type: str
    title: str
    description: str = ""
    details: dict[str, Any] = Field(default_factory=dict)
    attachments: list[AttachmentIn] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    achieved_date: Optional[date] = None
    student_id: Optional[int] = None


class AchievementPatch(BaseModel):
    """Partial update of a draft; only fields that were sent are applied."""

    type: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    tags: Optional[list[str]] = None
    achieved_date: Optional[date] = None
    attachments: Optional[list[AttachmentIn]] = None


class VerifyIn(BaseModel):
    comments: Optional[str] = None


class RejectIn(BaseModel):
    note: str = ""


class AchievementOut(BaseModel):
    id: int
    document_id: str
    student_id: int
    status: str
    submitted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[int] = None
    rejection_note: str = ""
    created_at: datetime
    updated_at: datetime

    type: AchievementType
    title: str
    description: str
    details: dict[str, Any]
    attachments: list[Attachment]
    tags: list[str]
    achieved_date: Optional[date] = None
    points: int

    @classmethod
    def from_record(cls, record) -> "AchievementOut":
        document, reference = record
        return cls(
            id=reference.id,
            document_id=reference.document_id,
            student_id=reference.student_id,
            status=reference.status.value,
            submitted_at=reference.submitted_at,
            verified_at=reference.verified_at,
            verified_by=reference.verified_by,
            rejection_note=reference.rejection_note or "",
            created_at=reference.created_at,
            updated_at=reference.updated_at,
            type=document.type,
            title=document.title,
            description=document.description,
            details=document.details.model_dump(),
            attachments=document.attachments,
            tags=document.tags,
            achieved_date=document.achieved_date,
            points=document.points,
        )


class StudentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_number: str
    program: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None


class QueueItemOut(AchievementOut):
    student: StudentSummary


class AchievementPage(BaseModel):
    items: list[AchievementOut]
    total: int
    page: int
    limit: int


class QueuePage(BaseModel):
    items: list[QueueItemOut]
    total: int
    page: int
    limit: int


class StatusHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    old_status: Optional[AchievementStatus] = None
    new_status: AchievementStatus
    changed_by: Optional[int] = None
    note: Optional[str] = None
    created_at: datetime


class AchievementHistoryOut(BaseModel):
    achievement_id: int
    current_status: str
    history: list[StatusHistoryOut]


class TransitionOut(BaseModel):
    id: int
    status: str
    submitted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[int] = None
    rejection_note: str = ""

    @classmethod
    def from_reference(cls, reference) -> "TransitionOut":
        return cls(
            id=reference.id,
            status=reference.status.value,
            submitted_at=reference.submitted_at,
            verified_at=reference.verified_at,
            verified_by=reference.verified_by,
            rejection_note=reference.rejection_note or "",
        )
