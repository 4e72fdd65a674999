import enum
from datetime import datetime, timezone
from sqlalchemy import Integer, String, Text, DateTime, ForeignKey, Enum, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AchievementStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    verified = "verified"
    rejected = "rejected"
    deleted = "deleted"


# draft -> submitted -> {verified | rejected}; draft -> deleted
TRANSITIONS: dict[AchievementStatus, frozenset[AchievementStatus]] = {
    AchievementStatus.draft: frozenset({AchievementStatus.submitted, AchievementStatus.deleted}),
    AchievementStatus.submitted: frozenset({AchievementStatus.verified, AchievementStatus.rejected}),
    AchievementStatus.verified: frozenset(),
    AchievementStatus.rejected: frozenset(),
    AchievementStatus.deleted: frozenset(),
}


class AchievementReference(Base):
    __tablename__ = "achievement_references"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), nullable=False, index=True)
    document_id: Mapped[str] = mapped_column(String(24), nullable=False, unique=True)

    status: Mapped[AchievementStatus] = mapped_column(
        Enum(AchievementStatus, name="achievement_status"),
        default=AchievementStatus.draft,
        nullable=False,
        index=True
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejection_note: Mapped[str] = mapped_column(Text, default="", nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    student = relationship("Student", back_populates="achievements")
    history = relationship(
        "AchievementStatusHistory",
        back_populates="reference",
        order_by="AchievementStatusHistory.id"
    )


Index("ix_achievement_references_listing", AchievementReference.created_at.desc(), AchievementReference.id)


class AchievementStatusHistory(Base):
    __tablename__ = "achievement_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reference_id: Mapped[int] = mapped_column(
        ForeignKey("achievement_references.id", ondelete="CASCADE"),
        index=True
    )
    old_status: Mapped[AchievementStatus | None] = mapped_column(
        Enum(AchievementStatus, name="achievement_status"),
        nullable=True
    )
    new_status: Mapped[AchievementStatus] = mapped_column(Enum(AchievementStatus, name="achievement_status"))
    changed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    reference = relationship("AchievementReference", back_populates="history")
