from datetime import datetime
from sqlalchemy import String, Boolean, Integer, DateTime, func, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    student = relationship(
        "Student",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False
    )

    lecturer = relationship(
        "Lecturer",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False
    )

    roles = relationship("Role", secondary="user_roles", back_populates="users")


Index("ix_users_last_login", User.last_login)
