import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from skillswap.models.base import BaseModel, BigIntPK


class SessionStatusEnum(enum.Enum):
    PENDING = "PENDING"  # Booked, waiting for both parties to confirm
    CONFIRMED = "CONFIRMED"  # Both parties confirmed
    IN_PROGRESS = "IN_PROGRESS"  # Started by a participant
    COMPLETED = "COMPLETED"  # Finished, credits paid out (or pending settlement)
    CANCELLED = "CANCELLED"  # Cancelled before completion, escrow refunded
    DISPUTED = "DISPUTED"  # Completion contested by a participant


# Statuses in which the student's credits sit in escrow (not yet paid out)
ESCROW_STATUSES = (
    SessionStatusEnum.PENDING,
    SessionStatusEnum.CONFIRMED,
    SessionStatusEnum.IN_PROGRESS,
)


class Session(BaseModel):
    __tablename__ = "sessions"
    __table_args__ = (
        Index("idx_sessions_teacher", "teacher_id"),
        Index("idx_sessions_student", "student_id"),
        Index("idx_sessions_status", "status"),
        Index("idx_sessions_scheduled_start", "scheduled_start"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    teacher_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    user_skill_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("user_skills.id"), nullable=False
    )

    scheduled_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    scheduled_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    actual_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    actual_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    credits_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[SessionStatusEnum] = mapped_column(
        Enum(SessionStatusEnum), nullable=False, default=SessionStatusEnum.PENDING
    )

    teacher_confirmed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    student_confirmed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )  # Set only when both flags are true

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    dispute_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Presentation only
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    meeting_link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Optimistic concurrency counter, bumped by SQLAlchemy on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Session(id={self.id}, status={self.status.value}, cost={self.credits_cost})>"

    @property
    def holds_escrow(self) -> bool:
        """Check if the student's credits are currently held for this session"""
        return self.status in ESCROW_STATUSES

    def is_participant(self, user_id: int) -> bool:
        return user_id in (self.teacher_id, self.student_id)
