import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.db.base import Base


class OutpassStatus(str, Enum):
    pending_faculty = "pending_faculty"
    pending_hod = "pending_hod"
    approved = "approved"
    rejected = "rejected"
    cancelled_by_student = "cancelled_by_student"
    exited = "exited"


PENDING_STATUSES = frozenset({OutpassStatus.pending_faculty, OutpassStatus.pending_hod})
TERMINAL_STATUSES = frozenset(
    {
        OutpassStatus.approved,
        OutpassStatus.rejected,
        OutpassStatus.cancelled_by_student,
        OutpassStatus.exited,
    }
)


class OutpassNotifiedFaculty(Base):
    __tablename__ = "outpass_notified_faculty"

    outpass_id: Mapped[str] = mapped_column(String(36), ForeignKey("outpasses.id"), primary_key=True)
    employee_id: Mapped[str] = mapped_column(String(36), ForeignKey("employees.id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Outpass(Base):
    __tablename__ = "outpasses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("students.id"), nullable=False, index=True)
    reason_category: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    departure_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    return_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    alternate_contact: Mapped[str | None] = mapped_column(String(50), nullable=True)
    supporting_document_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    attendance_at_apply: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[OutpassStatus] = mapped_column(
        SAEnum(OutpassStatus, name="outpass_status"),
        nullable=False,
        default=OutpassStatus.pending_faculty,
        index=True,
    )

    faculty_approver_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("employees.id"), nullable=True)
    faculty_decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hod_approver_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("employees.id"), nullable=True)
    hod_decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    parent_contact_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_contact_verified_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    parent_contact_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    exit_verified_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    exited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    return_verified_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    notified_links: Mapped[list[OutpassNotifiedFaculty]] = relationship(
        OutpassNotifiedFaculty,
        order_by=OutpassNotifiedFaculty.position,
        cascade="all, delete-orphan",
    )

    @property
    def notified_faculty_ids(self) -> list[str]:
        return [link.employee_id for link in self.notified_links]
