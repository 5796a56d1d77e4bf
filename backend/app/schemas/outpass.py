from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.models.outpass import OutpassStatus


class OutpassDecision(BaseModel):
    decision: Literal["approve", "reject"]
    reason: str | None = Field(default=None, max_length=1000)


class OutpassStudentSummary(BaseModel):
    id: str
    name: str
    roll_number: str
    phone: str | None = None
    parent_name: str | None = None
    primary_parent_phone: str
    secondary_parent_phone: str | None = None
    class_name: str | None = None
    attendance_percentage: float


class OutpassOut(BaseModel):
    id: str
    student_id: str
    reason_category: str
    reason: str
    departure_at: datetime
    return_at: datetime
    alternate_contact: str | None = None
    supporting_document_url: str | None = None
    attendance_at_apply: float | None = None
    low_attendance: bool = False
    status: OutpassStatus
    notified_faculty_ids: list[str] = Field(default_factory=list)
    faculty_approver_id: str | None = None
    faculty_decided_at: datetime | None = None
    hod_approver_id: str | None = None
    hod_decided_at: datetime | None = None
    parent_contact_verified: bool = False
    parent_contact_verified_by_id: str | None = None
    parent_contact_verified_at: datetime | None = None
    rejection_reason: str | None = None
    cancelled_at: datetime | None = None
    exited_at: datetime | None = None
    returned_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None
    student: OutpassStudentSummary | None = None

    model_config = {"from_attributes": True}
