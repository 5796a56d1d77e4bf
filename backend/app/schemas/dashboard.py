from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.models.outpass import OutpassStatus


class DashboardRequest(BaseModel):
    request_id: str
    student_name: str
    roll_number: str
    class_name: str | None = None
    department: str | None = None
    reason_category: str
    reason: str
    alternate_contact: str | None = None
    parent_name: str | None = None
    parent_phone: str | None = None
    exit_time: str
    return_time: str
    requested_at: datetime
    status: OutpassStatus
    attendance_at_apply: float | None = None
    low_attendance: bool = False
    urgency: Literal["HIGH", "NORMAL"] = "NORMAL"
    faculty_approver_name: str | None = None


class UrgentAlert(BaseModel):
    request_id: str
    message: str
    class_name: str | None = None
    requested_at: datetime


class FacultyDetails(BaseModel):
    name: str
    email: str
    phone: str | None = None
    department: str | None = None
    role: str
    is_mentor: bool
    mentor_class: str | None = None
    class_student_count: int = 0
    department_student_count: int = 0


class FacultyStats(BaseModel):
    pending_requests: int = 0
    approved_requests: int = 0
    rejected_requests: int = 0


class FacultyDashboard(BaseModel):
    faculty: FacultyDetails
    stats: FacultyStats
    recent_pending_requests: list[DashboardRequest] = Field(default_factory=list)
    urgent_alerts: list[UrgentAlert] = Field(default_factory=list)


class HodDetails(BaseModel):
    name: str
    email: str
    department: str | None = None
    role: str
    total_faculty: int = 0
    total_students: int = 0


class HodStats(BaseModel):
    pending_approvals: int = 0
    approved_today: int = 0
    rejected_today: int = 0
    total_faculty: int = 0


class HodDashboard(BaseModel):
    hod: HodDetails
    stats: HodStats
    recent_pending_approvals: list[DashboardRequest] = Field(default_factory=list)
    urgent_alerts: list[UrgentAlert] = Field(default_factory=list)
