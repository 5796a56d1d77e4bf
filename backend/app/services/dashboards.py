"""Read-only outpass views for students, faculty and HODs."""
from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from app.models.department import Department
from app.models.employee import Employee
from app.models.outpass import PENDING_STATUSES, Outpass, OutpassNotifiedFaculty, OutpassStatus
from app.models.school_class import ClassMentor, SchoolClass
from app.models.student import Student
from app.models.user import UserRole
from app.schemas.dashboard import (
    DashboardRequest,
    FacultyDashboard,
    FacultyDetails,
    FacultyStats,
    HodDashboard,
    HodDetails,
    HodStats,
    UrgentAlert,
)
from app.schemas.outpass import OutpassOut, OutpassStudentSummary
from app.services.campus_time import format_clock, local_day_bounds

EMERGENCY_CATEGORY = "emergency"
RECENT_FACULTY_LIMIT = 5
RECENT_HOD_LIMIT = 10
URGENT_ALERT_LIMIT = 5


def is_low_attendance(value: float | None, threshold: float) -> bool:
    return value is not None and value < threshold


def is_emergency(reason_category: str) -> bool:
    return reason_category.strip().lower() == EMERGENCY_CATEGORY


def serialize_outpass(
    outpass: Outpass,
    *,
    threshold: float,
    student: Student | None = None,
    class_name: str | None = None,
) -> OutpassOut:
    payload = OutpassOut.model_validate(outpass)
    payload.low_attendance = is_low_attendance(outpass.attendance_at_apply, threshold)
    if student is not None:
        payload.student = OutpassStudentSummary(
            id=student.id,
            name=student.name,
            roll_number=student.roll_number,
            phone=student.phone,
            parent_name=student.parent_name,
            primary_parent_phone=student.primary_parent_phone,
            secondary_parent_phone=student.secondary_parent_phone,
            class_name=class_name,
            attendance_percentage=student.attendance_percentage,
        )
    return payload


def _with_student(db: Session, query, threshold: float) -> list[OutpassOut]:
    rows = db.execute(
        query.join(Student, Student.id == Outpass.student_id).join(SchoolClass, SchoolClass.id == Student.class_id)
    ).all()
    return [
        serialize_outpass(outpass, threshold=threshold, student=student, class_name=class_name)
        for outpass, student, class_name in rows
    ]


def _base_query():
    return select(Outpass, Student, SchoolClass.name).order_by(Outpass.created_at.desc())


def student_outpasses(db: Session, student_id: str, *, threshold: float) -> list[OutpassOut]:
    return _with_student(db, _base_query().where(Outpass.student_id == student_id), threshold)


def current_student_outpass(
    db: Session,
    student_id: str,
    *,
    now: datetime,
    zone: ZoneInfo,
    threshold: float,
) -> OutpassOut | None:
    """Latest outpass still in flight, or one approved for today."""
    day_start, day_end = local_day_bounds(now.astimezone(zone).date(), zone)
    query = (
        _base_query()
        .where(
            Outpass.student_id == student_id,
            or_(
                Outpass.status.in_(PENDING_STATUSES),
                and_(
                    Outpass.status.in_([OutpassStatus.approved, OutpassStatus.exited]),
                    Outpass.departure_at >= day_start,
                    Outpass.departure_at <= day_end,
                ),
            ),
        )
        .limit(1)
    )
    results = _with_student(db, query, threshold)
    return results[0] if results else None


def pending_for_employee(db: Session, employee: Employee, *, threshold: float) -> list[OutpassOut]:
    if employee.role == UserRole.hod:
        query = _base_query().where(
            Outpass.status == OutpassStatus.pending_hod,
            SchoolClass.department_id == employee.department_id,
        )
    else:
        notified = select(OutpassNotifiedFaculty.outpass_id).where(OutpassNotifiedFaculty.employee_id == employee.id)
        query = _base_query().where(
            Outpass.status == OutpassStatus.pending_faculty,
            or_(SchoolClass.department_id == employee.department_id, Outpass.id.in_(notified)),
        )
    return _with_student(db, query, threshold)


def outpass_history(
    db: Session,
    *,
    department_id: str | None,
    threshold: float,
    status: OutpassStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[OutpassOut]:
    """Decided outpasses, newest first. ``department_id=None`` means campus-wide."""
    query = _base_query()
    if status is not None:
        query = query.where(Outpass.status == status)
    else:
        query = query.where(Outpass.status.not_in(PENDING_STATUSES))
    if department_id is not None:
        query = query.where(SchoolClass.department_id == department_id)
    return _with_student(db, query.offset(offset).limit(limit), threshold)


def _dashboard_request(
    outpass: Outpass,
    student: Student,
    class_name: str | None,
    department_name: str | None,
    *,
    zone: ZoneInfo,
    threshold: float,
    faculty_approver_name: str | None = None,
) -> DashboardRequest:
    return DashboardRequest(
        request_id=outpass.id,
        student_name=student.name,
        roll_number=student.roll_number,
        class_name=class_name,
        department=department_name,
        reason_category=outpass.reason_category,
        reason=outpass.reason,
        alternate_contact=outpass.alternate_contact,
        parent_name=student.parent_name,
        parent_phone=student.primary_parent_phone,
        exit_time=format_clock(outpass.departure_at, zone),
        return_time=format_clock(outpass.return_at, zone),
        requested_at=outpass.created_at,
        status=outpass.status,
        attendance_at_apply=outpass.attendance_at_apply,
        low_attendance=is_low_attendance(outpass.attendance_at_apply, threshold),
        urgency="HIGH" if is_emergency(outpass.reason_category) else "NORMAL",
        faculty_approver_name=faculty_approver_name,
    )


def _urgent_alerts(db: Session, *, department_id: str, statuses) -> list[UrgentAlert]:
    rows = db.execute(
        select(Outpass, Student, SchoolClass.name)
        .join(Student, Student.id == Outpass.student_id)
        .join(SchoolClass, SchoolClass.id == Student.class_id)
        .where(
            func.lower(Outpass.reason_category) == EMERGENCY_CATEGORY,
            Outpass.status.in_(list(statuses)),
            SchoolClass.department_id == department_id,
        )
        .order_by(Outpass.created_at.desc())
        .limit(URGENT_ALERT_LIMIT)
    ).all()
    return [
        UrgentAlert(
            request_id=outpass.id,
            message=f"Emergency request from {student.name} ({student.roll_number})",
            class_name=class_name,
            requested_at=outpass.created_at,
        )
        for outpass, student, class_name in rows
    ]


def _department_student_count(db: Session, department_id: str) -> int:
    return db.execute(
        select(func.count(Student.id))
        .join(SchoolClass, SchoolClass.id == Student.class_id)
        .where(SchoolClass.department_id == department_id)
    ).scalar_one()


def faculty_dashboard(
    db: Session,
    employee: Employee,
    *,
    zone: ZoneInfo,
    threshold: float,
    my_class_only: bool = False,
) -> FacultyDashboard:
    department_name = db.execute(
        select(Department.name).where(Department.id == employee.department_id)
    ).scalar_one_or_none()
    mentor_class = db.execute(
        select(SchoolClass)
        .join(ClassMentor, ClassMentor.class_id == SchoolClass.id)
        .where(ClassMentor.employee_id == employee.id)
        .order_by(SchoolClass.name)
        .limit(1)
    ).scalar_one_or_none()

    class_student_count = 0
    if mentor_class is not None:
        class_student_count = db.execute(
            select(func.count(Student.id)).where(Student.class_id == mentor_class.id)
        ).scalar_one()

    notified = select(OutpassNotifiedFaculty.outpass_id).where(OutpassNotifiedFaculty.employee_id == employee.id)
    pending_requests = db.execute(
        select(func.count(Outpass.id)).where(
            Outpass.status == OutpassStatus.pending_faculty,
            Outpass.id.in_(notified),
        )
    ).scalar_one()
    approved_requests = db.execute(
        select(func.count(Outpass.id)).where(
            Outpass.faculty_approver_id == employee.id,
            Outpass.status.in_([OutpassStatus.pending_hod, OutpassStatus.approved, OutpassStatus.exited]),
        )
    ).scalar_one()
    rejected_requests = db.execute(
        select(func.count(Outpass.id)).where(
            Outpass.faculty_approver_id == employee.id,
            Outpass.hod_approver_id.is_(None),
            Outpass.status == OutpassStatus.rejected,
        )
    ).scalar_one()

    recent_query = (
        select(Outpass, Student, SchoolClass.name)
        .join(Student, Student.id == Outpass.student_id)
        .join(SchoolClass, SchoolClass.id == Student.class_id)
        .where(Outpass.status == OutpassStatus.pending_faculty)
        .order_by(Outpass.created_at.desc())
        .limit(RECENT_FACULTY_LIMIT)
    )
    if my_class_only and mentor_class is not None:
        recent_query = recent_query.where(Student.class_id == mentor_class.id)
    else:
        recent_query = recent_query.where(SchoolClass.department_id == employee.department_id)
    recent = [
        _dashboard_request(outpass, student, class_name, department_name, zone=zone, threshold=threshold)
        for outpass, student, class_name in db.execute(recent_query).all()
    ]

    return FacultyDashboard(
        faculty=FacultyDetails(
            name=employee.name,
            email=employee.email,
            phone=employee.phone,
            department=department_name,
            role=employee.role.value,
            is_mentor=mentor_class is not None,
            mentor_class=mentor_class.name if mentor_class is not None else None,
            class_student_count=class_student_count,
            department_student_count=_department_student_count(db, employee.department_id),
        ),
        stats=FacultyStats(
            pending_requests=pending_requests,
            approved_requests=approved_requests,
            rejected_requests=rejected_requests,
        ),
        recent_pending_requests=recent,
        urgent_alerts=_urgent_alerts(db, department_id=employee.department_id, statuses=PENDING_STATUSES),
    )


def hod_dashboard(
    db: Session,
    employee: Employee,
    *,
    now: datetime,
    zone: ZoneInfo,
    threshold: float,
) -> HodDashboard:
    department_id = employee.department_id
    department_name = db.execute(select(Department.name).where(Department.id == department_id)).scalar_one_or_none()
    total_faculty = db.execute(
        select(func.count(Employee.id)).where(
            Employee.department_id == department_id,
            Employee.role == UserRole.faculty,
        )
    ).scalar_one()

    in_department = (
        select(Student.id)
        .join(SchoolClass, SchoolClass.id == Student.class_id)
        .where(SchoolClass.department_id == department_id)
    )
    pending_approvals = db.execute(
        select(func.count(Outpass.id)).where(
            Outpass.status == OutpassStatus.pending_hod,
            Outpass.student_id.in_(in_department),
        )
    ).scalar_one()

    day_start, day_end = local_day_bounds(now.astimezone(zone).date(), zone)
    decided_today = (
        select(Outpass.status, func.count(Outpass.id))
        .where(
            Outpass.hod_approver_id == employee.id,
            Outpass.hod_decided_at >= day_start,
            Outpass.hod_decided_at <= day_end,
        )
        .group_by(Outpass.status)
    )
    today_counts = {status: count for status, count in db.execute(decided_today).all()}
    approved_today = today_counts.get(OutpassStatus.approved, 0) + today_counts.get(OutpassStatus.exited, 0)

    faculty_approver = Employee.__table__.alias("faculty_approver")
    rows = db.execute(
        select(Outpass, Student, SchoolClass.name, faculty_approver.c.name)
        .join(Student, Student.id == Outpass.student_id)
        .join(SchoolClass, SchoolClass.id == Student.class_id)
        .outerjoin(faculty_approver, faculty_approver.c.id == Outpass.faculty_approver_id)
        .where(
            Outpass.status == OutpassStatus.pending_hod,
            SchoolClass.department_id == department_id,
        )
        .order_by(Outpass.created_at.desc())
        .limit(RECENT_HOD_LIMIT)
    ).all()
    recent = [
        _dashboard_request(
            outpass,
            student,
            class_name,
            department_name,
            zone=zone,
            threshold=threshold,
            faculty_approver_name=approver_name,
        )
        for outpass, student, class_name, approver_name in rows
    ]

    return HodDashboard(
        hod=HodDetails(
            name=employee.name,
            email=employee.email,
            department=department_name,
            role=employee.role.value,
            total_faculty=total_faculty,
            total_students=_department_student_count(db, department_id),
        ),
        stats=HodStats(
            pending_approvals=pending_approvals,
            approved_today=approved_today,
            rejected_today=today_counts.get(OutpassStatus.rejected, 0),
            total_faculty=total_faculty,
        ),
        recent_pending_approvals=recent,
        urgent_alerts=_urgent_alerts(db, department_id=department_id, statuses={OutpassStatus.pending_hod}),
    )
