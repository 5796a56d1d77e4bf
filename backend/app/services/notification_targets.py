"""Works out which employees must hear about a new outpass.

Mentors of the student's class are always notified. Every other faculty
member of the department is notified only when the weekly timetable shows
them free for the whole requested window.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.employee import Employee
from app.models.school_class import SchoolClass
from app.models.student import Student
from app.models.timetable import TimetableSlot
from app.models.user import UserRole
from app.services.campus_time import campus_zone, format_hhmm, to_local, weekday_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutpassWindow:
    day_of_week: int
    start_time: str
    end_time: str


def outpass_window(departure_at: datetime, return_at: datetime, timezone_name: str) -> OutpassWindow:
    # Timetable slots are stored as local wall-clock strings, never compare in UTC.
    zone = campus_zone(timezone_name)
    local_start = to_local(departure_at, zone)
    local_end = to_local(return_at, zone)
    return OutpassWindow(
        day_of_week=weekday_index(local_start),
        start_time=format_hhmm(local_start),
        end_time=format_hhmm(local_end),
    )


def find_busy_employee_ids(db: Session, employee_ids: list[str], window: OutpassWindow) -> set[str]:
    if not employee_ids:
        return set()
    # Half-open overlap: [slot_start, slot_end) conflicts with [start, end).
    rows = db.execute(
        select(TimetableSlot.employee_id)
        .where(
            TimetableSlot.employee_id.in_(employee_ids),
            TimetableSlot.day_of_week == window.day_of_week,
            TimetableSlot.start_time < window.end_time,
            TimetableSlot.end_time > window.start_time,
        )
        .distinct()
    ).scalars()
    return set(rows)


def resolve_notification_targets(
    db: Session,
    *,
    student: Student,
    departure_at: datetime,
    return_at: datetime,
    timezone_name: str,
) -> list[Employee]:
    """Return mentors plus free department faculty, deduplicated.

    Lookup failures are logged and produce an empty list; the caller decides
    what to do when nobody was found.
    """
    try:
        window = outpass_window(departure_at, return_at, timezone_name)

        school_class = db.get(SchoolClass, student.class_id)
        if school_class is None:
            logger.warning("Student %s has no resolvable class %s", student.id, student.class_id)
            return []
        mentor_ids = school_class.mentor_ids

        other_faculty_ids = list(
            db.execute(
                select(Employee.id).where(
                    Employee.department_id == school_class.department_id,
                    Employee.role == UserRole.faculty,
                    Employee.id.not_in(mentor_ids),
                )
            ).scalars()
        )
        busy_ids = find_busy_employee_ids(db, other_faculty_ids, window)
        free_ids = [item for item in other_faculty_ids if item not in busy_ids]

        target_ids = list(dict.fromkeys([*mentor_ids, *free_ids]))
        if not target_ids:
            return []

        employees = {
            item.id: item
            for item in db.execute(select(Employee).where(Employee.id.in_(target_ids))).scalars()
        }
        targets = [employees[item] for item in target_ids if item in employees]
        logger.info(
            "Notification targets for student %s on day %d %s-%s: %s",
            student.id,
            window.day_of_week,
            window.start_time,
            window.end_time,
            [item.name for item in targets],
        )
        return targets
    except Exception:
        logger.exception("Failed to resolve notification targets for student %s", student.id)
        return []


def department_hods(db: Session, department_id: str) -> list[Employee]:
    return list(
        db.execute(
            select(Employee)
            .where(Employee.department_id == department_id, Employee.role == UserRole.hod)
            .order_by(Employee.name)
        ).scalars()
    )
