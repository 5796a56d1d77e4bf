from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_clock, get_current_employee, get_db, require_roles
from app.core.config import Settings, get_settings
from app.models.employee import Employee
from app.models.user import UserRole
from app.schemas.dashboard import FacultyDashboard, HodDashboard
from app.services.campus_time import campus_zone
from app.services.dashboards import faculty_dashboard, hod_dashboard
from app.services.outpass_workflow import Actor

router = APIRouter()


@router.get("/faculty/dashboard", response_model=FacultyDashboard)
def get_faculty_dashboard(
    sort: str | None = Query(default=None, pattern="^(myclass|department)$"),
    _: Actor = Depends(require_roles(UserRole.faculty, UserRole.hod)),
    employee: Employee = Depends(get_current_employee),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> FacultyDashboard:
    return faculty_dashboard(
        db,
        employee,
        zone=campus_zone(settings.institution_timezone),
        threshold=settings.low_attendance_threshold,
        my_class_only=sort == "myclass",
    )


@router.get("/hod/dashboard", response_model=HodDashboard)
def get_hod_dashboard(
    _: Actor = Depends(require_roles(UserRole.hod)),
    employee: Employee = Depends(get_current_employee),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> HodDashboard:
    return hod_dashboard(
        db,
        employee,
        now=clock(),
        zone=campus_zone(settings.institution_timezone),
        threshold=settings.low_attendance_threshold,
    )
