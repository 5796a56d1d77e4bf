from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.orm import Session

from app.api.deps import get_clock, get_current_employee, get_db, get_storage, get_workflow, require_roles
from app.core.config import Settings, get_settings
from app.models.employee import Employee
from app.models.outpass import Outpass, OutpassStatus
from app.models.school_class import SchoolClass
from app.models.student import Student
from app.models.user import UserRole
from app.schemas.outpass import OutpassDecision, OutpassOut
from app.services.campus_time import campus_zone
from app.services.dashboards import (
    current_student_outpass,
    outpass_history,
    pending_for_employee,
    serialize_outpass,
    student_outpasses,
)
from app.services.outpass_workflow import Actor, Decision, OutpassApplication, OutpassWorkflow
from app.services.storage import DocumentStorage

router = APIRouter()


def _present(db: Session, outpass: Outpass, settings: Settings) -> OutpassOut:
    student = db.get(Student, outpass.student_id)
    school_class = db.get(SchoolClass, student.class_id) if student is not None else None
    return serialize_outpass(
        outpass,
        threshold=settings.low_attendance_threshold,
        student=student,
        class_name=school_class.name if school_class is not None else None,
    )


@router.post("/apply", response_model=OutpassOut, status_code=status.HTTP_201_CREATED)
def apply_outpass(
    reason_category: str = Form(..., min_length=1, max_length=100),
    reason: str = Form(..., min_length=1, max_length=1000),
    departure_at: datetime = Form(...),
    return_at: datetime = Form(...),
    alternate_contact: str | None = Form(default=None, max_length=50),
    document: UploadFile | None = File(default=None),
    actor: Actor = Depends(require_roles(UserRole.student)),
    workflow: OutpassWorkflow = Depends(get_workflow),
    storage: DocumentStorage = Depends(get_storage),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OutpassOut:
    application = OutpassApplication(
        reason_category=reason_category,
        reason=reason,
        departure_at=departure_at,
        return_at=return_at,
        alternate_contact=alternate_contact,
    )
    # Nothing is uploaded for an application that create() would reject.
    workflow.validate_application(application)
    if document is not None and document.filename:
        application.supporting_document_url = storage.save(
            filename=document.filename,
            content_type=document.content_type,
            data=document.file.read(),
        )
    outpass = workflow.create(actor, application)
    return _present(db, outpass, settings)


@router.get("/mine", response_model=list[OutpassOut])
def my_outpasses(
    actor: Actor = Depends(require_roles(UserRole.student)),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> list[OutpassOut]:
    return student_outpasses(db, actor.id, threshold=settings.low_attendance_threshold)


@router.get("/current", response_model=OutpassOut | None)
def current_outpass(
    actor: Actor = Depends(require_roles(UserRole.student)),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> OutpassOut | None:
    return current_student_outpass(
        db,
        actor.id,
        now=clock(),
        zone=campus_zone(settings.institution_timezone),
        threshold=settings.low_attendance_threshold,
    )


@router.get("/pending", response_model=list[OutpassOut])
def pending_outpasses(
    _: Actor = Depends(require_roles(UserRole.faculty, UserRole.hod)),
    employee: Employee = Depends(get_current_employee),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> list[OutpassOut]:
    return pending_for_employee(db, employee, threshold=settings.low_attendance_threshold)


@router.get("/history", response_model=list[OutpassOut])
def history(
    status_filter: OutpassStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_roles(UserRole.faculty, UserRole.hod, UserRole.admin)),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> list[OutpassOut]:
    department_id = None
    if actor.role != UserRole.admin:
        employee = db.get(Employee, actor.id)
        department_id = employee.department_id
    return outpass_history(
        db,
        department_id=department_id,
        threshold=settings.low_attendance_threshold,
        status=status_filter,
        limit=limit,
        offset=offset,
    )


@router.put("/{outpass_id}/cancel", response_model=OutpassOut)
def cancel_outpass(
    outpass_id: str,
    actor: Actor = Depends(require_roles(UserRole.student)),
    workflow: OutpassWorkflow = Depends(get_workflow),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OutpassOut:
    return _present(db, workflow.cancel(actor, outpass_id), settings)


@router.put("/{outpass_id}/faculty-approve", response_model=OutpassOut)
def faculty_approve(
    outpass_id: str,
    payload: OutpassDecision,
    actor: Actor = Depends(require_roles(UserRole.faculty, UserRole.hod)),
    workflow: OutpassWorkflow = Depends(get_workflow),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OutpassOut:
    outpass = workflow.faculty_decision(actor, outpass_id, Decision(payload.decision), payload.reason)
    return _present(db, outpass, settings)


@router.put("/{outpass_id}/hod-approve", response_model=OutpassOut)
def hod_approve(
    outpass_id: str,
    payload: OutpassDecision,
    actor: Actor = Depends(require_roles(UserRole.hod)),
    workflow: OutpassWorkflow = Depends(get_workflow),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OutpassOut:
    outpass = workflow.hod_decision(actor, outpass_id, Decision(payload.decision), payload.reason)
    return _present(db, outpass, settings)


@router.put("/{outpass_id}/verify-parent", response_model=OutpassOut)
def verify_parent(
    outpass_id: str,
    actor: Actor = Depends(require_roles(UserRole.faculty, UserRole.hod)),
    workflow: OutpassWorkflow = Depends(get_workflow),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OutpassOut:
    return _present(db, workflow.verify_parent_contact(actor, outpass_id), settings)


@router.put("/{outpass_id}/exit", response_model=OutpassOut)
def record_exit(
    outpass_id: str,
    actor: Actor = Depends(require_roles(UserRole.security)),
    workflow: OutpassWorkflow = Depends(get_workflow),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OutpassOut:
    return _present(db, workflow.record_exit(actor, outpass_id), settings)


@router.put("/{outpass_id}/return", response_model=OutpassOut)
def record_return(
    outpass_id: str,
    actor: Actor = Depends(require_roles(UserRole.security)),
    workflow: OutpassWorkflow = Depends(get_workflow),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OutpassOut:
    return _present(db, workflow.record_return(actor, outpass_id), settings)
