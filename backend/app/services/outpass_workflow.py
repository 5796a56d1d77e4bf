"""Outpass lifecycle.

    pending_faculty -> pending_hod -> approved -> exited
           |               |
           +--> rejected <-+
           +--> cancelled_by_student (from either pending state)

Every transition is a single guarded ``UPDATE ... WHERE status = :expected``.
A zero rowcount means another request won the race and surfaces as
:class:`ConflictError`. Notifications and job scheduling happen after the
commit and can never roll a transition back.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Any, Callable, Iterable

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from app.core.celery_app import CHECK_OUTPASS_STATUS, ESCALATE_TO_HOD
from app.core.config import Settings
from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, SchedulingError, ValidationError
from app.models.employee import Employee
from app.models.notification import NotificationType
from app.models.outpass import PENDING_STATUSES, Outpass, OutpassNotifiedFaculty, OutpassStatus
from app.models.school_class import SchoolClass
from app.models.student import Student
from app.models.user import UserRole
from app.services.audit import log_activity
from app.services.campus_time import as_utc, campus_zone, local_day_cutoff, utc_now
from app.services.job_scheduler import JobScheduler
from app.services.notification_dispatcher import NotificationDispatcher, OutpassBrief, Recipient
from app.services.notification_targets import department_hods, resolve_notification_targets
from app.services.notifications import notify_recipients

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Rejected without a stated reason"

FACULTY_DECISION_ROLES = frozenset({UserRole.faculty, UserRole.hod})


@dataclass(frozen=True)
class Actor:
    id: str
    role: UserRole


class Decision(str, Enum):
    approve = "approve"
    reject = "reject"


@dataclass
class OutpassApplication:
    reason_category: str
    reason: str
    departure_at: datetime
    return_at: datetime
    alternate_contact: str | None = None
    supporting_document_url: str | None = None


class OutpassWorkflow:
    def __init__(
        self,
        db: Session,
        *,
        scheduler: JobScheduler,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = db
        self._scheduler = scheduler
        self._dispatcher = dispatcher
        self._settings = settings
        self._now = now
        self._zone = campus_zone(settings.institution_timezone)

    # -- creation -----------------------------------------------------------

    def validate_window(self, departure_at: datetime, return_at: datetime) -> tuple[datetime, datetime]:
        """Normalise both timestamps to UTC and enforce same-day, pre-cutoff bounds.

        Naive timestamps are read as campus-local wall-clock time.
        """
        departure = self._aware(departure_at)
        returning = self._aware(return_at)
        if departure > returning:
            raise ValidationError("Departure time must not be after return time")

        today = self._now().astimezone(self._zone).date()
        local_departure = departure.astimezone(self._zone)
        local_return = returning.astimezone(self._zone)
        if local_departure.date() != today or local_return.date() != today:
            raise ValidationError(
                "Outpass must start and end on the current day",
                details={"date": today.isoformat()},
            )

        cutoff = local_day_cutoff(today, self._settings.day_end_cutoff, self._zone)
        if local_return > cutoff:
            raise ValidationError(
                f"Return time must be on or before {self._settings.day_end_cutoff}",
                details={"cutoff": cutoff.isoformat()},
            )
        return as_utc(departure), as_utc(returning)

    def validate_application(self, application: OutpassApplication) -> OutpassApplication:
        """Return a copy with trimmed text and UTC timestamps, or raise ValidationError."""
        reason_category = application.reason_category.strip()
        reason = application.reason.strip()
        if not reason_category or not reason:
            raise ValidationError("Reason category and reason are required")
        departure_at, return_at = self.validate_window(application.departure_at, application.return_at)
        return replace(
            application,
            reason_category=reason_category,
            reason=reason,
            departure_at=departure_at,
            return_at=return_at,
        )

    def create(self, actor: Actor, application: OutpassApplication) -> Outpass:
        if actor.role != UserRole.student:
            raise AuthorizationError("Only students can apply for an outpass")
        student = self._db.get(Student, actor.id)
        if student is None:
            raise NotFoundError("Student", actor.id)

        application = self.validate_application(application)

        outpass = Outpass(
            student_id=student.id,
            reason_category=application.reason_category,
            reason=application.reason,
            departure_at=application.departure_at,
            return_at=application.return_at,
            alternate_contact=(application.alternate_contact or "").strip() or None,
            supporting_document_url=application.supporting_document_url,
            attendance_at_apply=student.attendance_percentage,
            status=OutpassStatus.pending_faculty,
            created_at=self._now(),
        )

        targets = resolve_notification_targets(
            self._db,
            student=student,
            departure_at=application.departure_at,
            return_at=application.return_at,
            timezone_name=self._settings.institution_timezone,
        )
        if not targets:
            targets = self._fallback_targets(student)

        outpass.notified_links = [
            OutpassNotifiedFaculty(employee_id=target.id, position=index)
            for index, target in enumerate(targets)
        ]
        self._db.add(outpass)
        self._db.flush()

        notify_recipients(
            self._db,
            recipient_ids=[target.id for target in targets],
            title="New outpass request",
            message=f"{student.name} ({student.roll_number}) has requested an outpass: {application.reason_category}.",
            notification_type=NotificationType.new_request,
            outpass_id=outpass.id,
            created_at=self._now(),
        )
        log_activity(
            self._db,
            actor=actor,
            action="outpass.create",
            entity_type="outpass",
            entity_id=outpass.id,
            details={"notified_faculty": [target.id for target in targets]},
        )

        recipients = [Recipient.from_employee(target) for target in targets]
        brief = OutpassBrief.from_records(student, outpass)
        self._db.commit()
        self._db.refresh(outpass)

        self._schedule(
            timedelta(minutes=self._settings.faculty_recheck_delay_minutes),
            CHECK_OUTPASS_STATUS,
            {"outpass_id": outpass.id},
        )
        self._fan_out(recipients, brief)
        return outpass

    def _fallback_targets(self, student: Student) -> list[Employee]:
        school_class = self._db.get(SchoolClass, student.class_id)
        hods = department_hods(self._db, school_class.department_id) if school_class is not None else []
        if hods:
            logger.warning(
                "No faculty available for student %s; escalating notification to HOD(s) %s",
                student.id,
                [item.id for item in hods],
            )
        else:
            logger.warning("No notification targets found for student %s; outpass has no notified faculty", student.id)
        return hods

    # -- decisions ----------------------------------------------------------

    def faculty_decision(
        self,
        actor: Actor,
        outpass_id: str,
        decision: Decision,
        reason: str | None = None,
    ) -> Outpass:
        if actor.role not in FACULTY_DECISION_ROLES:
            raise AuthorizationError("Only faculty can take the faculty decision")
        outpass = self._get_outpass(outpass_id)
        employee = self._get_employee(actor.id)
        if employee.id not in outpass.notified_faculty_ids:
            self._require_same_department(employee, outpass)
        self._require_status(outpass, {OutpassStatus.pending_faculty}, "Outpass cannot be approved by faculty at this stage")

        now = self._now()
        values: dict[str, Any] = {
            "faculty_approver_id": func.coalesce(Outpass.faculty_approver_id, employee.id),
            "faculty_decided_at": now,
            "updated_at": now,
        }
        if decision == Decision.approve:
            values["status"] = OutpassStatus.pending_hod
            # An earlier manual verification record wins over the implicit one.
            already_verified = Outpass.parent_contact_verified.is_(True)
            values["parent_contact_verified"] = True
            values["parent_contact_verified_by_id"] = case(
                (already_verified, Outpass.parent_contact_verified_by_id),
                else_=employee.id,
            )
            values["parent_contact_verified_at"] = case(
                (already_verified, Outpass.parent_contact_verified_at),
                else_=now,
            )
        else:
            values["status"] = OutpassStatus.rejected
            values["rejection_reason"] = (reason or "").strip() or DEFAULT_REJECTION_REASON

        self._guarded_update(
            outpass_id,
            {OutpassStatus.pending_faculty},
            values,
            conflict_message="Outpass cannot be approved by faculty at this stage",
        )
        log_activity(
            self._db,
            actor=actor,
            action=f"outpass.faculty.{decision.value}",
            entity_type="outpass",
            entity_id=outpass_id,
        )
        if decision == Decision.reject:
            self._notify_student(outpass, NotificationType.rejected, "Your outpass was rejected by faculty.")
        self._db.commit()
        self._db.refresh(outpass)

        if decision == Decision.approve:
            self._schedule(timedelta(0), ESCALATE_TO_HOD, {"outpass_id": outpass_id})
        return outpass

    def hod_decision(
        self,
        actor: Actor,
        outpass_id: str,
        decision: Decision,
        reason: str | None = None,
    ) -> Outpass:
        if actor.role != UserRole.hod:
            raise AuthorizationError("Only the HOD can take the final decision")
        outpass = self._get_outpass(outpass_id)
        employee = self._get_employee(actor.id)
        self._require_same_department(employee, outpass)
        self._require_status(outpass, {OutpassStatus.pending_hod}, "Outpass cannot be approved by HOD at this stage")

        now = self._now()
        values: dict[str, Any] = {
            "hod_approver_id": func.coalesce(Outpass.hod_approver_id, employee.id),
            "hod_decided_at": now,
            "updated_at": now,
        }
        if decision == Decision.approve:
            values["status"] = OutpassStatus.approved
        else:
            values["status"] = OutpassStatus.rejected
            values["rejection_reason"] = (reason or "").strip() or DEFAULT_REJECTION_REASON

        self._guarded_update(
            outpass_id,
            {OutpassStatus.pending_hod},
            values,
            conflict_message="Outpass cannot be approved by HOD at this stage",
        )
        log_activity(
            self._db,
            actor=actor,
            action=f"outpass.hod.{decision.value}",
            entity_type="outpass",
            entity_id=outpass_id,
        )
        if decision == Decision.approve:
            self._notify_student(outpass, NotificationType.approved, "Your outpass has been approved.")
        else:
            self._notify_student(outpass, NotificationType.rejected, "Your outpass was rejected by the HOD.")
        self._db.commit()
        self._db.refresh(outpass)
        return outpass

    def cancel(self, actor: Actor, outpass_id: str) -> Outpass:
        if actor.role != UserRole.student:
            raise AuthorizationError("Only the owning student can cancel an outpass")
        outpass = self._get_outpass(outpass_id)
        if outpass.student_id != actor.id:
            raise AuthorizationError("Only the owning student can cancel an outpass")
        self._require_status(outpass, PENDING_STATUSES, "Only pending outpasses can be cancelled")

        now = self._now()
        self._guarded_update(
            outpass_id,
            PENDING_STATUSES,
            {"status": OutpassStatus.cancelled_by_student, "cancelled_at": now, "updated_at": now},
            conflict_message="Only pending outpasses can be cancelled",
        )
        log_activity(self._db, actor=actor, action="outpass.cancel", entity_type="outpass", entity_id=outpass_id)
        self._db.commit()
        self._db.refresh(outpass)
        return outpass

    # -- verification records ------------------------------------------------

    def verify_parent_contact(self, actor: Actor, outpass_id: str) -> Outpass:
        if actor.role not in FACULTY_DECISION_ROLES:
            raise AuthorizationError("Only faculty can verify parent contact")
        outpass = self._get_outpass(outpass_id)
        employee = self._get_employee(actor.id)
        if employee.id not in outpass.notified_faculty_ids:
            self._require_same_department(employee, outpass)
        if outpass.parent_contact_verified:
            return outpass
        self._require_status(outpass, PENDING_STATUSES, "Parent contact can only be verified on a pending outpass")

        now = self._now()
        result = self._db.execute(
            update(Outpass)
            .where(
                Outpass.id == outpass_id,
                Outpass.status.in_(PENDING_STATUSES),
                Outpass.parent_contact_verified.is_(False),
            )
            .values(
                parent_contact_verified=True,
                parent_contact_verified_by_id=employee.id,
                parent_contact_verified_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._db.rollback()
            self._db.refresh(outpass)
            if outpass.parent_contact_verified:
                return outpass
            raise ConflictError(
                "Parent contact can only be verified on a pending outpass",
                current_status=outpass.status.value,
            )
        log_activity(
            self._db,
            actor=actor,
            action="outpass.parent_contact.verify",
            entity_type="outpass",
            entity_id=outpass_id,
        )
        self._db.commit()
        self._db.refresh(outpass)
        return outpass

    def record_exit(self, actor: Actor, outpass_id: str) -> Outpass:
        if actor.role != UserRole.security:
            raise AuthorizationError("Only security staff can record an exit")
        outpass = self._get_outpass(outpass_id)
        self._require_status(outpass, {OutpassStatus.approved}, "Only approved outpasses can exit")
        now = self._now()
        self._guarded_update(
            outpass_id,
            {OutpassStatus.approved},
            {"status": OutpassStatus.exited, "exit_verified_by_id": actor.id, "exited_at": now, "updated_at": now},
            conflict_message="Only approved outpasses can exit",
        )
        log_activity(self._db, actor=actor, action="outpass.exit", entity_type="outpass", entity_id=outpass_id)
        self._db.commit()
        self._db.refresh(outpass)
        return outpass

    def record_return(self, actor: Actor, outpass_id: str) -> Outpass:
        if actor.role != UserRole.security:
            raise AuthorizationError("Only security staff can record a return")
        outpass = self._get_outpass(outpass_id)
        self._require_status(outpass, {OutpassStatus.exited}, "Only exited outpasses can record a return")
        if outpass.returned_at is not None:
            raise ConflictError("Return already recorded", current_status=outpass.status.value)
        now = self._now()
        result = self._db.execute(
            update(Outpass)
            .where(
                Outpass.id == outpass_id,
                Outpass.status == OutpassStatus.exited,
                Outpass.returned_at.is_(None),
            )
            .values(return_verified_by_id=actor.id, returned_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._db.rollback()
            raise ConflictError("Return already recorded", current_status=outpass.status.value)
        log_activity(self._db, actor=actor, action="outpass.return", entity_type="outpass", entity_id=outpass_id)
        self._db.commit()
        self._db.refresh(outpass)
        return outpass

    # -- helpers ------------------------------------------------------------

    def _aware(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=self._zone)
        return value

    def _get_outpass(self, outpass_id: str) -> Outpass:
        outpass = self._db.get(Outpass, outpass_id)
        if outpass is None:
            raise NotFoundError("Outpass", outpass_id)
        return outpass

    def _get_employee(self, employee_id: str) -> Employee:
        employee = self._db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    def _require_same_department(self, employee: Employee, outpass: Outpass) -> None:
        department_id = self._db.execute(
            select(SchoolClass.department_id)
            .join(Student, Student.class_id == SchoolClass.id)
            .where(Student.id == outpass.student_id)
        ).scalar_one_or_none()
        if department_id != employee.department_id:
            raise AuthorizationError("Outpass belongs to a student outside your department")

    @staticmethod
    def _require_status(outpass: Outpass, allowed: Iterable[OutpassStatus], message: str) -> None:
        if outpass.status not in set(allowed):
            raise ConflictError(message, current_status=outpass.status.value)

    def _guarded_update(
        self,
        outpass_id: str,
        expected: Iterable[OutpassStatus],
        values: dict[str, Any],
        *,
        conflict_message: str,
    ) -> None:
        result = self._db.execute(
            update(Outpass)
            .where(Outpass.id == outpass_id, Outpass.status.in_(list(expected)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        self._db.rollback()
        current = self._db.execute(select(Outpass.status).where(Outpass.id == outpass_id)).scalar_one_or_none()
        if current is None:
            raise NotFoundError("Outpass", outpass_id)
        raise ConflictError(conflict_message, current_status=current.value)

    def _notify_student(self, outpass: Outpass, notification_type: NotificationType, message: str) -> None:
        notify_recipients(
            self._db,
            recipient_ids=[outpass.student_id],
            title="Outpass status updated",
            message=message,
            notification_type=notification_type,
            outpass_id=outpass.id,
            created_at=self._now(),
        )

    def _schedule(self, delay: timedelta, job_type: str, payload: dict[str, Any]) -> None:
        try:
            self._scheduler.schedule(delay, job_type, payload)
        except SchedulingError:
            logger.warning("Scheduling %s failed for %s", job_type, payload, exc_info=True)
        except Exception:
            logger.exception("Unexpected scheduler failure for %s %s", job_type, payload)

    def _fan_out(self, recipients: list[Recipient], brief: OutpassBrief) -> None:
        if not recipients:
            return
        try:
            self._dispatcher.enqueue(recipients, brief)
        except Exception:
            logger.exception("Unable to queue notifications for outpass %s", brief.outpass_id)
