"""Delayed and recurring jobs that chase pending outpasses.

Handlers run outside any request, open their own session and never raise:
failures are logged and the next run picks up where this one left off.
"""
from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.celery_app import CHECK_OUTPASS_STATUS, ESCALATE_TO_HOD, NOTIFY_PENDING_HOD_REQUESTS
from app.core.config import Settings, get_settings
from app.models.employee import Employee
from app.models.notification import NotificationType
from app.models.outpass import Outpass, OutpassStatus
from app.models.school_class import SchoolClass
from app.models.student import Student
from app.services.campus_time import as_utc, utc_now
from app.services.job_scheduler import JobRegistry, JobScheduler
from app.services.notification_dispatcher import NotificationDispatcher, OutpassBrief, Recipient
from app.services.notification_targets import department_hods
from app.services.notifications import create_notification, last_notified_at, notify_recipients

logger = logging.getLogger(__name__)


class EscalationJobs:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: NotificationDispatcher,
        settings: Settings,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._settings = settings
        self._now = now

    def shutdown(self) -> None:
        self._dispatcher.shutdown()

    def check_outpass_status(self, payload: dict[str, Any]) -> list[str]:
        """Remind the faculty notified at creation if nobody has acted yet."""
        outpass_id = payload.get("outpass_id")
        if not outpass_id:
            logger.warning("check_outpass_status called without an outpass_id: %s", payload)
            return []
        try:
            with self._session_factory() as db:
                outpass = db.get(Outpass, outpass_id)
                if outpass is None:
                    logger.info("Outpass %s no longer exists; reminder skipped", outpass_id)
                    return []
                if outpass.status != OutpassStatus.pending_faculty:
                    logger.info("Outpass %s is %s; reminder not needed", outpass_id, outpass.status.value)
                    return []

                notified_ids = outpass.notified_faculty_ids
                if not notified_ids:
                    logger.warning("Outpass %s is still pending but has nobody to remind", outpass_id)
                    return []
                employees = {
                    item.id: item
                    for item in db.execute(select(Employee).where(Employee.id.in_(notified_ids))).scalars()
                }
                targets = [employees[item] for item in notified_ids if item in employees]
                student = db.get(Student, outpass.student_id)

                notify_recipients(
                    db,
                    recipient_ids=[item.id for item in targets],
                    title="Outpass request still pending",
                    message=f"The outpass request from {student.name} is still awaiting your decision.",
                    notification_type=NotificationType.reminder,
                    outpass_id=outpass.id,
                    created_at=self._now(),
                )
                recipients = [Recipient.from_employee(item) for item in targets]
                brief = OutpassBrief.from_records(student, outpass)
                db.commit()

            logger.info("Re-notifying %d faculty for pending outpass %s", len(recipients), outpass_id)
            self._dispatcher.enqueue(recipients, brief)
            return [item.id for item in recipients]
        except Exception:
            logger.exception("check_outpass_status failed for outpass %s", outpass_id)
            return []

    def sweep_pending_hod(self, payload: dict[str, Any] | None = None) -> list[str]:
        """Send every HOD with pending_hod work a summary, at most once per dedup window."""
        notified: list[str] = []
        try:
            with self._session_factory() as db:
                counts = db.execute(
                    select(SchoolClass.department_id, func.count(Outpass.id))
                    .join(Student, Student.class_id == SchoolClass.id)
                    .join(Outpass, Outpass.student_id == Student.id)
                    .where(Outpass.status == OutpassStatus.pending_hod)
                    .group_by(SchoolClass.department_id)
                ).all()
                for department_id, pending_count in counts:
                    for hod in department_hods(db, department_id):
                        if self._notify_hod(db, hod, pending_count):
                            notified.append(hod.id)
        except Exception:
            logger.exception("HOD pending sweep failed")
        if notified:
            logger.info("HOD summary sent to %s", notified)
        return notified

    def escalate_to_hod(self, payload: dict[str, Any]) -> list[str]:
        """Tell the department HOD(s) straight away once faculty approves."""
        outpass_id = payload.get("outpass_id")
        if not outpass_id:
            logger.warning("escalate_to_hod called without an outpass_id: %s", payload)
            return []
        notified: list[str] = []
        try:
            with self._session_factory() as db:
                outpass = db.get(Outpass, outpass_id)
                if outpass is None or outpass.status != OutpassStatus.pending_hod:
                    logger.info("Outpass %s is not awaiting the HOD; escalation skipped", outpass_id)
                    return []
                department_id = db.execute(
                    select(SchoolClass.department_id)
                    .join(Student, Student.class_id == SchoolClass.id)
                    .where(Student.id == outpass.student_id)
                ).scalar_one_or_none()
                if department_id is None:
                    logger.warning("Cannot resolve department for outpass %s", outpass_id)
                    return []
                pending_count = db.execute(
                    select(func.count(Outpass.id))
                    .join(Student, Student.id == Outpass.student_id)
                    .join(SchoolClass, SchoolClass.id == Student.class_id)
                    .where(
                        Outpass.status == OutpassStatus.pending_hod,
                        SchoolClass.department_id == department_id,
                    )
                ).scalar_one()
                hods = department_hods(db, department_id)
                if not hods:
                    logger.warning("Department %s has no HOD to escalate outpass %s to", department_id, outpass_id)
                for hod in hods:
                    if self._notify_hod(db, hod, pending_count):
                        notified.append(hod.id)
        except Exception:
            logger.exception("escalate_to_hod failed for outpass %s", outpass_id)
        return notified

    def _notify_hod(self, db: Session, hod: Employee, pending_count: int) -> bool:
        now = self._now()
        try:
            last = as_utc(last_notified_at(db, recipient_id=hod.id, notification_type=NotificationType.hod_summary))
            window = timedelta(minutes=self._settings.hod_notification_dedup_minutes)
            if last is not None and as_utc(now) - last < window:
                logger.info("HOD %s was notified at %s; summary suppressed", hod.id, last.isoformat())
                return False
            create_notification(
                db,
                recipient_id=hod.id,
                title="Pending outpass requests",
                message=f"{pending_count} outpass request(s) are awaiting your approval.",
                notification_type=NotificationType.hod_summary,
                created_at=now,
            )
            recipient = Recipient.from_employee(hod)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to record HOD summary for %s", hod.id)
            return False
        self._dispatcher.enqueue_hod_summary(recipient, pending_count)
        return True


def register_escalation_jobs(registry: JobRegistry, jobs: EscalationJobs) -> None:
    registry.register(CHECK_OUTPASS_STATUS, jobs.check_outpass_status)
    registry.register(NOTIFY_PENDING_HOD_REQUESTS, jobs.sweep_pending_hod)
    registry.register(ESCALATE_TO_HOD, jobs.escalate_to_hod)


def start_escalation_schedule(scheduler: JobScheduler, settings: Settings) -> None:
    scheduler.schedule_recurring(
        timedelta(minutes=settings.hod_sweep_interval_minutes),
        NOTIFY_PENDING_HOD_REQUESTS,
    )


def register_default_jobs(registry: JobRegistry) -> EscalationJobs:
    from app.db.session import SessionLocal

    settings = get_settings()
    dispatcher = NotificationDispatcher(
        timezone_name=settings.institution_timezone,
        max_workers=settings.dispatch_max_workers,
    )
    jobs = EscalationJobs(SessionLocal, dispatcher, settings)
    register_escalation_jobs(registry, jobs)
    return jobs
