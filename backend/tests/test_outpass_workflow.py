from datetime import datetime, timedelta, timezone
import logging
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import func, select

from app.core.exceptions import AuthorizationError, ConflictError, ValidationError
from app.models.activity_log import ActivityLog
from app.models.notification import Notification, NotificationType
from app.models.outpass import Outpass, OutpassStatus
from app.models.user import UserRole
from app.services import outpass_workflow
from app.services.email import EmailDeliveryError
from app.services.outpass_workflow import (
    CHECK_OUTPASS_STATUS,
    DEFAULT_REJECTION_REASON,
    ESCALATE_TO_HOD,
    Actor,
    Decision,
    OutpassApplication,
)

IST = ZoneInfo("Asia/Kolkata")


def at(hour: int, minute: int = 0, day: int = 19) -> datetime:
    return datetime(2026, 10, day, hour, minute, tzinfo=IST)


def application(**overrides) -> OutpassApplication:
    values = dict(
        reason_category="Medical",
        reason="Dental appointment",
        departure_at=at(11),
        return_at=at(13),
        alternate_contact="9555555555",
    )
    values.update(overrides)
    return OutpassApplication(**values)


def student(campus) -> Actor:
    return Actor(id=campus.student, role=UserRole.student)


def faculty(employee_id: str) -> Actor:
    return Actor(id=employee_id, role=UserRole.faculty)


def hod(employee_id: str) -> Actor:
    return Actor(id=employee_id, role=UserRole.hod)


def _approved(workflow, campus) -> Outpass:
    outpass = workflow.create(student(campus), application())
    workflow.faculty_decision(faculty(campus.mentor_one), outpass.id, Decision.approve)
    return workflow.hod_decision(hod(campus.hod), outpass.id, Decision.approve)


def test_create_records_snapshot_and_notifies_targets(workflow, campus, scheduler, transport, db):
    outpass = workflow.create(student(campus), application())

    assert outpass.status == OutpassStatus.pending_faculty
    assert outpass.notified_faculty_ids == [campus.mentor_one, campus.mentor_two, campus.free_faculty]
    assert outpass.attendance_at_apply == 72.5
    assert outpass.alternate_contact == "9555555555"
    assert scheduler.scheduled == [(timedelta(minutes=15), CHECK_OUTPASS_STATUS, {"outpass_id": outpass.id})]

    assert sorted(transport.emailed()) == [
        "free.faculty@campus.test",
        "mentor.one@campus.test",
        "mentor.two@campus.test",
    ]
    assert len(transport.calls) == 3

    in_app = db.scalars(
        select(Notification.recipient_id).where(Notification.notification_type == NotificationType.new_request)
    ).all()
    assert sorted(in_app) == sorted(outpass.notified_faculty_ids)
    assert db.scalar(select(ActivityLog.action).where(ActivityLog.entity_id == outpass.id)) == "outpass.create"


def test_naive_times_are_read_as_campus_local(workflow, campus):
    outpass = workflow.create(
        student(campus),
        application(departure_at=datetime(2026, 10, 19, 11, 0), return_at=datetime(2026, 10, 19, 12, 0)),
    )
    stored = outpass.departure_at.replace(tzinfo=timezone.utc) if outpass.departure_at.tzinfo is None else outpass.departure_at
    assert stored == at(11).astimezone(timezone.utc)


def test_return_exactly_at_cutoff_is_accepted(workflow, campus):
    outpass = workflow.create(student(campus), application(departure_at=at(20), return_at=at(21)))
    assert outpass.status == OutpassStatus.pending_faculty


@pytest.mark.parametrize(
    ("departure", "returning"),
    [
        (at(13), at(11)),
        (at(20), at(21, 30)),
        (at(11, day=20), at(12, day=20)),
    ],
    ids=["departure-after-return", "after-cutoff", "another-day"],
)
def test_invalid_window_creates_nothing(workflow, campus, scheduler, transport, db, departure, returning):
    with pytest.raises(ValidationError):
        workflow.create(student(campus), application(departure_at=departure, return_at=returning))

    assert db.scalar(select(func.count(Outpass.id))) == 0
    assert scheduler.scheduled == []
    assert transport.messages == []


def test_blank_reason_is_rejected(workflow, campus):
    with pytest.raises(ValidationError):
        workflow.create(student(campus), application(reason="   "))


def test_validate_application_trims_text_and_normalises_times(workflow):
    checked = workflow.validate_application(application(reason_category=" Medical ", reason=" Dental appointment  "))

    assert (checked.reason_category, checked.reason) == ("Medical", "Dental appointment")
    assert checked.departure_at == at(11).astimezone(timezone.utc)

    with pytest.raises(ValidationError, match="Reason category and reason are required"):
        workflow.validate_application(application(reason_category="\t"))


def test_only_students_can_apply(workflow, campus):
    with pytest.raises(AuthorizationError):
        workflow.create(faculty(campus.mentor_one), application())


def test_create_falls_back_to_department_hod(monkeypatch, caplog, workflow, campus, transport):
    monkeypatch.setattr(outpass_workflow, "resolve_notification_targets", lambda *args, **kwargs: [])

    with caplog.at_level(logging.WARNING, logger="app.services.outpass_workflow"):
        outpass = workflow.create(student(campus), application())

    assert outpass.notified_faculty_ids == [campus.hod]
    assert transport.emailed() == ["head.cse@campus.test"]
    assert "escalating notification to HOD" in caplog.text


def test_create_without_any_target_still_succeeds(monkeypatch, caplog, workflow, campus, transport):
    monkeypatch.setattr(outpass_workflow, "resolve_notification_targets", lambda *args, **kwargs: [])
    monkeypatch.setattr(outpass_workflow, "department_hods", lambda *args, **kwargs: [])

    with caplog.at_level(logging.WARNING, logger="app.services.outpass_workflow"):
        outpass = workflow.create(student(campus), application())

    assert outpass.status == OutpassStatus.pending_faculty
    assert outpass.notified_faculty_ids == []
    assert transport.messages == []
    assert "has no notified faculty" in caplog.text


def test_scheduler_failure_does_not_undo_creation(workflow, campus, scheduler, db):
    scheduler.fail = True

    outpass = workflow.create(student(campus), application())

    assert db.get(Outpass, outpass.id).status == OutpassStatus.pending_faculty


def test_channel_failure_does_not_undo_creation(workflow, campus, transport):
    transport.message_error = EmailDeliveryError("SMTP is not configured")

    outpass = workflow.create(student(campus), application())

    assert outpass.status == OutpassStatus.pending_faculty
    assert transport.messages == []
    assert len(transport.calls) == 3


def test_faculty_approval_moves_to_hod_and_verifies_parent(workflow, campus, scheduler):
    outpass = workflow.create(student(campus), application())

    result = workflow.faculty_decision(faculty(campus.mentor_two), outpass.id, Decision.approve)

    assert result.status == OutpassStatus.pending_hod
    assert result.faculty_approver_id == campus.mentor_two
    assert result.parent_contact_verified is True
    assert result.parent_contact_verified_by_id == campus.mentor_two
    assert scheduler.scheduled[-1] == (timedelta(0), ESCALATE_TO_HOD, {"outpass_id": outpass.id})


def test_second_faculty_decision_conflicts_and_keeps_first_approver(workflow, campus, db):
    outpass = workflow.create(student(campus), application())
    workflow.faculty_decision(faculty(campus.mentor_one), outpass.id, Decision.approve)

    with pytest.raises(ConflictError) as exc_info:
        workflow.faculty_decision(faculty(campus.mentor_two), outpass.id, Decision.reject)

    assert exc_info.value.current_status == "pending_hod"
    db.expire_all()
    stored = db.get(Outpass, outpass.id)
    assert stored.faculty_approver_id == campus.mentor_one
    assert stored.status == OutpassStatus.pending_hod


def test_faculty_rejection_uses_default_reason_and_tells_student(workflow, campus, scheduler, db):
    outpass = workflow.create(student(campus), application())

    result = workflow.faculty_decision(faculty(campus.mentor_one), outpass.id, Decision.reject, "  ")

    assert result.status == OutpassStatus.rejected
    assert result.rejection_reason == DEFAULT_REJECTION_REASON
    assert ESCALATE_TO_HOD not in scheduler.job_types()
    types = db.scalars(select(Notification.notification_type).where(Notification.recipient_id == campus.student)).all()
    assert types == [NotificationType.rejected]


def test_faculty_outside_department_cannot_decide(workflow, campus):
    outpass = workflow.create(student(campus), application())

    with pytest.raises(AuthorizationError):
        workflow.faculty_decision(faculty(campus.ece_faculty), outpass.id, Decision.approve)


def test_hod_cannot_act_before_faculty(workflow, campus):
    outpass = workflow.create(student(campus), application())

    with pytest.raises(ConflictError) as exc_info:
        workflow.hod_decision(hod(campus.hod), outpass.id, Decision.approve)

    assert exc_info.value.current_status == "pending_faculty"


def test_hod_approval_is_final_and_single(workflow, campus, db):
    outpass = _approved(workflow, campus)

    assert outpass.status == OutpassStatus.approved
    assert outpass.hod_approver_id == campus.hod
    with pytest.raises(ConflictError):
        workflow.hod_decision(hod(campus.hod), outpass.id, Decision.reject)
    types = db.scalars(select(Notification.notification_type).where(Notification.recipient_id == campus.student)).all()
    assert types == [NotificationType.approved]


def test_hod_rejection_records_reason(workflow, campus):
    outpass = workflow.create(student(campus), application())
    workflow.faculty_decision(faculty(campus.mentor_one), outpass.id, Decision.approve)

    result = workflow.hod_decision(hod(campus.hod), outpass.id, Decision.reject, "Exams tomorrow")

    assert result.status == OutpassStatus.rejected
    assert result.rejection_reason == "Exams tomorrow"
    assert result.faculty_approver_id == campus.mentor_one


def test_hod_of_other_department_is_refused(workflow, campus):
    outpass = workflow.create(student(campus), application())
    workflow.faculty_decision(faculty(campus.mentor_one), outpass.id, Decision.approve)

    with pytest.raises(AuthorizationError):
        workflow.hod_decision(hod(campus.ece_hod), outpass.id, Decision.approve)


def test_faculty_role_cannot_take_hod_decision(workflow, campus):
    outpass = workflow.create(student(campus), application())
    workflow.faculty_decision(faculty(campus.mentor_one), outpass.id, Decision.approve)

    with pytest.raises(AuthorizationError):
        workflow.hod_decision(faculty(campus.mentor_one), outpass.id, Decision.approve)


@pytest.mark.parametrize("advance_to_hod", [False, True], ids=["pending-faculty", "pending-hod"])
def test_student_can_cancel_pending_outpass(workflow, campus, advance_to_hod):
    outpass = workflow.create(student(campus), application())
    if advance_to_hod:
        workflow.faculty_decision(faculty(campus.mentor_one), outpass.id, Decision.approve)

    result = workflow.cancel(student(campus), outpass.id)

    assert result.status == OutpassStatus.cancelled_by_student
    assert result.cancelled_at is not None
    with pytest.raises(ConflictError):
        workflow.faculty_decision(faculty(campus.mentor_one), outpass.id, Decision.approve)


def test_cancel_after_approval_conflicts(workflow, campus):
    outpass = _approved(workflow, campus)

    with pytest.raises(ConflictError):
        workflow.cancel(student(campus), outpass.id)


def test_only_owner_can_cancel(workflow, campus):
    outpass = workflow.create(student(campus), application())

    with pytest.raises(AuthorizationError):
        workflow.cancel(Actor(id=campus.other_student, role=UserRole.student), outpass.id)


def test_manual_parent_verification_survives_faculty_approval(workflow, campus):
    outpass = workflow.create(student(campus), application())

    verified = workflow.verify_parent_contact(faculty(campus.busy_faculty), outpass.id)
    first_verified_at = verified.parent_contact_verified_at
    again = workflow.verify_parent_contact(faculty(campus.mentor_two), outpass.id)
    approved = workflow.faculty_decision(faculty(campus.mentor_one), outpass.id, Decision.approve)

    assert again.parent_contact_verified_by_id == campus.busy_faculty
    assert approved.parent_contact_verified_by_id == campus.busy_faculty
    assert approved.parent_contact_verified_at == first_verified_at
    assert approved.faculty_approver_id == campus.mentor_one


def test_parent_verification_on_decided_outpass_conflicts(workflow, campus):
    outpass = workflow.create(student(campus), application())
    workflow.faculty_decision(faculty(campus.mentor_one), outpass.id, Decision.reject)

    with pytest.raises(ConflictError):
        workflow.verify_parent_contact(faculty(campus.mentor_two), outpass.id)


def test_checkpoint_records_exit_and_return_once(workflow, campus):
    guard = Actor(id=campus.guard, role=UserRole.security)
    pending = workflow.create(Actor(id=campus.other_student, role=UserRole.student), application())
    with pytest.raises(ConflictError):
        workflow.record_exit(guard, pending.id)

    outpass = _approved(workflow, campus)
    exited = workflow.record_exit(guard, outpass.id)
    assert exited.status == OutpassStatus.exited
    assert exited.exit_verified_by_id == campus.guard

    returned = workflow.record_return(guard, outpass.id)
    assert returned.returned_at is not None
    assert returned.return_verified_by_id == campus.guard
    with pytest.raises(ConflictError):
        workflow.record_return(guard, outpass.id)


def test_checkpoint_requires_security_role(workflow, campus):
    outpass = _approved(workflow, campus)

    with pytest.raises(AuthorizationError):
        workflow.record_exit(hod(campus.hod), outpass.id)
