from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from app.models.employee import Employee
from app.models.user import UserRole
from app.services.dashboards import (
    current_student_outpass,
    faculty_dashboard,
    hod_dashboard,
    is_emergency,
    is_low_attendance,
    pending_for_employee,
)
from app.services.outpass_workflow import Actor, Decision, OutpassApplication

IST = ZoneInfo("Asia/Kolkata")
THRESHOLD = 75.0


def _apply(workflow, student_id, category="Medical"):
    return workflow.create(
        Actor(id=student_id, role=UserRole.student),
        OutpassApplication(
            reason_category=category,
            reason="Needs to leave campus",
            departure_at=datetime(2026, 10, 19, 11, 0, tzinfo=IST),
            return_at=datetime(2026, 10, 19, 13, 0, tzinfo=IST),
        ),
    )


def test_attendance_and_emergency_flags():
    assert is_low_attendance(72.5, THRESHOLD) is True
    assert is_low_attendance(75.0, THRESHOLD) is False
    assert is_low_attendance(None, THRESHOLD) is False
    assert is_emergency(" Emergency ") is True
    assert is_emergency("Medical") is False


def test_faculty_dashboard_counts_and_alerts(workflow, campus, db):
    _apply(workflow, campus.student, category="Emergency")
    routine = _apply(workflow, campus.other_student)
    workflow.faculty_decision(Actor(id=campus.mentor_one, role=UserRole.faculty), routine.id, Decision.approve)

    dashboard = faculty_dashboard(db, db.get(Employee, campus.mentor_one), zone=IST, threshold=THRESHOLD)

    assert dashboard.faculty.is_mentor is True
    assert dashboard.faculty.mentor_class == "CSE-A"
    assert dashboard.faculty.class_student_count == 2
    assert dashboard.faculty.department == "Computer Science"
    assert dashboard.stats.pending_requests == 1
    assert dashboard.stats.approved_requests == 1
    assert dashboard.stats.rejected_requests == 0

    [request] = dashboard.recent_pending_requests
    assert request.student_name == "Asha Kumar"
    assert request.urgency == "HIGH"
    assert request.low_attendance is True
    assert request.exit_time == "11:00 AM"
    assert request.return_time == "1:00 PM"
    assert request.parent_phone == "9222222222"
    assert [alert.message for alert in dashboard.urgent_alerts] == ["Emergency request from Asha Kumar (CSE21001)"]


def test_non_mentor_sorting_by_class_falls_back_to_department(workflow, campus, db):
    _apply(workflow, campus.student)

    dashboard = faculty_dashboard(
        db,
        db.get(Employee, campus.free_faculty),
        zone=IST,
        threshold=THRESHOLD,
        my_class_only=True,
    )

    assert dashboard.faculty.is_mentor is False
    assert len(dashboard.recent_pending_requests) == 1


def test_hod_dashboard_tracks_today_decisions(workflow, campus, db, clock):
    first = _apply(workflow, campus.student)
    second = _apply(workflow, campus.other_student)
    mentor = Actor(id=campus.mentor_one, role=UserRole.faculty)
    workflow.faculty_decision(mentor, first.id, Decision.approve)
    workflow.faculty_decision(mentor, second.id, Decision.approve)

    hod = db.get(Employee, campus.hod)
    before = hod_dashboard(db, hod, now=clock(), zone=IST, threshold=THRESHOLD)
    assert before.stats.pending_approvals == 2
    assert before.stats.total_faculty == 4
    assert before.hod.total_students == 2
    assert {item.faculty_approver_name for item in before.recent_pending_approvals} == {"Mentor One"}

    hod_actor = Actor(id=campus.hod, role=UserRole.hod)
    workflow.hod_decision(hod_actor, first.id, Decision.approve)
    workflow.hod_decision(hod_actor, second.id, Decision.reject, "Exams")

    after = hod_dashboard(db, hod, now=clock(), zone=IST, threshold=THRESHOLD)
    assert after.stats.pending_approvals == 0
    assert after.stats.approved_today == 1
    assert after.stats.rejected_today == 1

    tomorrow = hod_dashboard(db, hod, now=clock() + timedelta(days=1), zone=IST, threshold=THRESHOLD)
    assert tomorrow.stats.approved_today == 0


def test_other_department_hod_sees_nothing(workflow, campus, db, clock):
    outpass = _apply(workflow, campus.student)
    workflow.faculty_decision(Actor(id=campus.mentor_one, role=UserRole.faculty), outpass.id, Decision.approve)

    dashboard = hod_dashboard(db, db.get(Employee, campus.ece_hod), now=clock(), zone=IST, threshold=THRESHOLD)

    assert dashboard.stats.pending_approvals == 0
    assert dashboard.recent_pending_approvals == []


def test_pending_lists_follow_stage_and_department(workflow, campus, db):
    outpass = _apply(workflow, campus.student)

    assert [item.id for item in pending_for_employee(db, db.get(Employee, campus.busy_faculty), threshold=THRESHOLD)] == [outpass.id]
    assert pending_for_employee(db, db.get(Employee, campus.ece_faculty), threshold=THRESHOLD) == []
    assert pending_for_employee(db, db.get(Employee, campus.hod), threshold=THRESHOLD) == []

    workflow.faculty_decision(Actor(id=campus.mentor_one, role=UserRole.faculty), outpass.id, Decision.approve)

    assert [item.id for item in pending_for_employee(db, db.get(Employee, campus.hod), threshold=THRESHOLD)] == [outpass.id]


def test_current_outpass_only_covers_today(workflow, campus, db, clock):
    outpass = _apply(workflow, campus.other_student)
    workflow.faculty_decision(Actor(id=campus.mentor_one, role=UserRole.faculty), outpass.id, Decision.approve)
    workflow.hod_decision(Actor(id=campus.hod, role=UserRole.hod), outpass.id, Decision.approve)

    today = current_student_outpass(db, campus.other_student, now=clock(), zone=IST, threshold=THRESHOLD)
    assert today.id == outpass.id
    assert today.low_attendance is False
    assert today.student.attendance_percentage == 91.0

    later = current_student_outpass(db, campus.other_student, now=clock() + timedelta(days=1), zone=IST, threshold=THRESHOLD)
    assert later is None
