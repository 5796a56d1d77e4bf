from datetime import datetime
import threading
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import ConflictError
from app.db.base import Base
from app.models.activity_log import ActivityLog
from app.models.outpass import Outpass, OutpassStatus
from app.models.user import UserRole
from app.services.outpass_workflow import Actor, Decision, OutpassApplication

IST = ZoneInfo("Asia/Kolkata")


@pytest.fixture()
def file_sessions(tmp_path):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def _pending_outpass(make_workflow, sessions, seed_campus):
    with sessions() as session:
        campus = seed_campus(session)
        outpass = make_workflow(session).create(
            Actor(id=campus.student, role=UserRole.student),
            OutpassApplication(
                reason_category="Medical",
                reason="Clinic visit",
                departure_at=datetime(2026, 10, 19, 11, 0, tzinfo=IST),
                return_at=datetime(2026, 10, 19, 12, 0, tzinfo=IST),
            ),
        )
        return campus, outpass.id


def test_stale_read_cannot_overwrite_decision(make_workflow, file_sessions, seed_campus):
    campus, outpass_id = _pending_outpass(make_workflow, file_sessions, seed_campus)
    first = file_sessions()
    second = file_sessions()
    try:
        # Both sessions observe pending_faculty before either writes.
        assert first.get(Outpass, outpass_id).status == OutpassStatus.pending_faculty
        assert second.get(Outpass, outpass_id).status == OutpassStatus.pending_faculty

        make_workflow(first).faculty_decision(
            Actor(id=campus.mentor_one, role=UserRole.faculty), outpass_id, Decision.approve
        )
        with pytest.raises(ConflictError) as exc_info:
            make_workflow(second).faculty_decision(
                Actor(id=campus.mentor_two, role=UserRole.faculty), outpass_id, Decision.reject
            )
        assert exc_info.value.current_status == "pending_hod"
    finally:
        first.close()
        second.close()

    with file_sessions() as session:
        stored = session.get(Outpass, outpass_id)
        assert stored.status == OutpassStatus.pending_hod
        assert stored.faculty_approver_id == campus.mentor_one
        assert stored.rejection_reason is None


def test_concurrent_faculty_decisions_have_one_winner(make_workflow, file_sessions, seed_campus):
    campus, outpass_id = _pending_outpass(make_workflow, file_sessions, seed_campus)
    contenders = [
        (campus.mentor_one, Decision.approve),
        (campus.mentor_two, Decision.reject),
    ]
    barrier = threading.Barrier(len(contenders))
    outcomes: dict[str, str] = {}

    def decide(employee_id, decision):
        with file_sessions() as session:
            workflow = make_workflow(session)
            barrier.wait()
            try:
                workflow.faculty_decision(Actor(id=employee_id, role=UserRole.faculty), outpass_id, decision)
                outcomes[employee_id] = "won"
            except ConflictError:
                outcomes[employee_id] = "conflict"

    threads = [threading.Thread(target=decide, args=item) for item in contenders]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes.values()) == ["conflict", "won"]
    winner = next(employee_id for employee_id, outcome in outcomes.items() if outcome == "won")

    with file_sessions() as session:
        stored = session.get(Outpass, outpass_id)
        assert stored.faculty_approver_id == winner
        expected = OutpassStatus.pending_hod if winner == campus.mentor_one else OutpassStatus.rejected
        assert stored.status == expected
        decisions = session.scalars(
            select(ActivityLog.action).where(
                ActivityLog.entity_id == outpass_id,
                ActivityLog.action.like("outpass.faculty.%"),
            )
        ).all()
        assert len(decisions) == 1
