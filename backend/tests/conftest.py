import os
import tempfile
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

# The app reads settings at import time; point it at a throwaway database first.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+pysqlite:///{os.path.join(tempfile.gettempdir(), f'quickpass-test-{os.getpid()}.db')}",
)
os.environ.setdefault("AUTO_CREATE_SCHEMA", "true")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_clock, get_db, get_dispatcher, get_job_scheduler
from app.core.config import get_settings
from app.core.exceptions import SchedulingError
from app.db.base import Base
import app.models  # noqa: F401
from app.main import app
from app.models.department import Department
from app.models.employee import Employee
from app.models.school_class import ClassMentor, SchoolClass
from app.models.student import Student
from app.models.timetable import TimetableSlot
from app.models.user import Admin, UserRole
from app.services.job_scheduler import JobScheduler
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.outpass_workflow import OutpassWorkflow

# Monday 19 Oct 2026, 10:00 in Asia/Kolkata.
CAMPUS_NOW = datetime(2026, 10, 19, 4, 30, tzinfo=timezone.utc)
MONDAY = 1


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InlineExecutor(Executor):
    """Runs submitted work immediately so tests can assert on deliveries."""

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future


class RecordingScheduler(JobScheduler):
    def __init__(self) -> None:
        self.scheduled: list[tuple[timedelta, str, dict]] = []
        self.recurring: list[tuple[timedelta, str]] = []
        self.fail = False

    def schedule(self, delay, job_type, payload):
        if self.fail:
            raise SchedulingError("broker unavailable")
        self.scheduled.append((delay, job_type, dict(payload)))

    def schedule_recurring(self, interval, job_type):
        self.recurring.append((interval, job_type))

    def job_types(self) -> list[str]:
        return [item[1] for item in self.scheduled]


class RecordingTransport:
    def __init__(self) -> None:
        self.messages: list[dict] = []
        self.calls: list[dict] = []
        self.message_error: Exception | None = None
        self.call_error: Exception | None = None

    def send_message(self, **kwargs) -> None:
        if self.message_error is not None:
            raise self.message_error
        self.messages.append(kwargs)

    def place_call(self, **kwargs) -> str:
        if self.call_error is not None:
            raise self.call_error
        self.calls.append(kwargs)
        return "CA123"

    def emailed(self) -> list[str]:
        return [item["to_email"] for item in self.messages]


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def settings():
    return get_settings()


@pytest.fixture()
def clock():
    return FixedClock(CAMPUS_NOW)


@pytest.fixture()
def scheduler():
    return RecordingScheduler()


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def dispatcher(settings, transport):
    return NotificationDispatcher(
        timezone_name=settings.institution_timezone,
        executor=InlineExecutor(),
        send_message=transport.send_message,
        place_call=transport.place_call,
    )


@pytest.fixture()
def make_workflow(scheduler, dispatcher, settings, clock):
    def factory(session):
        return OutpassWorkflow(session, scheduler=scheduler, dispatcher=dispatcher, settings=settings, now=clock)

    return factory


@pytest.fixture()
def workflow(make_workflow, db):
    return make_workflow(db)


def seed_campus(session) -> SimpleNamespace:
    """CSE department with two mentors, a free and a busy faculty, an HOD and one student."""
    cse = Department(name="Computer Science")
    ece = Department(name="Electronics")
    session.add_all([cse, ece])
    session.flush()

    def employee(name, role, department, phone="9876543210"):
        record = Employee(
            name=name,
            email=f"{name.lower().replace(' ', '.')}@campus.test",
            phone=phone,
            department_id=department.id,
            role=role,
        )
        session.add(record)
        return record

    mentor_one = employee("Mentor One", UserRole.faculty, cse, "9000000001")
    mentor_two = employee("Mentor Two", UserRole.faculty, cse, "9000000002")
    free_faculty = employee("Free Faculty", UserRole.faculty, cse, "9000000003")
    busy_faculty = employee("Busy Faculty", UserRole.faculty, cse, "9000000004")
    hod = employee("Head Cse", UserRole.hod, cse, "9000000005")
    ece_faculty = employee("Ece Faculty", UserRole.faculty, ece, "9000000006")
    ece_hod = employee("Head Ece", UserRole.hod, ece, "9000000007")
    guard = employee("Gate Guard", UserRole.security, cse, "9000000008")
    session.flush()

    cse_a = SchoolClass(name="CSE-A", department_id=cse.id, year=3)
    cse_a.mentor_links = [
        ClassMentor(employee_id=mentor_one.id, position=0),
        ClassMentor(employee_id=mentor_two.id, position=1),
    ]
    session.add(cse_a)
    session.flush()

    session.add_all(
        [
            # Overlaps an 11:00-13:00 request.
            TimetableSlot(employee_id=busy_faculty.id, class_id=cse_a.id, day_of_week=MONDAY, start_time="10:30", end_time="11:30"),
            # Touches the end of the request only; half-open ranges do not overlap.
            TimetableSlot(employee_id=free_faculty.id, class_id=cse_a.id, day_of_week=MONDAY, start_time="13:00", end_time="14:00"),
            # Same hours on another weekday.
            TimetableSlot(employee_id=free_faculty.id, class_id=cse_a.id, day_of_week=2, start_time="11:00", end_time="12:00"),
            # Mentors are notified even when busy.
            TimetableSlot(employee_id=mentor_one.id, class_id=cse_a.id, day_of_week=MONDAY, start_time="11:00", end_time="12:00"),
        ]
    )

    student = Student(
        name="Asha Kumar",
        email="asha@campus.test",
        roll_number="CSE21001",
        phone="9111111111",
        parent_name="Ravi Kumar",
        primary_parent_phone="9222222222",
        class_id=cse_a.id,
        attendance_percentage=72.5,
    )
    other_student = Student(
        name="Bala Iyer",
        email="bala@campus.test",
        roll_number="CSE21002",
        primary_parent_phone="9333333333",
        class_id=cse_a.id,
        attendance_percentage=91.0,
    )
    admin = Admin(name="Registrar", email="registrar@campus.test")
    session.add_all([student, other_student, admin])
    session.commit()

    return SimpleNamespace(
        cse_id=cse.id,
        ece_id=ece.id,
        class_id=cse_a.id,
        mentor_one=mentor_one.id,
        mentor_two=mentor_two.id,
        free_faculty=free_faculty.id,
        busy_faculty=busy_faculty.id,
        hod=hod.id,
        ece_faculty=ece_faculty.id,
        ece_hod=ece_hod.id,
        guard=guard.id,
        student=student.id,
        other_student=other_student.id,
        admin=admin.id,
    )


@pytest.fixture(name="seed_campus")
def seed_campus_fixture():
    return seed_campus


@pytest.fixture()
def campus(db):
    return seed_campus(db)


@pytest.fixture()
def client(session_factory, scheduler, dispatcher, clock):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_scheduler] = lambda: scheduler
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_clock] = lambda: clock

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
