from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from app.db.base import Base
from app.db.session import engine as default_engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "departments": {"id", "name"},
    "school_classes": {"id", "department_id"},
    "class_mentors": {"class_id", "employee_id", "position"},
    "employees": {"id", "department_id", "role", "email", "phone"},
    "students": {"id", "class_id", "primary_parent_phone", "attendance_percentage"},
    "timetable_slots": {"id", "employee_id", "day_of_week", "start_time", "end_time"},
    "outpasses": {
        "id",
        "student_id",
        "status",
        "faculty_approver_id",
        "hod_approver_id",
        "parent_contact_verified",
        "attendance_at_apply",
    },
    "outpass_notified_faculty": {"outpass_id", "employee_id", "position"},
    "notifications": {"id", "recipient_id", "notification_type", "outpass_id"},
}


def _assert_required_columns(bind: Engine) -> None:
    with bind.begin() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        missing_tables = [name for name in REQUIRED_COLUMNS if name not in table_names]
        if missing_tables:
            raise RuntimeError(f"Missing required tables: {', '.join(sorted(missing_tables))}")

        missing_columns: list[str] = []
        for table_name, required in REQUIRED_COLUMNS.items():
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            for column_name in sorted(required - existing):
                missing_columns.append(f"{table_name}.{column_name}")
        if missing_columns:
            raise RuntimeError(f"Missing required columns: {', '.join(missing_columns)}")


def ensure_runtime_schema(*, create_missing: bool, bind: Engine | None = None) -> None:
    """Verify the outpass schema exists, optionally creating it for local runs.

    Production databases are expected to be migrated with Alembic; the
    ``create_missing`` switch only exists for development and tests.
    """
    bind = bind or default_engine
    try:
        if create_missing:
            import app.models  # noqa: F401

            Base.metadata.create_all(bind=bind)
        _assert_required_columns(bind)
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema bootstrap failed")
        raise RuntimeError("Runtime schema bootstrap failed") from exc
