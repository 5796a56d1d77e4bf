"""create outpass tables

Revision ID: 20261018_0001
Revises: None
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


user_role_enum = sa.Enum("student", "faculty", "hod", "admin", "security", name="user_role")
outpass_status_enum = sa.Enum(
    "pending_faculty",
    "pending_hod",
    "approved",
    "rejected",
    "cancelled_by_student",
    "exited",
    name="outpass_status",
)
notification_type_enum = sa.Enum(
    "new_request",
    "reminder",
    "hod_summary",
    "approved",
    "rejected",
    name="notification_type",
)


def upgrade() -> None:
    op.create_table(
        "departments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "admins",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admins_email", "admins", ["email"], unique=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("employee_code", sa.String(length=50), nullable=True, unique=True),
        sa.Column("phone", sa.String(length=20), nullable=False),
        sa.Column("department_id", sa.String(length=36), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("role", user_role_enum, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_employees_email", "employees", ["email"], unique=True)
    op.create_index("ix_employees_department_id", "employees", ["department_id"])
    op.create_index("ix_employees_role", "employees", ["role"])

    op.create_table(
        "school_classes",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("department_id", sa.String(length=36), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_school_classes_department_id", "school_classes", ["department_id"])

    op.create_table(
        "class_mentors",
        sa.Column("class_id", sa.String(length=36), sa.ForeignKey("school_classes.id"), primary_key=True),
        sa.Column("employee_id", sa.String(length=36), sa.ForeignKey("employees.id"), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "students",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("roll_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("parent_name", sa.String(length=200), nullable=True),
        sa.Column("primary_parent_phone", sa.String(length=20), nullable=False),
        sa.Column("secondary_parent_phone", sa.String(length=20), nullable=True),
        sa.Column("class_id", sa.String(length=36), sa.ForeignKey("school_classes.id"), nullable=False),
        sa.Column("attendance_percentage", sa.Float(), nullable=False, server_default="100"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_students_email", "students", ["email"], unique=True)
    op.create_index("ix_students_class_id", "students", ["class_id"])

    op.create_table(
        "timetable_slots",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=36), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("class_id", sa.String(length=36), sa.ForeignKey("school_classes.id"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_timetable_slots_employee_id", "timetable_slots", ["employee_id"])
    op.create_index("ix_timetable_slots_day_of_week", "timetable_slots", ["day_of_week"])

    op.create_table(
        "outpasses",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("student_id", sa.String(length=36), sa.ForeignKey("students.id"), nullable=False),
        sa.Column("reason_category", sa.String(length=100), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("departure_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("return_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("alternate_contact", sa.String(length=50), nullable=True),
        sa.Column("supporting_document_url", sa.String(length=500), nullable=True),
        sa.Column("attendance_at_apply", sa.Float(), nullable=True),
        sa.Column("status", outpass_status_enum, nullable=False),
        sa.Column("faculty_approver_id", sa.String(length=36), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("faculty_decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hod_approver_id", sa.String(length=36), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("hod_decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("parent_contact_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("parent_contact_verified_by_id", sa.String(length=36), nullable=True),
        sa.Column("parent_contact_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("exit_verified_by_id", sa.String(length=36), nullable=True),
        sa.Column("exited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("return_verified_by_id", sa.String(length=36), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outpasses_student_id", "outpasses", ["student_id"])
    op.create_index("ix_outpasses_status", "outpasses", ["status"])

    op.create_table(
        "outpass_notified_faculty",
        sa.Column("outpass_id", sa.String(length=36), sa.ForeignKey("outpasses.id"), primary_key=True),
        sa.Column("employee_id", sa.String(length=36), sa.ForeignKey("employees.id"), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("recipient_id", sa.String(length=36), nullable=False),
        sa.Column("outpass_id", sa.String(length=36), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("notification_type", notification_type_enum, nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_outpass_id", "notifications", ["outpass_id"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("actor_role", sa.String(length=20), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_entity_id", "activity_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_activity_logs_entity_id", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("ix_notifications_outpass_id", table_name="notifications")
    op.drop_index("ix_notifications_recipient_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("outpass_notified_faculty")
    op.drop_index("ix_outpasses_status", table_name="outpasses")
    op.drop_index("ix_outpasses_student_id", table_name="outpasses")
    op.drop_table("outpasses")
    op.drop_index("ix_timetable_slots_day_of_week", table_name="timetable_slots")
    op.drop_index("ix_timetable_slots_employee_id", table_name="timetable_slots")
    op.drop_table("timetable_slots")
    op.drop_index("ix_students_class_id", table_name="students")
    op.drop_index("ix_students_email", table_name="students")
    op.drop_table("students")
    op.drop_table("class_mentors")
    op.drop_index("ix_school_classes_department_id", table_name="school_classes")
    op.drop_table("school_classes")
    op.drop_index("ix_employees_role", table_name="employees")
    op.drop_index("ix_employees_department_id", table_name="employees")
    op.drop_index("ix_employees_email", table_name="employees")
    op.drop_table("employees")
    op.drop_index("ix_admins_email", table_name="admins")
    op.drop_table("admins")
    op.drop_table("departments")
    bind = op.get_bind()
    notification_type_enum.drop(bind, checkfirst=True)
    outpass_status_enum.drop(bind, checkfirst=True)
    user_role_enum.drop(bind, checkfirst=True)
