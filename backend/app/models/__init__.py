from app.models.activity_log import ActivityLog  # noqa: F401
from app.models.department import Department  # noqa: F401
from app.models.employee import Employee  # noqa: F401
from app.models.notification import Notification, NotificationType  # noqa: F401
from app.models.outpass import (  # noqa: F401
    PENDING_STATUSES,
    TERMINAL_STATUSES,
    Outpass,
    OutpassNotifiedFaculty,
    OutpassStatus,
)
from app.models.school_class import ClassMentor, SchoolClass  # noqa: F401
from app.models.student import Student  # noqa: F401
from app.models.timetable import TimetableSlot  # noqa: F401
from app.models.user import EMPLOYEE_ROLES, Admin, UserRole  # noqa: F401
