from collections.abc import Callable, Generator, Iterable
from datetime import datetime

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.exceptions import AuthorizationError, NotFoundError
from app.core.security import decode_token
from app.db.session import SessionLocal
from app.models.employee import Employee
from app.models.student import Student
from app.models.user import EMPLOYEE_ROLES, Admin, UserRole
from app.services.campus_time import utc_now
from app.services.job_scheduler import CeleryJobScheduler, JobScheduler
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.outpass_workflow import Actor, OutpassWorkflow
from app.services.storage import DocumentStorage

security = HTTPBearer(auto_error=False)

_job_scheduler: JobScheduler | None = None
_dispatcher: NotificationDispatcher | None = None


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock() -> Callable[[], datetime]:
    return utc_now


def get_job_scheduler() -> JobScheduler:
    global _job_scheduler
    if _job_scheduler is None:
        _job_scheduler = CeleryJobScheduler()
    return _job_scheduler


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        _dispatcher = NotificationDispatcher(
            timezone_name=settings.institution_timezone,
            max_workers=settings.dispatch_max_workers,
        )
    return _dispatcher


def shutdown_dispatcher() -> None:
    global _dispatcher
    if _dispatcher is not None:
        _dispatcher.shutdown()
        _dispatcher = None


def get_storage(settings: Settings = Depends(get_settings)) -> DocumentStorage:
    return DocumentStorage.from_settings(settings)


def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> Actor:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = decode_token(credentials.credentials)
        subject = payload.get("sub")
        role = UserRole(payload.get("role"))
    except (JWTError, ValueError) as exc:
        raise credentials_exception from exc
    if subject is None:
        raise credentials_exception

    # The token role must agree with the table the subject lives in.
    if role == UserRole.student:
        exists = db.get(Student, subject) is not None
    elif role == UserRole.admin:
        exists = db.get(Admin, subject) is not None
    else:
        employee = db.get(Employee, subject)
        exists = employee is not None and employee.role == role and role in EMPLOYEE_ROLES
    if not exists:
        raise credentials_exception
    return Actor(id=subject, role=role)


def require_roles(*roles: UserRole) -> Callable[[Actor], Actor]:
    allowed_roles: Iterable[UserRole] = set(roles)

    def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise AuthorizationError("Insufficient permissions")
        return actor

    return role_checker


def get_current_employee(
    actor: Actor = Depends(require_roles(*EMPLOYEE_ROLES)),
    db: Session = Depends(get_db),
) -> Employee:
    employee = db.get(Employee, actor.id)
    if employee is None:
        raise NotFoundError("Employee", actor.id)
    return employee


def get_workflow(
    db: Session = Depends(get_db),
    scheduler: JobScheduler = Depends(get_job_scheduler),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> OutpassWorkflow:
    return OutpassWorkflow(db, scheduler=scheduler, dispatcher=dispatcher, settings=settings, now=clock)
