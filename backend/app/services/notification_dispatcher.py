from __future__ import annotations

from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from html import escape
import logging
from typing import Callable, Sequence

from app.core.exceptions import NotificationDeliveryError
from app.models.employee import Employee
from app.models.outpass import Outpass
from app.models.student import Student
from app.services.campus_time import campus_zone, format_clock
from app.services.email import send_email
from app.services.voice import FACULTY_CALL_SCRIPT, hod_summary_script, place_voice_call

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    id: str
    name: str
    email: str | None
    phone: str | None

    @classmethod
    def from_employee(cls, employee: Employee) -> "Recipient":
        return cls(id=employee.id, name=employee.name, email=employee.email, phone=employee.phone)


@dataclass(frozen=True)
class OutpassBrief:
    outpass_id: str
    student_name: str
    reason_category: str
    reason: str
    departure_at: datetime
    return_at: datetime

    @classmethod
    def from_records(cls, student: Student, outpass: Outpass) -> "OutpassBrief":
        return cls(
            outpass_id=outpass.id,
            student_name=student.name,
            reason_category=outpass.reason_category,
            reason=outpass.reason,
            departure_at=outpass.departure_at,
            return_at=outpass.return_at,
        )


@dataclass
class DeliveryReport:
    recipient_id: str
    message_sent: bool = False
    call_placed: bool = False


class NotificationDispatcher:
    """Best-effort fan-out over the message and voice channels.

    ``dispatch`` and ``enqueue*`` hand work to the executor and return immediately;
    ``deliver*`` methods do the actual sending and are what the executor runs.
    ORM rows are snapshotted before crossing into the executor.
    """

    def __init__(
        self,
        *,
        timezone_name: str,
        executor: Executor | None = None,
        max_workers: int = 4,
        send_message: Callable[..., None] = send_email,
        place_call: Callable[..., object] = place_voice_call,
    ) -> None:
        self._zone = campus_zone(timezone_name)
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._send_message = send_message
        self._place_call = place_call

    def dispatch(self, target: Employee, student: Student, outpass: Outpass) -> Future:
        return self.enqueue([Recipient.from_employee(target)], OutpassBrief.from_records(student, outpass))[0]

    def enqueue(self, recipients: Sequence[Recipient], brief: OutpassBrief) -> list[Future]:
        return [self._executor.submit(self.deliver, recipient, brief) for recipient in recipients]

    def enqueue_hod_summary(self, recipient: Recipient, pending_count: int) -> Future:
        return self._executor.submit(self.deliver_hod_summary, recipient, pending_count)

    def deliver(self, recipient: Recipient, brief: OutpassBrief) -> DeliveryReport:
        report = DeliveryReport(recipient_id=recipient.id)
        window = f"{format_clock(brief.departure_at, self._zone)} to {format_clock(brief.return_at, self._zone)}"
        text_content = (
            f"Hello {recipient.name},\n\n"
            f"A student, {brief.student_name}, has requested an outpass.\n"
            f"Category: {brief.reason_category}\n"
            f"Reason: {brief.reason}\n"
            f"Time: {window}\n\n"
            "Please log in to your QuickPass dashboard to approve or reject this request."
        )
        html_content = (
            f"<p>Hello {escape(recipient.name)},</p>"
            f"<p>A student, <b>{escape(brief.student_name)}</b>, has requested an outpass.</p>"
            f"<p><b>Category:</b> {escape(brief.reason_category)}<br>"
            f"<b>Reason:</b> {escape(brief.reason)}<br>"
            f"<b>Time:</b> {window}</p>"
            "<p>Please log in to your QuickPass dashboard to approve or reject this request.</p>"
        )
        report.message_sent = self._send_via_message(
            recipient,
            subject=f"Outpass Request for {brief.student_name}",
            text_content=text_content,
            html_content=html_content,
        )
        report.call_placed = self._send_via_call(recipient, FACULTY_CALL_SCRIPT)
        return report

    def deliver_hod_summary(self, recipient: Recipient, pending_count: int) -> DeliveryReport:
        report = DeliveryReport(recipient_id=recipient.id)
        text_content = (
            f"Hello {recipient.name},\n\n"
            f"There are currently {pending_count} student outpass requests awaiting your approval.\n"
            "Please log in to your QuickPass dashboard to review and take action."
        )
        html_content = (
            f"<p>Hello <b>{escape(recipient.name)}</b>,</p>"
            f"<p>There are currently <b>{pending_count}</b> student outpass requests awaiting your approval.</p>"
            "<p>Please log in to your QuickPass dashboard to review and take action.</p>"
        )
        report.message_sent = self._send_via_message(
            recipient,
            subject="Pending Outpass Requests in Your Department",
            text_content=text_content,
            html_content=html_content,
        )
        report.call_placed = self._send_via_call(recipient, hod_summary_script(pending_count))
        return report

    def shutdown(self) -> None:
        if isinstance(self._executor, ThreadPoolExecutor):
            self._executor.shutdown(wait=False)

    def _send_via_message(self, recipient: Recipient, *, subject: str, text_content: str, html_content: str) -> bool:
        if not recipient.email:
            logger.warning("Recipient %s has no email address; message skipped", recipient.id)
            return False
        try:
            self._send_message(
                to_email=recipient.email,
                subject=subject,
                text_content=text_content,
                html_content=html_content,
            )
        except NotificationDeliveryError:
            logger.warning("Message delivery failed for %s", recipient.email, exc_info=True)
            return False
        except Exception:
            logger.exception("Unexpected message channel failure for %s", recipient.email)
            return False
        return True

    def _send_via_call(self, recipient: Recipient, script: str) -> bool:
        try:
            self._place_call(to_phone=recipient.phone, script=script)
        except NotificationDeliveryError:
            logger.warning("Voice call failed for %s", recipient.id, exc_info=True)
            return False
        except Exception:
            logger.exception("Unexpected voice channel failure for %s", recipient.id)
            return False
        return True
