from __future__ import annotations

from datetime import datetime
import logging
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    *,
    recipient_id: str,
    title: str,
    message: str,
    notification_type: NotificationType,
    outpass_id: str | None = None,
    created_at: datetime | None = None,
) -> Notification:
    record = Notification(
        recipient_id=recipient_id,
        outpass_id=outpass_id,
        title=title,
        message=message,
        notification_type=notification_type,
    )
    if created_at is not None:
        record.created_at = created_at
    db.add(record)
    db.flush()
    return record


def notify_recipients(
    db: Session,
    *,
    recipient_ids: Iterable[str],
    title: str,
    message: str,
    notification_type: NotificationType,
    outpass_id: str | None = None,
    created_at: datetime | None = None,
) -> list[Notification]:
    results: list[Notification] = []
    for recipient_id in dict.fromkeys(recipient_ids):
        if not recipient_id:
            continue
        results.append(
            create_notification(
                db,
                recipient_id=recipient_id,
                title=title,
                message=message,
                notification_type=notification_type,
                outpass_id=outpass_id,
                created_at=created_at,
            )
        )
    return results


def last_notified_at(
    db: Session,
    *,
    recipient_id: str,
    notification_type: NotificationType,
) -> datetime | None:
    return db.execute(
        select(func.max(Notification.created_at)).where(
            Notification.recipient_id == recipient_id,
            Notification.notification_type == notification_type,
        )
    ).scalar_one_or_none()
