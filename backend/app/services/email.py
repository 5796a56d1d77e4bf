"""SMTP transport for the message channel.

A primary and an optional backup endpoint are tried in order. Connection
problems are retried with linear backoff; an endpoint that answers with a
sending-quota error is parked for ``smtp_rate_limit_cooldown_seconds``.
"""
from __future__ import annotations

from dataclasses import dataclass
from email.message import EmailMessage
import logging
import smtplib
import ssl
import time

from app.core.config import get_settings
from app.core.exceptions import NotificationDeliveryError

logger = logging.getLogger(__name__)


class EmailDeliveryError(NotificationDeliveryError):
    pass


@dataclass(frozen=True)
class _SmtpEndpoint:
    host: str
    port: int
    username: str | None
    password: str
    from_email: str
    from_name: str | None
    use_tls: bool
    use_ssl: bool

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}:{self.username or ''}:{self.from_email}"


class _EndpointFailure(Exception):
    def __init__(self, reason: str, *, retryable: bool, rate_limited: bool = False) -> None:
        super().__init__(reason)
        self.reason = reason
        self.retryable = retryable
        self.rate_limited = rate_limited


_SMTP_ENDPOINT_COOLDOWN_UNTIL: dict[str, float] = {}


def _classify_data_error(exc: smtplib.SMTPDataError) -> _EndpointFailure:
    smtp_error = exc.smtp_error
    if isinstance(smtp_error, bytes):
        message = smtp_error.decode("utf-8", errors="ignore").lower()
    else:
        message = str(smtp_error).lower()

    if any(marker in message for marker in ("sending limit", "quota", "too many messages", "rate limit")):
        return _EndpointFailure("SMTP sender rate limited", retryable=False, rate_limited=True)
    if "recipient" in message and "rejected" in message:
        return _EndpointFailure("SMTP recipient rejected", retryable=False)
    return _EndpointFailure("SMTP data rejected", retryable=False)


def _normalize_password(host: str | None, raw_password: str | None) -> str:
    password = raw_password or ""
    if host and host.lower() == "smtp.gmail.com":
        # Gmail app-passwords are often pasted with spaces.
        return "".join(password.split())
    return password


def _configured_endpoints(settings) -> list[_SmtpEndpoint]:
    endpoints: list[_SmtpEndpoint] = []
    if settings.smtp_host and settings.smtp_from_email:
        endpoints.append(
            _SmtpEndpoint(
                host=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username,
                password=_normalize_password(settings.smtp_host, settings.smtp_password),
                from_email=settings.smtp_from_email,
                from_name=settings.smtp_from_name,
                use_tls=settings.smtp_use_tls,
                use_ssl=settings.smtp_use_ssl,
            )
        )
    backup_from = settings.smtp_backup_from_email or settings.smtp_from_email
    if settings.smtp_backup_host and backup_from:
        endpoints.append(
            _SmtpEndpoint(
                host=settings.smtp_backup_host,
                port=settings.smtp_backup_port,
                username=settings.smtp_backup_username,
                password=_normalize_password(settings.smtp_backup_host, settings.smtp_backup_password),
                from_email=backup_from,
                from_name=settings.smtp_backup_from_name or settings.smtp_from_name,
                use_tls=settings.smtp_backup_use_tls,
                use_ssl=settings.smtp_backup_use_ssl,
            )
        )

    unique = list({item.key: item for item in endpoints}.values())
    if not unique:
        raise EmailDeliveryError("SMTP is not configured")

    now = time.time()
    active = [item for item in unique if _SMTP_ENDPOINT_COOLDOWN_UNTIL.get(item.key, 0.0) <= now]
    return active or unique


def _build_message(endpoint: _SmtpEndpoint, *, to_email: str, subject: str, text_content: str, html_content: str | None) -> EmailMessage:
    message = EmailMessage()
    message["From"] = f"{endpoint.from_name} <{endpoint.from_email}>" if endpoint.from_name else endpoint.from_email
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(text_content)
    if html_content:
        message.add_alternative(html_content, subtype="html")
    return message


def _deliver_once(endpoint: _SmtpEndpoint, message: EmailMessage, timeout: int) -> None:
    try:
        if endpoint.use_ssl:
            with smtplib.SMTP_SSL(endpoint.host, endpoint.port, timeout=timeout) as smtp:
                if endpoint.username:
                    smtp.login(endpoint.username, endpoint.password)
                smtp.send_message(message)
            return
        with smtplib.SMTP(endpoint.host, endpoint.port, timeout=timeout) as smtp:
            if endpoint.use_tls:
                smtp.starttls(context=ssl.create_default_context())
            if endpoint.username:
                smtp.login(endpoint.username, endpoint.password)
            smtp.send_message(message)
    except smtplib.SMTPAuthenticationError as exc:
        raise _EndpointFailure("SMTP authentication failed", retryable=False) from exc
    except smtplib.SMTPDataError as exc:
        raise _classify_data_error(exc) from exc
    except smtplib.SMTPRecipientsRefused as exc:
        raise _EndpointFailure("SMTP recipient rejected", retryable=False) from exc
    except smtplib.SMTPSenderRefused as exc:
        raise _EndpointFailure("SMTP sender rejected", retryable=False) from exc
    except (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected, smtplib.SMTPHeloError, OSError) as exc:
        raise _EndpointFailure("SMTP connection failed", retryable=True) from exc


def send_email(*, to_email: str, subject: str, text_content: str, html_content: str | None = None) -> None:
    settings = get_settings()
    endpoints = _configured_endpoints(settings)
    timeout = max(1, settings.smtp_timeout_seconds)
    retry_attempts = max(1, settings.smtp_retry_attempts)
    backoff = max(0.0, settings.smtp_retry_backoff_seconds)
    cooldown = max(0, settings.smtp_rate_limit_cooldown_seconds)

    last_failure: _EndpointFailure | None = None
    for endpoint in endpoints:
        message = _build_message(
            endpoint,
            to_email=to_email,
            subject=subject,
            text_content=text_content,
            html_content=html_content,
        )
        for attempt in range(1, retry_attempts + 1):
            try:
                _deliver_once(endpoint, message, timeout)
                return
            except _EndpointFailure as failure:
                last_failure = failure
                if failure.rate_limited and cooldown > 0:
                    _SMTP_ENDPOINT_COOLDOWN_UNTIL[endpoint.key] = time.time() + cooldown
                if not failure.retryable or attempt == retry_attempts:
                    logger.warning("SMTP endpoint %s failed: %s", endpoint.host, failure.reason)
                    break
                if backoff > 0:
                    time.sleep(backoff * attempt)

    reason = last_failure.reason if last_failure else "Unable to deliver email"
    raise EmailDeliveryError(reason) from last_failure
