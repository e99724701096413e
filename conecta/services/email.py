import html
import logging
import re
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import Optional, Tuple

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_TIMEOUT_SECONDS = 20.0
MAX_SUBJECT_PREVIEW = 12


class EmailDeliveryError(RuntimeError):
    def __init__(self, backend: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.backend = backend
        self.status_code = status_code


@dataclass
class SendResult:
    backend: str
    status_code: Optional[int]
    message_id: Optional[str]


def mask_email(value: str) -> str:
    if "@" not in value:
        return "***"
    name, domain = value.split("@", 1)
    if not name:
        masked = "***"
    elif len(name) <= 2:
        masked = f"{name[0]}***"
    else:
        masked = f"{name[0]}***{name[-1]}"
    return f"{masked}@{domain}"


def _mask_subject(subject: str) -> str:
    if not subject:
        return ""
    preview = subject[:MAX_SUBJECT_PREVIEW]
    return f"{preview}... (len={len(subject)})"


def _html_to_text(content: str) -> str:
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", content, flags=re.DOTALL | re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return html.unescape(text)


def current_backend() -> str:
    return (settings.email_backend or "local").strip().strip("'\"").lower()


def log_email_configuration() -> None:
    logger.info(
        "Email configuration: backend=%s resend_api_key=%s resend_from_email=%s email_host=%s",
        current_backend(),
        bool(settings.resend_api_key),
        bool(settings.resend_from_email),
        bool(settings.email_host),
    )


def _resolve_sender() -> Tuple[str, str]:
    from_address = settings.resend_from_email or "notifications@conecta.local"
    display_name = settings.email_from_name or "Conecta Realty"
    return from_address, display_name


def _write_local_email(recipient: str, subject: str, html_body: str) -> SendResult:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
    safe_subject = "".join(ch for ch in subject if ch.isalnum() or ch in (" ", "_", "-")).strip() or "email"
    filename = f"{timestamp}_{safe_subject.replace(' ', '_')}.html"
    output_dir = Path(settings.email_output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / filename
    path.write_text(f"<!-- To: {recipient} | Subject: {subject} -->\n{html_body}", encoding="utf-8")
    logger.info("[LOCAL EMAIL] %s", path)
    return SendResult(backend="local", status_code=200, message_id=str(path))


def _send_via_resend(recipient: str, subject: str, html_body: str) -> SendResult:
    from_address, display_name = _resolve_sender()
    if not settings.resend_api_key or not settings.resend_from_email:
        raise EmailDeliveryError("resend", "Resend backend requires RESEND_API_KEY and RESEND_FROM_EMAIL.")

    payload = {
        "from": f"{display_name} <{from_address}>" if display_name else from_address,
        "to": [recipient],
        "subject": subject,
        "html": html_body,
    }
    text = _html_to_text(html_body)
    if text:
        payload["text"] = text

    headers = {"Authorization": f"Bearer {settings.resend_api_key}"}
    try:
        response = httpx.post(RESEND_SEND_URL, json=payload, headers=headers, timeout=RESEND_TIMEOUT_SECONDS)
    except httpx.HTTPError as exc:
        raise EmailDeliveryError("resend", f"Resend request failed: {exc}") from exc

    if response.status_code >= 400:
        raise EmailDeliveryError(
            "resend",
            f"Resend rejected the message (status={response.status_code}): {response.text[:200]}",
            status_code=response.status_code,
        )
    message_id = None
    try:
        message_id = response.json().get("id")
    except ValueError:
        logger.warning("Resend returned a non-JSON body (status=%s).", response.status_code)
    return SendResult(backend="resend", status_code=response.status_code, message_id=message_id)


def _send_via_smtp(recipient: str, subject: str, html_body: str) -> SendResult:
    if not settings.email_host:
        raise EmailDeliveryError("smtp", "SMTP backend requires EMAIL_HOST.")
    from_address, display_name = _resolve_sender()

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = formataddr((display_name, from_address))
    message["To"] = recipient
    message.set_content(_html_to_text(html_body))
    message.add_alternative(html_body, subtype="html")

    context = ssl.create_default_context()
    try:
        with smtplib.SMTP(settings.email_host, settings.email_port or 587) as connection:
            connection.ehlo()
            if settings.email_use_tls:
                connection.starttls(context=context)
                connection.ehlo()
            if settings.email_host_user and settings.email_host_password:
                connection.login(settings.email_host_user, settings.email_host_password)
            connection.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailDeliveryError("smtp", f"SMTP delivery failed: {exc}") from exc
    return SendResult(backend="smtp", status_code=250, message_id=None)


def send_email(recipient: str, subject: str, html_body: str) -> SendResult:
    """Send one message through the configured backend.

    Raises ``EmailDeliveryError`` when the backend cannot deliver; callers
    decide whether a failure is fatal.
    """
    if not recipient or not recipient.strip():
        raise ValueError("Recipient email required")
    recipient = recipient.strip()
    backend = current_backend()
    logger.info(
        "Dispatching email backend=%s to=%s subject=%s",
        backend,
        mask_email(recipient),
        _mask_subject(subject),
    )

    if backend == "resend":
        return _send_via_resend(recipient, subject, html_body)
    if backend == "smtp":
        return _send_via_smtp(recipient, subject, html_body)
    if backend != "local":
        logger.warning("Unknown EMAIL_BACKEND '%s'. Defaulting to local stub.", backend)
    return _write_local_email(recipient, subject, html_body)
