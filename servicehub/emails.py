"""
This module contains the reservation email templates and the SMTP dispatcher.
"""
import html
import logging
import smtplib
import ssl
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol, Sequence
from zoneinfo import ZoneInfo

from .config import settings
from .errors import SideEffectFailure, UnknownTemplate

logger = logging.getLogger(__name__)

RESERVATION_CONFIRMED = "reservationConfirmed"
RESERVATION_CANCELLED = "reservationCancelled"
RESERVATION_REMINDER = "reservationReminder"


def to_display_time(value: datetime | str) -> datetime:
    """
    Converts a stored naive UTC time (or its ISO string) to settings.display_timezone.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(settings.display_timezone))


def _format_date(value: datetime | str) -> str:
    return to_display_time(value).strftime("%d/%m/%Y %H:%M")


def _wrap(heading: str, color: str, body: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: {color};">{heading}</h2>'
        f"{body}"
        "</div>"
    )


def _confirmed(client_name: str, service_title: str, date: datetime | str) -> tuple[str, str]:
    body = (
        f"<p>Hello {html.escape(client_name)},</p>"
        f"<p>We are happy to let you know that your reservation for "
        f"<strong>{html.escape(service_title)}</strong> has been confirmed.</p>"
        f"<p><strong>Date:</strong> {_format_date(date)}</p>"
        "<p>Thank you for your trust, see you soon!</p>"
    )
    return "Reservation confirmed", _wrap("Reservation confirmed!", "#4CAF50", body)


def _cancelled(client_name: str, service_title: str, date: datetime | str) -> tuple[str, str]:
    body = (
        f"<p>Hello {html.escape(client_name)},</p>"
        f"<p>We are sorry to let you know that your reservation for "
        f"<strong>{html.escape(service_title)}</strong> has been declined.</p>"
        f"<p><strong>Requested date:</strong> {_format_date(date)}</p>"
        "<p>Feel free to request another date or to contact the provider for more information.</p>"
    )
    return "Reservation declined", _wrap("Reservation declined", "#F44336", body)


def _reminder(client_name: str, service_title: str, date: datetime | str) -> tuple[str, str]:
    body = (
        f"<p>Hello {html.escape(client_name)},</p>"
        f"<p>This is a reminder that you have a reservation tomorrow for "
        f"<strong>{html.escape(service_title)}</strong>.</p>"
        f"<p><strong>Date:</strong> {_format_date(date)}</p>"
        "<p>See you soon!</p>"
    )
    return "Reservation reminder", _wrap("Your reservation is tomorrow", "#2196F3", body)


TEMPLATES = {
    RESERVATION_CONFIRMED: _confirmed,
    RESERVATION_CANCELLED: _cancelled,
    RESERVATION_REMINDER: _reminder,
}


def render_email(template_name: str, template_args: Sequence[Any]) -> tuple[str, str]:
    """
    Renders a template into a (subject, html) pair.

    Args:
        template_name (str): One of the TEMPLATES keys.
        template_args (Sequence): (client_name, service_title, date).

    Raises:
        UnknownTemplate: The template does not exist.
    """
    template = TEMPLATES.get(template_name)
    if template is None:
        raise UnknownTemplate(f"Email template {template_name!r} not found")
    return template(*template_args)


class EmailDispatcher(Protocol):
    def send(self, to_email: str, template_name: str, template_args: Sequence[Any]) -> None:
        ...


class SmtpEmailDispatcher:
    """
    Sends rendered templates through the configured SMTP server.
    """

    def __init__(self, host: str | None = None, port: int | None = None):
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port

    def send(self, to_email: str, template_name: str, template_args: Sequence[Any]) -> None:
        subject, html_content = render_email(template_name, template_args)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = settings.email_from
        msg["To"] = to_email
        msg.attach(MIMEText(html_content, "html"))

        try:
            if settings.smtp_use_ssl:
                context = ssl.create_default_context()
                server = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=30)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=30)
                if settings.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
            with server:
                if settings.smtp_username:
                    server.login(settings.smtp_username, settings.smtp_password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise SideEffectFailure(f"Sending {template_name} to {to_email} failed: {exc}") from exc

        logger.info(f"Email {template_name} sent to {to_email}")
