"""
This module contains the Celery worker and tasks for the marketplace service.
"""
import anyio
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Sequence
from zoneinfo import ZoneInfo

from celery import Celery, Task
from celery.schedules import crontab
from kombu.exceptions import KombuError
from .config import settings
from .db import db
from .directory import ServiceDirectory
from .emails import EmailDispatcher, RESERVATION_REMINDER, SmtpEmailDispatcher, TEMPLATES
from .errors import SideEffectFailure, UnknownTemplate
from .lifecycle import ReservationLifecycle
from .notifications import NotificationSink

# Configure logging
logger = logging.getLogger(__name__)

app = Celery('servicehub',
             broker=settings.celery_broker_url,
             backend=settings.celery_result_backend,
             include=["servicehub.worker"])

app.conf.timezone = settings.reminder_timezone
app.conf.beat_schedule = {
    "daily-reservation-reminders": {
        "task": "servicehub.worker.send_daily_reminders",
        "schedule": crontab(hour=settings.reminder_hour, minute=0),
    },
}


class BaseTaskWithRetry(Task):
    """
    Base task with automatic retry mechanism.
    """
    autoretry_for = (SideEffectFailure,)
    dont_autoretry_for = (UnknownTemplate,)
    retry_kwargs = {'max_retries': 5}
    retry_backoff = True


@app.task(bind=True, base=BaseTaskWithRetry)
def send_templated_email(self, to_email, template_name, template_args):
    """
    Celery task to render and send one templated email.

    Args:
        to_email (str): Recipient address.
        template_name (str): One of the reservation templates.
        template_args (list): (client_name, service_title, date).
    """
    logger.info(f"{type(self)} -- Sending {template_name} to {to_email}")
    SmtpEmailDispatcher().send(to_email, template_name, template_args)
    return to_email


class CeleryEmailDispatcher:
    """
    Hands emails to the worker instead of talking to SMTP inside the request.
    """

    def send(self, to_email: str, template_name: str, template_args: Sequence[Any]) -> None:
        if template_name not in TEMPLATES:
            raise UnknownTemplate(f"Email template {template_name!r} not found")
        try:
            send_templated_email.delay(to_email, template_name, list(template_args))
        except (KombuError, OSError) as exc:
            raise SideEffectFailure(f"Could not queue {template_name} for {to_email}: {exc}") from exc


def tomorrow_bounds(now: datetime | None = None, tz_name: str | None = None) -> tuple[datetime, datetime]:
    """
    Start and end of tomorrow in the reminder timezone, as naive UTC datetimes.

    Args:
        now (datetime): Reference instant, defaults to the current time.
        tz_name (str): IANA timezone, defaults to settings.reminder_timezone.
    """
    tz = ZoneInfo(tz_name or settings.reminder_timezone)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    tomorrow = now.astimezone(tz).date() + timedelta(days=1)
    start = datetime.combine(tomorrow, time.min, tzinfo=tz)
    end = datetime.combine(tomorrow + timedelta(days=1), time.min, tzinfo=tz)
    return (start.astimezone(timezone.utc).replace(tzinfo=None),
            end.astimezone(timezone.utc).replace(tzinfo=None))


async def _send_daily_reminders(session, dispatcher: EmailDispatcher, now: datetime | None = None) -> int:
    """
    Helper function to email every client whose confirmed reservation starts tomorrow.
    Reservation state is left untouched, so running it twice sends twice.

    Args:
        session (AsyncSession): The database session.
        dispatcher (EmailDispatcher): Where reminders are sent.
        now (datetime): Reference instant, defaults to the current time.

    Returns:
        int: The number of reminders sent.
    """
    lifecycle = ReservationLifecycle(session, ServiceDirectory(session), NotificationSink(session), dispatcher)
    start, end = tomorrow_bounds(now)
    reservations = await lifecycle.list_confirmed_starting_between(start, end)
    logger.info(f"Found {len(reservations)} reservations starting tomorrow")

    sent = 0
    for reservation in reservations:
        try:
            dispatcher.send(
                reservation.client.email,
                RESERVATION_REMINDER,
                [reservation.client.name, reservation.service.title, reservation.start_at.isoformat()],
            )
        except SideEffectFailure as exc:
            logger.error(f"Reminder for reservation {reservation.id} failed: {exc}")
            continue
        sent += 1
        logger.info(f"Reminder sent for reservation {reservation.id}")
    return sent


async def _run_daily_reminders():
    async with db.Session() as session:
        return await _send_daily_reminders(session, SmtpEmailDispatcher())


@app.task
def send_daily_reminders():
    """
    Celery beat task that sends the daily reservation reminders.
    """
    logger.info("Sending reservation reminders.")
    return anyio.run(_run_daily_reminders)
