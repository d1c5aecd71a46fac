"""
This module contains the reservation state machine: pending, then confirmed or cancelled.
"""
import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import emails as email_templates
from . import notifications as notification_types
from .directory import ServiceDirectory
from .emails import EmailDispatcher, to_display_time
from .errors import Conflict, Forbidden, InvalidState, NotFound, SideEffectFailure
from .models import (CANCELLED, CONFIRMED, PENDING, Reservation, Service, TimeWindow,
                     utcnow)
from .notifications import NotificationSink

logger = logging.getLogger(__name__)


def _when(value: datetime) -> str:
    return to_display_time(value).strftime("%Y-%m-%d %H:%M")


class ReservationLifecycle:
    """
    Creates reservations and moves them out of `pending`.

    State changes are committed first. The notification and email that follow
    are best-effort: their failures are logged and never undo the transition.
    """

    def __init__(self, session: AsyncSession, directory: ServiceDirectory,
                 notifications: NotificationSink, emails: EmailDispatcher,
                 send_emails: bool = True):
        self.session = session
        self.directory = directory
        self.notifications = notifications
        self.emails = emails
        self.send_emails = send_emails

    async def create(self, client_id: int, service_id: int, window: TimeWindow) -> Reservation:
        """
        Creates a pending reservation and notifies the service's provider.

        Args:
            client_id (int): The authenticated caller.
            service_id (int): The service to reserve.
            window (TimeWindow): The normalized window.

        Raises:
            NotFound: The service or the client does not exist.
            Conflict: A non-cancelled reservation already holds this exact window.
        """
        service = await self.directory.get_service(service_id)
        client = await self.directory.get_user(client_id)

        clash = await self.session.execute(
            select(Reservation.id).where(
                Reservation.service_id == service_id,
                Reservation.start_at == window.start,
                Reservation.end_at == window.end,
                Reservation.status != CANCELLED,
            ).limit(1)
        )
        if clash.first() is not None:
            raise Conflict(f"Service {service_id} is already reserved for this window")

        provider_id = service.provider_id
        message = (f'New reservation request from {client.name} for "{service.title}" '
                   f"on {_when(window.start)}")

        reservation = Reservation(
            client_id=client_id,
            service_id=service_id,
            start_at=window.start,
            end_at=window.end,
            status=PENDING,
        )
        self.session.add(reservation)
        try:
            await self.session.commit()
        except IntegrityError:
            # Lost a race for the same window
            await self.session.rollback()
            raise Conflict(f"Service {service_id} is already reserved for this window")
        await self.session.refresh(reservation)
        reservation_id = reservation.id
        logger.info(f"Reservation {reservation_id} created by user {client_id} for service {service_id}")

        await self._notify(provider_id, message, reservation_id, notification_types.RESERVATION_REQUESTED)
        return await self._load(reservation_id)

    async def confirm(self, reservation_id: int, actor_id: int) -> Reservation:
        """
        Confirms a pending reservation on behalf of the service's provider.

        Raises:
            NotFound: The reservation does not exist.
            Forbidden: The actor does not own the reserved service.
            InvalidState: The reservation is no longer pending.
        """
        return await self._transition(
            reservation_id, actor_id, CONFIRMED,
            notification_type=notification_types.RESERVATION_CONFIRMED,
            verb="confirmed",
            email_template=email_templates.RESERVATION_CONFIRMED,
        )

    async def cancel(self, reservation_id: int, actor_id: int) -> Reservation:
        """
        Declines a pending reservation on behalf of the service's provider.

        Raises:
            NotFound: The reservation does not exist.
            Forbidden: The actor does not own the reserved service.
            InvalidState: The reservation is no longer pending.
        """
        return await self._transition(
            reservation_id, actor_id, CANCELLED,
            notification_type=notification_types.RESERVATION_CANCELLED,
            verb="declined",
            email_template=email_templates.RESERVATION_CANCELLED,
        )

    async def get(self, reservation_id: int, actor_id: int) -> Reservation:
        """
        Returns a reservation to its client or to the provider of its service.
        """
        reservation = await self._load(reservation_id)
        if reservation is None:
            raise NotFound(f"Reservation {reservation_id} not found")
        if actor_id not in (reservation.client_id, reservation.service.provider_id):
            raise Forbidden(f"User {actor_id} may not view reservation {reservation_id}")
        return reservation

    async def list_for_provider(self, provider_id: int) -> list[Reservation]:
        """
        All reservations on services owned by the provider, newest first.
        """
        query = (
            select(Reservation)
            .join(Service, Reservation.service_id == Service.id)
            .where(Service.provider_id == provider_id)
        )
        return await self._list(query)

    async def list_for_client(self, client_id: int) -> list[Reservation]:
        """
        All reservations made by the client, newest first.
        """
        return await self._list(select(Reservation).where(Reservation.client_id == client_id))

    async def list_confirmed_starting_between(self, start: datetime, end: datetime) -> list[Reservation]:
        """
        Confirmed reservations whose window starts in [start, end), soonest first.
        """
        result = await self.session.execute(
            select(Reservation)
            .where(
                Reservation.status == CONFIRMED,
                Reservation.start_at >= start,
                Reservation.start_at < end,
            )
            .options(selectinload(Reservation.service), selectinload(Reservation.client))
            .order_by(Reservation.start_at, Reservation.id)
        )
        return list(result.scalars().all())

    async def _transition(self, reservation_id: int, actor_id: int, target: str, *,
                          notification_type: str, verb: str, email_template: str) -> Reservation:
        reservation = await self._load(reservation_id)
        if reservation is None:
            raise NotFound(f"Reservation {reservation_id} not found")
        service = reservation.service
        if service.provider_id != actor_id:
            raise Forbidden(f"User {actor_id} does not provide service {service.id}")

        client = reservation.client
        client_id, client_name, client_email = client.id, client.name, client.email
        service_title = service.title
        start_at = reservation.start_at

        # Guard and write in one statement: only a pending row can move
        result = await self.session.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.status == PENDING)
            .values(status=target, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise InvalidState(f"Reservation {reservation_id} is not pending")
        await self.session.commit()
        logger.info(f"Reservation {reservation_id} {target} by user {actor_id}")

        message = f'Your reservation for "{service_title}" on {_when(start_at)} has been {verb}'
        await self._notify(client_id, message, reservation_id, notification_type)
        if self.send_emails:
            self._email(client_email, email_template, [client_name, service_title, start_at.isoformat()],
                        reservation_id)

        return await self._load(reservation_id)

    async def _notify(self, recipient_id: int, message: str, reservation_id: int, type: str):
        try:
            await self.notifications.create(recipient_id, message, reservation_id, type)
        except SideEffectFailure as exc:
            logger.error(f"Notification for reservation {reservation_id} lost: {exc}")

    def _email(self, to_email: str, template_name: str, template_args: list, reservation_id: int):
        try:
            self.emails.send(to_email, template_name, template_args)
        except SideEffectFailure as exc:
            logger.warning(f"Email {template_name} for reservation {reservation_id} not sent: {exc}")

    async def _load(self, reservation_id: int) -> Reservation | None:
        result = await self.session.execute(
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .options(selectinload(Reservation.service), selectinload(Reservation.client))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _list(self, query) -> list[Reservation]:
        result = await self.session.execute(
            query
            .options(selectinload(Reservation.service), selectinload(Reservation.client))
            .order_by(Reservation.created_at.desc(), Reservation.id.desc())
        )
        return list(result.scalars().all())
