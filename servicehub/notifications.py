"""
This module contains the persistence of in-app notifications.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import NotFound, SideEffectFailure
from .models import Notification

logger = logging.getLogger(__name__)

RESERVATION_REQUESTED = "reservation_requested"
RESERVATION_CONFIRMED = "reservation_confirmed"
RESERVATION_CANCELLED = "reservation_cancelled"


class NotificationSink:
    """
    Writes notifications in their own transaction, independent of the
    reservation write that triggered them.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, recipient_id: int, message: str, reservation_id: int | None,
                     type: str) -> Notification:
        """
        Persists a new unread notification.

        Raises:
            SideEffectFailure: The notification could not be stored.
        """
        notification = Notification(
            user_id=recipient_id,
            type=type,
            message=message,
            reservation_id=reservation_id,
            is_read=False,
        )
        try:
            self.session.add(notification)
            await self.session.commit()
            await self.session.refresh(notification)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise SideEffectFailure(f"Could not store notification for user {recipient_id}") from exc
        logger.info(f"Notification {notification.id} ({type}) created for user {recipient_id}")
        return notification

    async def list_for_user(self, user_id: int, unread_only: bool = False) -> list[Notification]:
        query = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def mark_read(self, notification_id: int, user_id: int) -> Notification:
        notification = await self.session.get(Notification, notification_id)
        # Someone else's notification is reported as missing
        if notification is None or notification.user_id != user_id:
            raise NotFound(f"Notification {notification_id} not found")
        notification.is_read = True
        await self.session.commit()
        await self.session.refresh(notification)
        return notification
