"""
This module contains the lookups of services, categories and users, and the
provider-side editing of services.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import Forbidden, NotFound
from .models import Category, Service, ServiceCommand, ServiceUpdate, User

logger = logging.getLogger(__name__)


class ServiceDirectory:
    """
    Access to services and the users that own or reserve them.
    The reservation lifecycle only reads through it.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_service(self, service_id: int) -> Service:
        service = await self.session.get(Service, service_id)
        if service is None:
            raise NotFound(f"Service {service_id} not found")
        return service

    async def get_user(self, user_id: int) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    async def list_services(self, available_only: bool = False) -> list[Service]:
        query = select(Service).order_by(Service.created_at.desc(), Service.id.desc())
        if available_only:
            query = query.where(Service.is_available.is_(True))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_categories(self) -> list[Category]:
        result = await self.session.execute(select(Category).order_by(Category.name))
        return list(result.scalars().all())

    async def get_category(self, category_id: int) -> Category:
        category = await self.session.get(Category, category_id)
        if category is None:
            raise NotFound(f"Category {category_id} not found")
        return category

    async def create_service(self, provider_id: int, command: ServiceCommand) -> Service:
        """
        Publishes a service owned by the calling provider.

        Raises:
            NotFound: The provider or the category does not exist.
        """
        await self.get_user(provider_id)
        if command.category_id is not None:
            await self.get_category(command.category_id)

        service = Service(provider_id=provider_id, **command.model_dump())
        self.session.add(service)
        await self.session.commit()
        await self.session.refresh(service)
        logger.info(f"Service {service.id} published by provider {provider_id}")
        return service

    async def update_service(self, service_id: int, actor_id: int, changes: ServiceUpdate) -> Service:
        """
        Applies a partial update, availability toggle included, for the service's owner.

        Raises:
            NotFound: The service or the new category does not exist.
            Forbidden: The actor does not own the service.
        """
        service = await self.get_service(service_id)
        if service.provider_id != actor_id:
            raise Forbidden(f"User {actor_id} does not provide service {service_id}")

        fields = changes.model_dump(exclude_unset=True)
        if fields.get("category_id") is not None:
            await self.get_category(fields["category_id"])
        for name, value in fields.items():
            setattr(service, name, value)
        await self.session.commit()
        await self.session.refresh(service)
        logger.info(f"Service {service_id} updated by provider {actor_id}: {sorted(fields)}")
        return service
