"""
This module contains the main FastAPI application for the marketplace service.
"""
import logging

from fastapi import FastAPI, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from contextlib import asynccontextmanager

from .auth import AuthContext, get_auth_context, require_role
from .config import settings
from .db import create_db_and_tables, get_db_session
from .directory import ServiceDirectory
from .emails import EmailDispatcher
from .errors import ReservationError
from .lifecycle import ReservationLifecycle
from .models import (CategoryView, NotificationView, ReservationCommand, ReservationDetail, ServiceCommand,
                     ServiceUpdate, ServiceView)
from .notifications import NotificationSink
from .worker import CeleryEmailDispatcher

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(api_app: FastAPI):
    """
    Asynchronous context manager for the lifespan of the FastAPI application.
    It creates the database and tables on startup.

    Args:
        api_app (FastAPI): The FastAPI application instance.
    """
    await create_db_and_tables()
    yield

app = FastAPI(lifespan=lifespan)


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


def get_email_dispatcher() -> EmailDispatcher:
    """
    Dependency that provides the email dispatcher.
    """
    return CeleryEmailDispatcher()


def get_lifecycle(db: AsyncSession = Depends(get_db_session),
                  emails: EmailDispatcher = Depends(get_email_dispatcher)) -> ReservationLifecycle:
    """
    Dependency that wires the reservation lifecycle to its collaborators.
    """
    return ReservationLifecycle(db, ServiceDirectory(db), NotificationSink(db), emails,
                                send_emails=settings.send_emails)


@app.get("/")
async def root():
    """
    Root endpoint for the API.
    """
    return {"message": "ServiceHub API running"}


@app.get("/services", response_model=list[ServiceView])
async def list_services(available_only: bool = False, db: AsyncSession = Depends(get_db_session)):
    """
    Lists services, newest first.

    Args:
        available_only (bool): Hide services the provider marked unavailable.
        db (AsyncSession): The database session.
    """
    return await ServiceDirectory(db).list_services(available_only=available_only)


@app.get("/services/{service_id}", response_model=ServiceView)
async def get_service(service_id: int, db: AsyncSession = Depends(get_db_session)):
    return await ServiceDirectory(db).get_service(service_id)


@app.post("/services", response_model=ServiceView, status_code=status.HTTP_201_CREATED)
async def create_service(command: ServiceCommand,
                         auth: AuthContext = Depends(require_role("provider", "admin")),
                         db: AsyncSession = Depends(get_db_session)):
    """
    Publishes a service owned by the authenticated provider.
    """
    return await ServiceDirectory(db).create_service(auth.user_id, command)


@app.put("/services/{service_id}", response_model=ServiceView)
async def update_service(service_id: int, changes: ServiceUpdate,
                         auth: AuthContext = Depends(require_role("provider", "admin")),
                         db: AsyncSession = Depends(get_db_session)):
    """
    Edits a service, availability included. Only its provider may do so.
    """
    return await ServiceDirectory(db).update_service(service_id, auth.user_id, changes)


@app.get("/categories", response_model=list[CategoryView])
async def list_categories(db: AsyncSession = Depends(get_db_session)):
    return await ServiceDirectory(db).list_categories()


@app.get("/categories/{category_id}", response_model=CategoryView)
async def get_category(category_id: int, db: AsyncSession = Depends(get_db_session)):
    return await ServiceDirectory(db).get_category(category_id)


@app.post("/reservations", response_model=ReservationDetail, status_code=status.HTTP_201_CREATED)
async def create_reservation(command: ReservationCommand,
                             auth: AuthContext = Depends(get_auth_context),
                             lifecycle: ReservationLifecycle = Depends(get_lifecycle)):
    """
    Creates a pending reservation for the authenticated client.

    Args:
        command (ReservationCommand): The service and the requested window.
        auth (AuthContext): The acting user.
        lifecycle (ReservationLifecycle): The reservation lifecycle.

    Returns:
        ReservationDetail: The new reservation.
    """
    return await lifecycle.create(auth.user_id, command.service_id, command.to_window())


@app.get("/reservations/seller", response_model=list[ReservationDetail])
async def seller_reservations(auth: AuthContext = Depends(require_role("provider", "admin")),
                              lifecycle: ReservationLifecycle = Depends(get_lifecycle)):
    """
    Reservations on the services of the authenticated provider.
    """
    return await lifecycle.list_for_provider(auth.user_id)


@app.get("/reservations/client", response_model=list[ReservationDetail])
@app.get("/reservations/user", response_model=list[ReservationDetail], include_in_schema=False)
async def client_reservations(auth: AuthContext = Depends(get_auth_context),
                              lifecycle: ReservationLifecycle = Depends(get_lifecycle)):
    """
    Reservations made by the authenticated client.
    """
    return await lifecycle.list_for_client(auth.user_id)


@app.get("/reservations/{reservation_id}", response_model=ReservationDetail)
async def get_reservation(reservation_id: int,
                          auth: AuthContext = Depends(get_auth_context),
                          lifecycle: ReservationLifecycle = Depends(get_lifecycle)):
    return await lifecycle.get(reservation_id, auth.user_id)


@app.patch("/reservations/{reservation_id}/confirm", response_model=ReservationDetail)
async def confirm_reservation(reservation_id: int,
                              auth: AuthContext = Depends(get_auth_context),
                              lifecycle: ReservationLifecycle = Depends(get_lifecycle)):
    """
    Confirms a pending reservation. Only the provider of the service may do so.
    """
    return await lifecycle.confirm(reservation_id, auth.user_id)


@app.patch("/reservations/{reservation_id}/cancel", response_model=ReservationDetail)
async def cancel_reservation(reservation_id: int,
                             auth: AuthContext = Depends(get_auth_context),
                             lifecycle: ReservationLifecycle = Depends(get_lifecycle)):
    """
    Declines a pending reservation. Only the provider of the service may do so.
    """
    return await lifecycle.cancel(reservation_id, auth.user_id)


@app.get("/notifications", response_model=list[NotificationView])
async def list_notifications(unread_only: bool = False,
                             auth: AuthContext = Depends(get_auth_context),
                             db: AsyncSession = Depends(get_db_session)):
    return await NotificationSink(db).list_for_user(auth.user_id, unread_only=unread_only)


@app.patch("/notifications/{notification_id}/read", response_model=NotificationView)
async def read_notification(notification_id: int,
                            auth: AuthContext = Depends(get_auth_context),
                            db: AsyncSession = Depends(get_db_session)):
    return await NotificationSink(db).mark_read(notification_id, auth.user_id)
