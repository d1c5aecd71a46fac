"""
This module contains the data models for the marketplace service.
"""
from datetime import datetime, timedelta, timezone
from typing import Literal, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship
from alchemical import Model

ReservationStatus = Literal["pending", "confirmed", "cancelled"]
UserRole = Literal["client", "provider", "admin"]

PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"


def utcnow() -> datetime:
    """
    Current time as a naive UTC datetime, the format stored in every DateTime column.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class User(Model):
    """
    Represents a marketplace user. Providers own services, clients reserve them.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    role: ClassVar[UserRole] = Column(String, nullable=False, default="client")


class Category(Model):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)


class Service(Model):
    """
    Represents a bookable offering owned by exactly one provider.

    Attributes:
        id (int): The primary key of the service.
        title (str): Short title shown in listings.
        description (str): Free-text description.
        price (float): Price of the service.
        is_available (bool): Availability flag toggled by the provider.
        condition (str): Free-text conditions of the offer.
        category_id (int): Category of the service.
        provider_id (int): The user that created and owns the service.
        image_url (str): Optional featured image.
    """
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    price = Column(Float, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    condition = Column(Text)
    category_id = Column(Integer, ForeignKey("categories.id"))
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    image_url = Column(String)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    provider = relationship("User")
    category = relationship("Category")


class Reservation(Model):
    """
    Represents a client's request to book a service over the window [start_at, end_at).

    Attributes:
        id (int): The primary key of the reservation.
        client_id (int): The user who made the request.
        service_id (int): The reserved service.
        start_at (datetime): Start of the window, naive UTC.
        end_at (datetime): End of the window, naive UTC. Equal to start_at for point bookings.
        status (ReservationStatus): pending, then confirmed or cancelled.
    """
    __tablename__ = "reservations"
    __table_args__ = (
        # One live reservation per exact window; cancelled rows free it
        Index("uq_reservations_live_window", "service_id", "start_at", "end_at", unique=True,
              sqlite_where=text("status != 'cancelled'"),
              postgresql_where=text("status != 'cancelled'")),
    )

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    status: ClassVar[ReservationStatus] = Column(String, nullable=False, default=PENDING, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    client = relationship("User")
    service = relationship("Service")


class Notification(Model):
    """
    Represents an in-app message sent to a user when a reservation changes state.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    reservation_id = Column(Integer, ForeignKey("reservations.id"))
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class TimeWindow(BaseModel):
    """
    Canonical reservation window [start, end). A point booking has start == end.
    """
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self):
        self.start = as_naive_utc(self.start)
        self.end = as_naive_utc(self.end)
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class ReservationCommand(BaseModel):
    """
    Represents the command for creating a reservation.

    Either a single `date` (with an optional duration) or a
    `start_date`/`end_date` pair must be given.
    """
    service_id: int = Field(..., description="Service being reserved")
    date: Optional[datetime] = Field(None, description="Point-in-time booking")
    duration_minutes: int = Field(0, ge=0, description="Length of a point-in-time booking")
    start_date: Optional[datetime] = Field(None, alias="startDate")
    end_date: Optional[datetime] = Field(None, alias="endDate")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def check_window(self):
        has_pair = self.start_date is not None or self.end_date is not None
        if self.date is not None and has_pair:
            raise ValueError("give either date or startDate/endDate, not both")
        if self.date is None:
            if self.start_date is None or self.end_date is None:
                raise ValueError("startDate and endDate are both required when date is not given")
            if as_naive_utc(self.end_date) < as_naive_utc(self.start_date):
                raise ValueError("endDate must not be before startDate")
        return self

    def to_window(self) -> TimeWindow:
        if self.date is not None:
            return TimeWindow(start=self.date, end=self.date + timedelta(minutes=self.duration_minutes))
        return TimeWindow(start=self.start_date, end=self.end_date)


class ClientView(BaseModel):
    """Public view of a user: never carries credentials."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


class ServiceView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    price: float
    is_available: bool
    condition: Optional[str] = None
    category_id: Optional[int] = None
    provider_id: int
    image_url: Optional[str] = None


class ReservationView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_id: int
    service_id: int
    start_at: datetime
    end_at: datetime
    status: ReservationStatus
    created_at: datetime
    updated_at: datetime


class ReservationDetail(ReservationView):
    """A reservation with its service and a restricted view of the client."""
    service: ServiceView
    client: ClientView


class NotificationView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    type: str
    message: str
    reservation_id: Optional[int] = None
    is_read: bool
    created_at: datetime


class CategoryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class ServiceCommand(BaseModel):
    """
    Represents the command for publishing a service. The caller becomes its provider.
    """
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    is_available: bool = True
    condition: Optional[str] = None
    category_id: Optional[int] = None
    image_url: Optional[str] = None


class ServiceUpdate(BaseModel):
    """
    Partial update of a service. Omitted fields keep their value.
    """
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    is_available: Optional[bool] = None
    condition: Optional[str] = None
    category_id: Optional[int] = None
    image_url: Optional[str] = None

    @model_validator(mode="after")
    def check_required_fields(self):
        for name in ("title", "price", "is_available"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self
