"""
shared/models/models.py
All SQLAlchemy ORM models for the legal services marketplace.
UUID primary keys throughout; portable column types (PostgreSQL and SQLite).
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls: type[PyEnum]) -> Enum:
    """Store enum values (lowercase API vocabulary) instead of member names."""
    return Enum(
        enum_cls,
        name=enum_cls.__name__.lower(),
        values_callable=lambda members: [m.value for m in members],
    )


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    CUSTOMER = "customer"
    LAWYER = "lawyer"
    ADMIN = "admin"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class BookingPaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentMethod(str, PyEnum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class NotificationType(str, PyEnum):
    BOOKING = "booking"
    PAYMENT = "payment"
    REVIEW = "review"
    PROFILE = "profile"
    SYSTEM = "system"
    MESSAGE = "message"


class NotificationPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RelatedModel(str, PyEnum):
    BOOKING = "booking"
    PAYMENT = "payment"
    REVIEW = "review"
    USER = "user"
    LAWYER = "lawyer"
    SERVICE = "service"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


def _pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


# ── Association Tables ────────────────────────────────────────

service_lawyers = Table(
    "service_lawyers",
    Base.metadata,
    Column("service_id", Uuid, ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
    Column("lawyer_id", Uuid, ForeignKey("lawyers.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), default=utcnow, nullable=False),
)


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Account for customers, lawyers and admins."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = _pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole), nullable=False, default=UserRole.CUSTOMER
    )
    # Social identities (login flows live outside this service)
    google_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    facebook_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    linkedin_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "password_hash IS NOT NULL OR google_id IS NOT NULL "
            "OR facebook_id IS NOT NULL OR linkedin_id IS NOT NULL",
            name="ck_users_credentials",
        ),
        Index("ix_users_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class Lawyer(TimestampMixin, Base):
    """Professional profile of a lawyer. One-to-one with a User."""
    __tablename__ = "lawyers"

    id: Mapped[uuid.UUID] = _pk()
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    qualifications: Mapped[List[str]] = mapped_column(JSON, default=list)
    experience: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    areas_of_expertise: Mapped[List[str]] = mapped_column(JSON, default=list)
    license_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    license_issued_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    license_expiry_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    languages: Mapped[List[str]] = mapped_column(JSON, default=list)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    documents_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    documents_uploaded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Aggregate rating, maintained only by services.review.aggregator
    rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    number_of_ratings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("hourly_rate >= 0", name="ck_lawyers_hourly_rate"),
        Index("ix_lawyers_rating", "rating"),
    )


class Category(TimestampMixin, Base):
    """Service category. Optional parent for a two-level tree."""
    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = _pk()
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    parent_category_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Service(TimestampMixin, Base):
    """A legal service offered by one or more lawyers."""
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = _pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    short_description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    category_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("categories.id"), nullable=False
    )
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=60, nullable=False)  # minutes
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list)

    rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    number_of_ratings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    popularity_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("base_price >= 0", name="ck_services_base_price"),
        Index("ix_services_category_id", "category_id"),
    )


class Booking(TimestampMixin, Base):
    """
    Appointment between a customer and a lawyer for a service.
    Status is only ever changed through services.booking.lifecycle.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = _pk()
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    lawyer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("lawyers.id"), nullable=False
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("services.id"), nullable=False
    )

    # Schedule
    booking_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_status: Mapped[BookingPaymentStatus] = mapped_column(
        _enum(BookingPaymentStatus), nullable=False, default=BookingPaymentStatus.PENDING
    )
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    lawyer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[UserRole]] = mapped_column(_enum(UserRole), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Reschedule chain
    is_rescheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    original_booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=True
    )

    meeting_link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_reviewed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_bookings_time_order"),
        Index("ix_bookings_customer_id", "customer_id"),
        Index("ix_bookings_lawyer_id", "lawyer_id"),
        Index("ix_bookings_status", "status"),
        Index("ix_bookings_payment_id", "payment_id"),
    )


class Payment(TimestampMixin, Base):
    """Payment transaction. Linked 1-to-1 with a booking."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = _pk()
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), unique=True, nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    lawyer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("lawyers.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod), nullable=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    refunded_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payments_amount"),
        Index("ix_payments_customer_id", "customer_id"),
        Index("ix_payments_lawyer_id", "lawyer_id"),
    )


class Review(TimestampMixin, Base):
    """Post-booking review. One per booking (enforced by unique constraint)."""
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = _pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), unique=True, nullable=False
    )
    lawyer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("lawyers.id"), nullable=True
    )
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("services.id"), nullable=True
    )
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    lawyer_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating_range"),
        CheckConstraint(
            "lawyer_id IS NOT NULL OR service_id IS NOT NULL", name="ck_review_target"
        ),
        Index("ix_reviews_lawyer_id", "lawyer_id"),
        Index("ix_reviews_service_id", "service_id"),
        Index("ix_reviews_user_id", "user_id"),
    )


class CartItem(TimestampMixin, Base):
    """A service (optionally with a chosen lawyer) waiting for checkout."""
    __tablename__ = "cart_items"

    id: Mapped[uuid.UUID] = _pk()
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("services.id", ondelete="CASCADE"), nullable=False
    )
    lawyer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("lawyers.id", ondelete="CASCADE"), nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    preferred_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    preferred_time_slot: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "service_id", "lawyer_id", name="uq_cart_item"),
        CheckConstraint("quantity >= 1", name="ck_cart_quantity"),
        Index("ix_cart_items_user_id", "user_id"),
    )


class WishlistItem(TimestampMixin, Base):
    """User's saved lawyer and/or service."""
    __tablename__ = "wishlist_items"

    id: Mapped[uuid.UUID] = _pk()
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    lawyer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("lawyers.id", ondelete="CASCADE"), nullable=True
    )
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("services.id", ondelete="CASCADE"), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("user_id", "lawyer_id", name="uq_wishlist_lawyer"),
        UniqueConstraint("user_id", "service_id", name="uq_wishlist_service"),
        CheckConstraint(
            "lawyer_id IS NOT NULL OR service_id IS NOT NULL", name="ck_wishlist_target"
        ),
    )


class Notification(TimestampMixin, Base):
    """In-app notification record."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = _pk()
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType), nullable=False)
    related_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    related_model: Mapped[Optional[RelatedModel]] = mapped_column(
        _enum(RelatedModel), nullable=True
    )
    priority: Mapped[NotificationPriority] = mapped_column(
        _enum(NotificationPriority), default=NotificationPriority.MEDIUM, nullable=False
    )
    action_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "is_read"),)
