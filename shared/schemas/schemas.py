"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
Every response is an envelope: {success, message?, <named payload>}.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.models.models import (
    BookingPaymentStatus,
    BookingStatus,
    NotificationPriority,
    NotificationType,
    PaymentMethod,
    PaymentStatus,
    RelatedModel,
    UserRole,
)


def _aware(v: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so comparisons never mix the two."""
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class Envelope(BaseSchema):
    success: bool = True
    message: Optional[str] = None


class PageMeta(Envelope):
    count: int
    total: int
    total_pages: int
    current_page: int


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


# ── User / Auth ───────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    name: str
    email: EmailStr
    phone: Optional[str]
    role: UserRole
    created_at: datetime


class RegisterRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    phone: Optional[str] = Field(None, max_length=20)
    role: UserRole = UserRole.CUSTOMER

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: UserRole) -> UserRole:
        if v == UserRole.ADMIN:
            raise ValueError("Admin accounts cannot be self-registered")
        return v


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1)


class AuthResponse(Envelope):
    token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserResponse


class UserEnvelope(Envelope):
    user: UserResponse


class UserUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)


class PasswordUpdateRequest(BaseSchema):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


# ── Lawyer ────────────────────────────────────────────────────

class LawyerResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    qualifications: List[str]
    experience: int
    areas_of_expertise: List[str]
    license_number: Optional[str]
    license_issued_by: Optional[str]
    license_expiry_date: Optional[datetime]
    bio: Optional[str]
    hourly_rate: Decimal
    languages: List[str]
    is_verified: bool
    is_active: bool
    documents_verified: bool = False
    documents_uploaded_at: Optional[datetime] = None
    rating: float
    number_of_ratings: int
    # Injected from User join
    name: Optional[str] = None
    email: Optional[str] = None


class LawyerUpdateRequest(BaseSchema):
    qualifications: Optional[List[str]] = None
    experience: Optional[int] = Field(None, ge=0, le=80)
    areas_of_expertise: Optional[List[str]] = None
    license_number: Optional[str] = Field(None, max_length=100)
    license_issued_by: Optional[str] = Field(None, max_length=255)
    license_expiry_date: Optional[datetime] = None
    bio: Optional[str] = Field(None, max_length=5000)
    hourly_rate: Optional[Decimal] = Field(None, ge=0)
    languages: Optional[List[str]] = None


class LawyerEnvelope(Envelope):
    lawyer: LawyerResponse


class LawyerListResponse(PageMeta):
    lawyers: List[LawyerResponse]


# ── Category ──────────────────────────────────────────────────

class CategoryCreate(BaseSchema):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=255)
    parent_category_id: Optional[uuid.UUID] = None
    order: int = 0
    is_active: bool = True


class CategoryUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=255)
    parent_category_id: Optional[uuid.UUID] = None
    order: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryResponse(BaseSchema):
    id: uuid.UUID
    name: str
    description: Optional[str]
    icon: Optional[str]
    parent_category_id: Optional[uuid.UUID]
    order: int
    is_active: bool


class CategoryEnvelope(Envelope):
    category: CategoryResponse


class CategoryListResponse(Envelope):
    count: int
    categories: List[CategoryResponse]


# ── Service ───────────────────────────────────────────────────

class ServiceCreate(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    description: str = Field(..., min_length=2)
    short_description: Optional[str] = Field(None, max_length=500)
    category_id: uuid.UUID
    base_price: Decimal = Field(..., ge=0)
    duration: int = Field(60, ge=1)
    is_active: bool = True
    featured: bool = False
    tags: List[str] = []
    lawyer_ids: List[uuid.UUID] = []


class ServiceUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = Field(None, min_length=2)
    short_description: Optional[str] = Field(None, max_length=500)
    category_id: Optional[uuid.UUID] = None
    base_price: Optional[Decimal] = Field(None, ge=0)
    duration: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    featured: Optional[bool] = None
    tags: Optional[List[str]] = None


class ServiceLawyersUpdate(BaseSchema):
    lawyer_ids: List[uuid.UUID]


class ServiceResponse(BaseSchema):
    id: uuid.UUID
    name: str
    description: str
    short_description: Optional[str]
    category_id: uuid.UUID
    base_price: Decimal
    duration: int
    is_active: bool
    featured: bool
    tags: List[str]
    rating: float
    number_of_ratings: int
    popularity_score: int
    lawyer_ids: List[uuid.UUID] = []


class ServiceEnvelope(Envelope):
    service: ServiceResponse


class ServiceDetailEnvelope(ServiceEnvelope):
    lawyers: List[LawyerResponse] = []


class ServiceListResponse(PageMeta):
    services: List[ServiceResponse]


# ── Cart ──────────────────────────────────────────────────────

class CartItemCreate(BaseSchema):
    service_id: uuid.UUID
    lawyer_id: Optional[uuid.UUID] = None
    quantity: int = Field(1, ge=1, le=100)
    preferred_date: Optional[datetime] = None
    preferred_time_slot: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("preferred_date")
    @classmethod
    def normalize_tz(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _aware(v)


class CartItemUpdate(BaseSchema):
    quantity: Optional[int] = Field(None, ge=1, le=100)
    preferred_date: Optional[datetime] = None
    preferred_time_slot: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("preferred_date")
    @classmethod
    def normalize_tz(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _aware(v)


class CartItemResponse(BaseSchema):
    id: uuid.UUID
    service_id: uuid.UUID
    lawyer_id: Optional[uuid.UUID]
    quantity: int
    preferred_date: Optional[datetime]
    preferred_time_slot: Optional[str]
    notes: Optional[str]
    # Priced from the joined service / lawyer
    service_name: Optional[str] = None
    item_total: Optional[Decimal] = None


class CartItemEnvelope(Envelope):
    item: CartItemResponse


class CartResponse(Envelope):
    count: int
    total: Decimal
    items: List[CartItemResponse]


# ── Wishlist ──────────────────────────────────────────────────

class WishlistItemCreate(BaseSchema):
    lawyer_id: Optional[uuid.UUID] = None
    service_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def require_target(self) -> "WishlistItemCreate":
        if not self.lawyer_id and not self.service_id:
            raise ValueError("Either lawyer ID or service ID must be provided")
        return self


class WishlistItemResponse(BaseSchema):
    id: uuid.UUID
    lawyer_id: Optional[uuid.UUID]
    service_id: Optional[uuid.UUID]
    created_at: datetime


class WishlistItemEnvelope(Envelope):
    item: WishlistItemResponse


class WishlistResponse(Envelope):
    count: int
    items: List[WishlistItemResponse]


# ── Booking ───────────────────────────────────────────────────

class _ScheduleMixin(BaseSchema):
    booking_date: datetime
    start_time: datetime
    end_time: datetime

    @field_validator("booking_date", "start_time", "end_time")
    @classmethod
    def normalize_tz(cls, v: datetime) -> datetime:
        return _aware(v)

    @model_validator(mode="after")
    def validate_times(self):
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class BookingCreateRequest(_ScheduleMixin):
    lawyer_id: uuid.UUID
    service_id: uuid.UUID
    notes: Optional[str] = Field(None, max_length=2000)


class RescheduleRequest(_ScheduleMixin):
    notes: Optional[str] = Field(None, max_length=2000)


class CheckoutRequest(BaseSchema):
    payment_method: Optional[PaymentMethod] = None


class BookingStatusUpdate(BaseSchema):
    status: BookingStatus
    notes: Optional[str] = Field(None, max_length=2000)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    customer_id: uuid.UUID
    lawyer_id: uuid.UUID
    service_id: uuid.UUID
    status: BookingStatus
    booking_date: datetime
    start_time: datetime
    end_time: datetime
    total_amount: Decimal
    payment_status: BookingPaymentStatus
    payment_id: Optional[uuid.UUID]
    notes: Optional[str]
    customer_notes: Optional[str]
    lawyer_notes: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_by: Optional[UserRole]
    cancelled_at: Optional[datetime]
    is_rescheduled: bool
    original_booking_id: Optional[uuid.UUID]
    meeting_link: Optional[str]
    is_reviewed: bool
    created_at: datetime


class BookingEnvelope(Envelope):
    booking: BookingResponse


class RescheduleResponse(BookingEnvelope):
    original_booking: BookingResponse


class CheckoutResponse(Envelope):
    total_amount: Decimal
    booking_count: int
    payment_method: Optional[PaymentMethod] = None
    bookings: List[BookingResponse]


class BookingListResponse(PageMeta):
    bookings: List[BookingResponse]


# ── Payment ───────────────────────────────────────────────────

class PaymentProcessRequest(BaseSchema):
    booking_id: uuid.UUID
    payment_method: PaymentMethod


class RefundRequest(BaseSchema):
    payment_id: uuid.UUID
    refund_reason: str = Field(..., min_length=2, max_length=1000)
    refund_amount: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    customer_id: uuid.UUID
    lawyer_id: uuid.UUID
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_method: PaymentMethod
    transaction_id: Optional[str]
    refunded_amount: Decimal
    refund_reason: Optional[str]
    refunded_at: Optional[datetime]
    receipt_url: Optional[str]
    created_at: datetime


class PaymentEnvelope(Envelope):
    payment: PaymentResponse
    booking: Optional[BookingResponse] = None


class PaymentListResponse(PageMeta):
    payments: List[PaymentResponse]


# ── Review ────────────────────────────────────────────────────

class ReviewCreateRequest(BaseSchema):
    booking_id: uuid.UUID
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=2, max_length=2000)
    lawyer_id: Optional[uuid.UUID] = None
    service_id: Optional[uuid.UUID] = None


class ReviewUpdateRequest(BaseSchema):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, min_length=2, max_length=2000)


class ReviewResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    booking_id: uuid.UUID
    lawyer_id: Optional[uuid.UUID]
    service_id: Optional[uuid.UUID]
    rating: int
    comment: str
    is_published: bool
    is_verified: bool
    lawyer_response: Optional[str]
    admin_response: Optional[str]
    created_at: datetime


class ReviewEnvelope(Envelope):
    review: ReviewResponse


class ReviewListResponse(PageMeta):
    rating: Optional[float] = None
    number_of_ratings: Optional[int] = None
    reviews: List[ReviewResponse]


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    title: str
    message: str
    type: NotificationType
    related_id: Optional[uuid.UUID]
    related_model: Optional[RelatedModel]
    priority: NotificationPriority
    action_url: Optional[str]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


class NotificationEnvelope(Envelope):
    notification: NotificationResponse


class NotificationListResponse(PageMeta):
    unread_count: int
    notifications: List[NotificationResponse]
