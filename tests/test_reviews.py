"""
tests/test_reviews.py
Tests for reviews and the lawyer/service rating aggregates.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.review import aggregator
from shared.models.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Lawyer,
    Notification,
    Review,
    Service,
    User,
    utcnow,
)
from tests.conftest import auth_headers


async def _make_booking(
    db: AsyncSession, customer: User, lawyer: Lawyer, service: Service,
    status: BookingStatus = BookingStatus.COMPLETED,
) -> Booking:
    now = utcnow()
    booking = Booking(
        customer_id=customer.id,
        lawyer_id=lawyer.id,
        service_id=service.id,
        booking_date=now,
        start_time=now,
        end_time=now + timedelta(hours=1),
        total_amount=Decimal("150.00"),
        status=status,
        payment_status=BookingPaymentStatus.PAID,
    )
    db.add(booking)
    await db.commit()
    return booking


@pytest_asyncio.fixture
async def completed_booking(db, user, lawyer_profile, service) -> Booking:
    return await _make_booking(db, user, lawyer_profile, service)


async def _review(client: AsyncClient, user: User, booking: Booking, rating: int, **targets):
    payload = {"booking_id": str(booking.id), "rating": rating, "comment": "Very helpful advice"}
    payload.update({k: str(v) for k, v in targets.items()})
    return await client.post("/api/services/reviews", headers=auth_headers(user), json=payload)


# ── Create ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_review_updates_ratings(
    client: AsyncClient, db: AsyncSession, user: User, lawyer_user: User,
    lawyer_profile: Lawyer, service: Service, completed_booking: Booking,
):
    response = await _review(
        client, user, completed_booking, 4, lawyer_id=lawyer_profile.id, service_id=service.id
    )
    assert response.status_code == 201
    review = response.json()["review"]
    assert review["is_verified"] is True

    await db.refresh(lawyer_profile)
    await db.refresh(service)
    await db.refresh(completed_booking)
    assert lawyer_profile.rating == 4.0
    assert lawyer_profile.number_of_ratings == 1
    assert service.rating == 4.0
    assert completed_booking.is_reviewed is True

    titles = (
        await db.execute(select(Notification.title).where(Notification.user_id == lawyer_user.id))
    ).scalars().all()
    assert "New Review Received" in titles


@pytest.mark.asyncio
async def test_rating_is_exact_mean(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User,
    lawyer_profile: Lawyer, service: Service,
):
    """Ratings 5, 4 and 4 average to 4.333..., not a rounded running value."""
    first = await _make_booking(db, user, lawyer_profile, service)
    second = await _make_booking(db, other_user, lawyer_profile, service)
    third = await _make_booking(db, user, lawyer_profile, service)

    await _review(client, user, first, 5, lawyer_id=lawyer_profile.id)
    await _review(client, other_user, second, 4, lawyer_id=lawyer_profile.id)
    await _review(client, user, third, 4, lawyer_id=lawyer_profile.id)

    await db.refresh(lawyer_profile)
    assert lawyer_profile.number_of_ratings == 3
    assert lawyer_profile.rating == pytest.approx(13 / 3)


@pytest.mark.asyncio
async def test_only_named_targets_are_rated(
    client: AsyncClient, db: AsyncSession, user: User, lawyer_profile: Lawyer,
    service: Service, completed_booking: Booking,
):
    await _review(client, user, completed_booking, 2, service_id=service.id)

    await db.refresh(lawyer_profile)
    await db.refresh(service)
    assert service.number_of_ratings == 1
    assert lawyer_profile.number_of_ratings == 0


@pytest.mark.asyncio
async def test_review_requires_a_target(client: AsyncClient, user: User, completed_booking: Booking):
    response = await _review(client, user, completed_booking, 5)
    assert response.status_code == 400
    assert response.json()["message"] == "Either lawyer ID or service ID must be provided"


@pytest.mark.asyncio
async def test_review_pending_booking_not_found(
    client: AsyncClient, db: AsyncSession, user: User, lawyer_profile: Lawyer, service: Service
):
    booking = await _make_booking(db, user, lawyer_profile, service, status=BookingStatus.CONFIRMED)

    response = await _review(client, user, booking, 5, lawyer_id=lawyer_profile.id)
    assert response.status_code == 404
    assert response.json()["message"] == "Booking not found or not completed"


@pytest.mark.asyncio
async def test_review_someone_elses_booking(
    client: AsyncClient, other_user: User, lawyer_profile: Lawyer, completed_booking: Booking
):
    response = await _review(client, other_user, completed_booking, 1, lawyer_id=lawyer_profile.id)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_review_mismatched_lawyer(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User, completed_booking: Booking
):
    stranger = Lawyer(user_id=other_user.id)
    db.add(stranger)
    await db.commit()

    response = await _review(client, user, completed_booking, 5, lawyer_id=stranger.id)
    assert response.status_code == 400
    assert response.json()["message"] == "Lawyer does not match the booking"


@pytest.mark.asyncio
async def test_duplicate_review_conflicts(
    client: AsyncClient, user: User, lawyer_profile: Lawyer, completed_booking: Booking
):
    await _review(client, user, completed_booking, 5, lawyer_id=lawyer_profile.id)

    response = await _review(client, user, completed_booking, 3, lawyer_id=lawyer_profile.id)
    assert response.status_code == 409
    assert response.json()["message"] == "Review already exists for this booking"


@pytest.mark.asyncio
async def test_rating_out_of_range(
    client: AsyncClient, user: User, lawyer_profile: Lawyer, completed_booking: Booking
):
    response = await _review(client, user, completed_booking, 6, lawyer_id=lawyer_profile.id)
    assert response.status_code == 400


# ── Update / Delete ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_update_review_recomputes(
    client: AsyncClient, db: AsyncSession, user: User, lawyer_profile: Lawyer,
    completed_booking: Booking,
):
    created = await _review(client, user, completed_booking, 5, lawyer_id=lawyer_profile.id)
    review_id = created.json()["review"]["id"]

    response = await client.put(
        f"/api/services/reviews/{review_id}", headers=auth_headers(user), json={"rating": 2}
    )
    assert response.status_code == 200
    assert response.json()["review"]["rating"] == 2

    await db.refresh(lawyer_profile)
    assert lawyer_profile.rating == 2.0
    assert lawyer_profile.number_of_ratings == 1


@pytest.mark.asyncio
async def test_update_review_by_non_owner(
    client: AsyncClient, user: User, other_user: User, lawyer_profile: Lawyer,
    completed_booking: Booking,
):
    created = await _review(client, user, completed_booking, 5, lawyer_id=lawyer_profile.id)
    review_id = created.json()["review"]["id"]

    response = await client.put(
        f"/api/services/reviews/{review_id}", headers=auth_headers(other_user), json={"rating": 1}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_last_review_resets_rating(
    client: AsyncClient, db: AsyncSession, user: User, lawyer_profile: Lawyer,
    completed_booking: Booking,
):
    created = await _review(client, user, completed_booking, 5, lawyer_id=lawyer_profile.id)
    review_id = created.json()["review"]["id"]

    response = await client.delete(f"/api/services/reviews/{review_id}", headers=auth_headers(user))
    assert response.status_code == 200

    await db.refresh(lawyer_profile)
    await db.refresh(completed_booking)
    assert lawyer_profile.rating == 0.0
    assert lawyer_profile.number_of_ratings == 0
    assert completed_booking.is_reviewed is False


@pytest.mark.asyncio
async def test_admin_can_delete_review(
    client: AsyncClient, user: User, admin_user: User, lawyer_profile: Lawyer,
    completed_booking: Booking,
):
    created = await _review(client, user, completed_booking, 1, lawyer_id=lawyer_profile.id)
    review_id = created.json()["review"]["id"]

    response = await client.delete(
        f"/api/services/reviews/{review_id}", headers=auth_headers(admin_user)
    )
    assert response.status_code == 200


# ── Listings ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_public_listings_include_rating(
    client: AsyncClient, user: User, lawyer_profile: Lawyer, service: Service,
    completed_booking: Booking,
):
    await _review(client, user, completed_booking, 3, lawyer_id=lawyer_profile.id, service_id=service.id)

    for url in (
        f"/api/services/lawyers/{lawyer_profile.id}/reviews",
        f"/api/services/{service.id}/reviews",
    ):
        data = (await client.get(url)).json()
        assert data["total"] == 1
        assert data["rating"] == 3.0
        assert data["number_of_ratings"] == 1


@pytest.mark.asyncio
async def test_unpublished_reviews_hidden(
    client: AsyncClient, db: AsyncSession, user: User, lawyer_profile: Lawyer,
    completed_booking: Booking,
):
    created = await _review(client, user, completed_booking, 3, lawyer_id=lawyer_profile.id)
    review = await db.get(Review, uuid.UUID(created.json()["review"]["id"]))
    review.is_published = False
    await db.commit()

    data = (await client.get(f"/api/services/lawyers/{lawyer_profile.id}/reviews")).json()
    assert data["total"] == 0


@pytest.mark.asyncio
async def test_reviews_for_unknown_lawyer(client: AsyncClient):
    response = await client.get(f"/api/services/lawyers/{uuid.uuid4()}/reviews")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_my_reviews(
    client: AsyncClient, user: User, lawyer_profile: Lawyer, completed_booking: Booking
):
    await _review(client, user, completed_booking, 4, lawyer_id=lawyer_profile.id)

    data = (await client.get("/api/services/reviews/user", headers=auth_headers(user))).json()
    assert data["count"] == 1


# ── Aggregator ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_recompute_repairs_drifted_aggregate(
    db: AsyncSession, user: User, lawyer_profile: Lawyer, completed_booking: Booking
):
    """A full re-scan overwrites whatever the stored aggregate says."""
    db.add(Review(
        user_id=user.id,
        booking_id=completed_booking.id,
        lawyer_id=lawyer_profile.id,
        rating=5,
        comment="Excellent",
    ))
    lawyer_profile.rating = 1.7
    lawyer_profile.number_of_ratings = 12
    await db.flush()

    await aggregator.recompute_lawyer_rating(db, lawyer_profile.id)
    await db.commit()

    assert lawyer_profile.rating == 5.0
    assert lawyer_profile.number_of_ratings == 1
