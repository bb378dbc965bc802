"""
tests/test_payments.py
Tests for simulated payment capture, refunds and payment history.
"""

import random
import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from main import app
from services.payment.gateway import DemoGateway, SimulatedGateway, get_gateway
from shared.models.models import Booking, Lawyer, Notification, Payment, Service, User
from tests.conftest import auth_headers

SLOT = {
    "booking_date": "2030-03-10T00:00:00Z",
    "start_time": "2030-03-10T09:00:00Z",
    "end_time": "2030-03-10T10:00:00Z",
}


async def _book(client: AsyncClient, user: User, lawyer: Lawyer, service: Service) -> dict:
    response = await client.post(
        "/api/bookings",
        headers=auth_headers(user),
        json={"lawyer_id": str(lawyer.id), "service_id": str(service.id), **SLOT},
    )
    return response.json()["booking"]


async def _pay(client: AsyncClient, user: User, booking_id: str):
    return await client.post(
        "/api/payments/process",
        headers=auth_headers(user),
        json={"booking_id": booking_id, "payment_method": "credit_card"},
    )


@pytest.fixture
def declining_gateway():
    """Swap in a gateway that declines every charge."""
    app.dependency_overrides[get_gateway] = lambda: SimulatedGateway(0.0)
    yield
    app.dependency_overrides.pop(get_gateway, None)


# ── Gateways ───────────────────────────────────────────────────────────────────

def test_demo_gateway_always_succeeds():
    result = DemoGateway().charge(uuid.uuid4(), Decimal("10.00"), "USD")
    assert result.succeeded
    assert result.transaction_id.startswith("DEMO_")
    assert result.receipt_url.endswith(result.transaction_id)


def test_simulated_gateway_respects_success_rate():
    always = SimulatedGateway(1.0, rng=random.Random(7))
    never = SimulatedGateway(0.0, rng=random.Random(7))

    assert always.charge(uuid.uuid4(), Decimal("1"), "USD").transaction_id.startswith("SIM_")
    declined = never.charge(uuid.uuid4(), Decimal("1"), "USD")
    assert not declined.succeeded
    assert declined.error == "Payment declined by gateway"


# ── Process ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_payment_confirms_booking(
    client: AsyncClient, db: AsyncSession, user: User, lawyer_user: User,
    lawyer_profile: Lawyer, service: Service,
):
    booking = await _book(client, user, lawyer_profile, service)

    response = await _pay(client, user, booking["id"])
    assert response.status_code == 200
    data = response.json()

    assert data["payment"]["status"] == "success"
    assert Decimal(data["payment"]["amount"]) == Decimal("150.00")
    assert data["payment"]["transaction_id"].startswith("DEMO_")
    assert data["booking"]["status"] == "confirmed"
    assert data["booking"]["payment_status"] == "paid"
    assert data["booking"]["payment_id"] == data["payment"]["id"]

    # Both parties are told about the payment
    for party in (user, lawyer_user):
        titles = (
            await db.execute(select(Notification.title).where(Notification.user_id == party.id))
        ).scalars().all()
        assert "Payment Successful" in titles


@pytest.mark.asyncio
async def test_duplicate_payment_conflicts(
    client: AsyncClient, user: User, lawyer_profile: Lawyer, service: Service
):
    booking = await _book(client, user, lawyer_profile, service)
    await _pay(client, user, booking["id"])

    response = await _pay(client, user, booking["id"])
    assert response.status_code == 409
    assert response.json()["message"] == "Payment already processed for this booking"


@pytest.mark.asyncio
async def test_pay_for_someone_elses_booking(
    client: AsyncClient, user: User, other_user: User, lawyer_profile: Lawyer, service: Service
):
    booking = await _book(client, user, lawyer_profile, service)

    response = await _pay(client, other_user, booking["id"])
    assert response.status_code == 404
    assert response.json()["message"] == "Booking not found"


@pytest.mark.asyncio
async def test_pay_for_cancelled_booking(
    client: AsyncClient, user: User, lawyer_profile: Lawyer, service: Service
):
    booking = await _book(client, user, lawyer_profile, service)
    await client.put(
        f"/api/bookings/{booking['id']}/status",
        headers=auth_headers(user),
        json={"status": "cancelled"},
    )

    response = await _pay(client, user, booking["id"])
    assert response.status_code == 409
    assert response.json()["message"] == "Cannot pay for a cancelled booking"


@pytest.mark.asyncio
async def test_declined_payment_is_recorded_and_retryable(
    client: AsyncClient, db: AsyncSession, user: User, lawyer_profile: Lawyer,
    service: Service, declining_gateway,
):
    booking = await _book(client, user, lawyer_profile, service)

    response = await _pay(client, user, booking["id"])
    assert response.status_code == 402
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Payment failed"
    assert body["payment"]["status"] == "failed"

    stored = await db.get(Booking, uuid.UUID(booking["id"]))
    assert stored.payment_status == "failed"
    assert stored.status == "pending"

    # The failed attempt is retried on the same row once the gateway cooperates
    app.dependency_overrides.pop(get_gateway)
    retry = await _pay(client, user, booking["id"])
    assert retry.status_code == 200
    assert retry.json()["payment"]["id"] == body["payment"]["id"]


# ── Refund ─────────────────────────────────────────────────────────────────────

async def _paid_booking(client, user, lawyer, service) -> tuple[dict, dict]:
    booking = await _book(client, user, lawyer, service)
    data = (await _pay(client, user, booking["id"])).json()
    return data["booking"], data["payment"]


@pytest.mark.asyncio
async def test_full_refund_by_lawyer(
    client: AsyncClient, db: AsyncSession, user: User, lawyer_user: User,
    lawyer_profile: Lawyer, service: Service,
):
    booking, payment = await _paid_booking(client, user, lawyer_profile, service)

    response = await client.post(
        "/api/payments/refund",
        headers=auth_headers(lawyer_user),
        json={"payment_id": payment["id"], "refund_reason": "Client withdrew"},
    )
    assert response.status_code == 200
    refunded = response.json()["payment"]
    assert refunded["status"] == "refunded"
    assert Decimal(refunded["refunded_amount"]) == Decimal("150.00")
    assert refunded["refunded_at"] is not None

    stored = await db.get(Booking, uuid.UUID(booking["id"]))
    assert stored.payment_status == "refunded"


@pytest.mark.asyncio
async def test_partial_refund_by_admin(
    client: AsyncClient, db: AsyncSession, user: User, admin_user: User,
    lawyer_profile: Lawyer, service: Service,
):
    booking, payment = await _paid_booking(client, user, lawyer_profile, service)

    response = await client.post(
        "/api/payments/refund",
        headers=auth_headers(admin_user),
        json={"payment_id": payment["id"], "refund_reason": "Short session", "refund_amount": "50.00"},
    )
    assert response.status_code == 200
    assert response.json()["payment"]["status"] == "partially_refunded"

    stored = await db.get(Booking, uuid.UUID(booking["id"]))
    assert stored.payment_status == "partially_refunded"


@pytest.mark.asyncio
async def test_refund_exceeding_amount_rejected(
    client: AsyncClient, user: User, lawyer_user: User, lawyer_profile: Lawyer, service: Service
):
    _, payment = await _paid_booking(client, user, lawyer_profile, service)

    response = await client.post(
        "/api/payments/refund",
        headers=auth_headers(lawyer_user),
        json={"payment_id": payment["id"], "refund_reason": "Oops", "refund_amount": "500.00"},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Refund amount cannot exceed original payment amount"


@pytest.mark.asyncio
async def test_refund_amount_limited_to_cents(
    client: AsyncClient, db: AsyncSession, user: User, admin_user: User,
    lawyer_profile: Lawyer, service: Service,
):
    """149.999 would be stored as 150.00 while reported as a partial refund."""
    booking, payment = await _paid_booking(client, user, lawyer_profile, service)

    response = await client.post(
        "/api/payments/refund",
        headers=auth_headers(admin_user),
        json={"payment_id": payment["id"], "refund_reason": "Rounding", "refund_amount": "149.999"},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Validation failed"

    stored = await db.get(Booking, uuid.UUID(booking["id"]))
    assert stored.payment_status == "paid"


@pytest.mark.asyncio
async def test_customer_cannot_refund(
    client: AsyncClient, user: User, lawyer_profile: Lawyer, service: Service
):
    _, payment = await _paid_booking(client, user, lawyer_profile, service)

    response = await client.post(
        "/api/payments/refund",
        headers=auth_headers(user),
        json={"payment_id": payment["id"], "refund_reason": "Want my money back"},
    )
    assert response.status_code == 403
    assert response.json()["message"] == "Not authorized to refund this payment"


@pytest.mark.asyncio
async def test_refund_twice_conflicts(
    client: AsyncClient, user: User, admin_user: User, lawyer_profile: Lawyer, service: Service
):
    _, payment = await _paid_booking(client, user, lawyer_profile, service)
    payload = {"payment_id": payment["id"], "refund_reason": "Duplicate charge"}
    await client.post("/api/payments/refund", headers=auth_headers(admin_user), json=payload)

    response = await client.post("/api/payments/refund", headers=auth_headers(admin_user), json=payload)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_refund_reaches_rescheduled_booking(
    client: AsyncClient, db: AsyncSession, user: User, admin_user: User,
    lawyer_profile: Lawyer, service: Service,
):
    """The replacement booking inherits the payment, so it sees the refund too."""
    booking, payment = await _paid_booking(client, user, lawyer_profile, service)
    rescheduled = await client.post(
        f"/api/bookings/{booking['id']}/reschedule",
        headers=auth_headers(user),
        json={
            "booking_date": "2030-04-01T00:00:00Z",
            "start_time": "2030-04-01T09:00:00Z",
            "end_time": "2030-04-01T10:00:00Z",
        },
    )
    successor = rescheduled.json()["booking"]
    assert successor["payment_status"] == "paid"
    assert successor["payment_id"] == payment["id"]

    await client.post(
        "/api/payments/refund",
        headers=auth_headers(admin_user),
        json={"payment_id": payment["id"], "refund_reason": "Cancelled engagement"},
    )

    stored = await db.get(Booking, uuid.UUID(successor["id"]))
    assert stored.payment_status == "refunded"


# ── History ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_payment_history_for_both_parties(
    client: AsyncClient, user: User, lawyer_user: User, lawyer_profile: Lawyer, service: Service
):
    await _paid_booking(client, user, lawyer_profile, service)

    mine = await client.get("/api/payments", headers=auth_headers(user))
    received = await client.get("/api/payments", headers=auth_headers(lawyer_user))
    refunded_only = await client.get(
        "/api/payments", headers=auth_headers(user), params={"status": "refunded"}
    )

    assert mine.json()["total"] == 1
    assert received.json()["total"] == 1
    assert refunded_only.json()["total"] == 0


@pytest.mark.asyncio
async def test_get_payment_forbidden_for_stranger(
    client: AsyncClient, user: User, other_user: User, lawyer_profile: Lawyer, service: Service
):
    _, payment = await _paid_booking(client, user, lawyer_profile, service)

    own = await client.get(f"/api/payments/{payment['id']}", headers=auth_headers(user))
    stranger = await client.get(f"/api/payments/{payment['id']}", headers=auth_headers(other_user))

    assert own.status_code == 200
    assert own.json()["booking"]["id"] == own.json()["payment"]["booking_id"]
    assert stranger.status_code == 403


@pytest.mark.asyncio
async def test_get_unknown_payment(client: AsyncClient, user: User):
    response = await client.get(f"/api/payments/{uuid.uuid4()}", headers=auth_headers(user))
    assert response.status_code == 404
    assert response.json()["message"] == "Payment not found"
