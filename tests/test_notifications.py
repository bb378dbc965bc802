"""
tests/test_notifications.py
Tests for the notification inbox and the best-effort dispatcher.
"""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import BackgroundTasks
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.notification import dispatcher
from shared.models.models import (
    Notification,
    NotificationPriority,
    NotificationType,
    User,
)
from tests.conftest import auth_headers


async def _seed(db: AsyncSession, user: User, count: int = 3, **fields) -> list[Notification]:
    notifications = [
        Notification(
            user_id=user.id,
            title=f"Notice {i}",
            message="Something happened",
            type=fields.get("type", NotificationType.BOOKING),
            priority=fields.get("priority", NotificationPriority.MEDIUM),
        )
        for i in range(count)
    ]
    db.add_all(notifications)
    await db.commit()
    return notifications


# ── Inbox ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_inbox_empty(client: AsyncClient, user: User):
    response = await client.get("/api/notifications", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()
    assert data["notifications"] == []
    assert data["total"] == 0
    assert data["unread_count"] == 0


@pytest.mark.asyncio
async def test_inbox_shows_only_own(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User
):
    await _seed(db, user, count=2)
    await _seed(db, other_user, count=5)

    data = (await client.get("/api/notifications", headers=auth_headers(user))).json()
    assert data["total"] == 2
    assert data["unread_count"] == 2


@pytest.mark.asyncio
async def test_inbox_filters(client: AsyncClient, db: AsyncSession, user: User):
    await _seed(db, user, count=2)
    await _seed(db, user, count=1, type=NotificationType.PAYMENT, priority=NotificationPriority.HIGH)
    headers = auth_headers(user)

    by_type = await client.get("/api/notifications", headers=headers, params={"type": "payment"})
    by_priority = await client.get("/api/notifications", headers=headers, params={"priority": "high"})
    read_only = await client.get("/api/notifications", headers=headers, params={"read": True})

    assert by_type.json()["total"] == 1
    assert by_priority.json()["total"] == 1
    assert read_only.json()["total"] == 0


@pytest.mark.asyncio
async def test_unread_count_spans_pages(client: AsyncClient, db: AsyncSession, user: User):
    await _seed(db, user, count=5)

    data = (
        await client.get("/api/notifications", headers=auth_headers(user), params={"limit": 2})
    ).json()
    assert data["count"] == 2
    assert data["total_pages"] == 3
    assert data["unread_count"] == 5


@pytest.mark.asyncio
async def test_mark_one_read(client: AsyncClient, db: AsyncSession, user: User):
    notification, *_ = await _seed(db, user)

    response = await client.put(
        f"/api/notifications/{notification.id}/read", headers=auth_headers(user)
    )
    assert response.status_code == 200
    data = response.json()["notification"]
    assert data["is_read"] is True
    assert data["read_at"] is not None

    inbox = (await client.get("/api/notifications", headers=auth_headers(user))).json()
    assert inbox["unread_count"] == 2


@pytest.mark.asyncio
async def test_mark_all_read(client: AsyncClient, db: AsyncSession, user: User):
    await _seed(db, user)

    response = await client.put("/api/notifications/read-all", headers=auth_headers(user))
    assert response.status_code == 200

    inbox = (await client.get("/api/notifications", headers=auth_headers(user))).json()
    assert inbox["unread_count"] == 0


@pytest.mark.asyncio
async def test_cannot_touch_others_notification(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User
):
    notification, *_ = await _seed(db, other_user, count=1)

    response = await client.put(
        f"/api/notifications/{notification.id}/read", headers=auth_headers(user)
    )
    assert response.status_code == 404
    assert response.json()["message"] == "Notification not found"


@pytest.mark.asyncio
async def test_delete_one_and_all(client: AsyncClient, db: AsyncSession, user: User):
    notification, *_ = await _seed(db, user)
    headers = auth_headers(user)

    one = await client.delete(f"/api/notifications/{notification.id}", headers=headers)
    assert one.status_code == 200
    assert (await client.get("/api/notifications", headers=headers)).json()["total"] == 2

    everything = await client.delete("/api/notifications", headers=headers)
    assert everything.status_code == 200
    assert (await client.get("/api/notifications", headers=headers)).json()["total"] == 0


# ── Dispatcher ─────────────────────────────────────────────────────────────────

def test_build_notifications_renders_each_recipient():
    customer_id, lawyer_user_id, booking_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    ctx = {
        "booking_id": booking_id,
        "related_id": booking_id,
        "customer_id": customer_id,
        "lawyer_user_id": lawyer_user_id,
        "service_name": "Will Drafting",
        "booking_date": "01 Feb 2030",
    }

    notifications = dispatcher.build_notifications("booking", "cancelled", ctx)

    assert {n.user_id for n in notifications} == {customer_id, lawyer_user_id}
    assert all(n.message == "The booking for Will Drafting has been cancelled" for n in notifications)
    assert all(n.action_url == f"/bookings/{booking_id}" for n in notifications)


def test_build_notifications_unknown_event_renders_nothing():
    assert dispatcher.build_notifications("booking", "archived", {}) == []


@pytest.mark.asyncio
async def test_deliver_missing_entity_is_skipped(db: AsyncSession):
    assert await dispatcher.deliver("booking", uuid.uuid4(), "created") == 0
    assert await db.scalar(select(func.count(Notification.id))) == 0


@pytest.mark.asyncio
async def test_notify_swallows_failures():
    """A broken delivery is logged and never propagates to the caller."""
    with patch.object(dispatcher, "deliver", AsyncMock(side_effect=RuntimeError("db down"))) as deliver:
        await dispatcher.send_booking_notification(uuid.uuid4(), "confirmed")
    deliver.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_notification_does_not_fail_request(
    client: AsyncClient, user: User, lawyer_user: User, lawyer_profile, service
):
    with patch.object(dispatcher, "deliver", AsyncMock(side_effect=RuntimeError("db down"))):
        response = await client.post(
            "/api/bookings",
            headers=auth_headers(user),
            json={
                "lawyer_id": str(lawyer_profile.id),
                "service_id": str(service.id),
                "booking_date": "2030-05-01T00:00:00Z",
                "start_time": "2030-05-01T09:00:00Z",
                "end_time": "2030-05-01T10:00:00Z",
            },
        )
    assert response.status_code == 201


def test_schedule_uses_background_tasks_by_default():
    tasks = BackgroundTasks()
    entity_id = uuid.uuid4()

    dispatcher.schedule(tasks, "payment", entity_id, "success")

    assert len(tasks.tasks) == 1
    assert tasks.tasks[0].args == ("payment", entity_id, "success")


def test_schedule_enqueues_celery_task(monkeypatch):
    from tasks.notification_tasks import deliver_notification

    monkeypatch.setattr(settings, "NOTIFICATION_BACKEND", "celery")
    tasks = BackgroundTasks()
    entity_id = uuid.uuid4()

    with patch.object(deliver_notification, "delay", MagicMock()) as delay:
        dispatcher.schedule(tasks, "review", entity_id, "created")

    delay.assert_called_once_with("review", str(entity_id), "created")
    assert tasks.tasks == []


def test_celery_task_delivers_through_dispatcher():
    from tasks.notification_tasks import deliver_notification

    entity_id = uuid.uuid4()
    with patch.object(dispatcher, "deliver", AsyncMock(return_value=2)) as deliver:
        result = deliver_notification.apply(args=("booking", str(entity_id), "created"))

    assert result.get() == 2
    deliver.assert_awaited_once_with("booking", entity_id, "created")
