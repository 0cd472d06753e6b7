from datetime import timedelta

import pytest
from httpx import AsyncClient

from tests.conftest import AUTHOR_ID, FIXED_NOW, REVIEWER_ID


@pytest.fixture
def cron_key(monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "cron-secret")
    return {"X-Admin-Key": "cron-secret"}


@pytest.mark.asyncio
async def test_cron_requires_admin_key(client: AsyncClient, services, cron_key):
    response = await client.post("/api/v1/internal/cron/review-reminders", params={"days": 3})
    assert response.status_code == 401

    response = await client.post(
        "/api/v1/internal/cron/review-reminders", params={"days": 3}, headers={"X-Admin-Key": "wrong"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_cron_rejected_when_key_not_configured(client: AsyncClient, services, monkeypatch):
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    response = await client.post("/api/v1/internal/cron/overdue-sweep", headers={"X-Admin-Key": "anything"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_review_reminders(client: AsyncClient, services, cron_key):
    services.notifier.send.return_value = True
    services.notifier.profile_contact.return_value = {"email": "rev@example.com", "first_name": "Rene"}
    services.db.tables["reviews"].append(
        {
            "id": "r-1",
            "manuscript_id": "m-1",
            "reviewer_id": REVIEWER_ID,
            "status": "assigned",
            "due_date": (FIXED_NOW + timedelta(days=3)).isoformat(),
        }
    )

    response = await client.post("/api/v1/internal/cron/review-reminders", params={"days": 3}, headers=cron_key)

    assert response.status_code == 200
    assert response.json() == {"success": True, "days": 3, "processed_count": 1, "emails_sent": 1}


@pytest.mark.asyncio
async def test_review_reminders_unsupported_window(client: AsyncClient, services, cron_key):
    response = await client.post("/api/v1/internal/cron/review-reminders", params={"days": 5}, headers=cron_key)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_overdue_sweep(client: AsyncClient, services, cron_key):
    services.db.tables["manuscripts"].append({"id": "m-1", "title": "Paper", "author_id": AUTHOR_ID})
    services.db.tables["reviews"].append(
        {
            "id": "r-1",
            "manuscript_id": "m-1",
            "reviewer_id": REVIEWER_ID,
            "status": "assigned",
            "due_date": (FIXED_NOW - timedelta(days=1)).isoformat(),
            "completed_date": None,
        }
    )

    response = await client.post("/api/v1/internal/cron/overdue-sweep", headers=cron_key)

    assert response.json() == {"success": True, "processed_count": 1, "marked_overdue": 1}
    assert services.db.rows("reviews")[0]["status"] == "overdue"
