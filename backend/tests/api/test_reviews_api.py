from datetime import timedelta

import pytest
from httpx import AsyncClient

from tests.conftest import AUTHOR_ID, FIXED_NOW, REVIEWER2_ID, REVIEWER_ID


@pytest.fixture
def seeded(services):
    services.db.tables["manuscripts"].append(
        {"id": "m-1", "title": "Paper", "author_id": AUTHOR_ID, "status": "submitted", "decision_date": None}
    )
    return services


def _review(rid="r-1", reviewer_id=REVIEWER_ID, status="assigned", **extra):
    return {
        "id": rid,
        "manuscript_id": "m-1",
        "reviewer_id": reviewer_id,
        "status": status,
        "assigned_date": FIXED_NOW.isoformat(),
        "due_date": (FIXED_NOW + timedelta(days=14)).isoformat(),
        "completed_date": None,
        **extra,
    }


@pytest.mark.asyncio
async def test_assign_reviewers(client: AsyncClient, login, seeded, admin_session):
    login(admin_session)

    response = await client.post("/api/v1/manuscripts/m-1/reviewers", json={"reviewer_ids": [REVIEWER_ID, REVIEWER2_ID]})

    assert response.status_code == 201
    assert len(response.json()["data"]) == 2
    assert seeded.db.rows("manuscripts")[0]["status"] == "under_review"


@pytest.mark.asyncio
async def test_assign_all_duplicates_returns_409(client: AsyncClient, login, seeded, admin_session):
    seeded.db.tables["reviews"].append(_review())
    login(admin_session)

    response = await client.post("/api/v1/manuscripts/m-1/reviewers", json={"reviewer_ids": [REVIEWER_ID]})

    assert response.status_code == 409
    assert response.json()["type"] == "duplicate_assignment"
    assert len(seeded.db.rows("reviews")) == 1


@pytest.mark.asyncio
async def test_assign_requires_admin(client: AsyncClient, login, seeded, author_session):
    login(author_session)
    response = await client.post("/api/v1/manuscripts/m-1/reviewers", json={"reviewer_ids": [REVIEWER_ID]})
    assert response.status_code == 403
    assert response.json()["type"] == "unauthorized"


@pytest.mark.asyncio
async def test_assign_author_account_as_reviewer_is_422(client: AsyncClient, login, seeded, admin_session):
    seeded.db.tables["manuscripts"].append({"id": "m-2", "title": "Other", "author_id": REVIEWER2_ID, "status": "submitted"})
    login(admin_session)

    response = await client.post("/api/v1/manuscripts/m-2/reviewers", json={"reviewer_ids": [AUTHOR_ID]})

    assert response.status_code == 422
    assert response.json()["type"] == "validation_error"
    assert seeded.db.rows("reviews") == []


@pytest.mark.asyncio
async def test_reviewer_workflow(client: AsyncClient, login, seeded, reviewer_session):
    seeded.db.tables["reviews"].append(_review())
    login(reviewer_session)

    mine = await client.get("/api/v1/reviews/mine")
    assert [r["id"] for r in mine.json()["data"]] == ["r-1"]
    assert mine.json()["data"][0]["is_overdue"] is False

    started = await client.post("/api/v1/reviews/r-1/start")
    assert started.json()["data"]["status"] == "in_progress"

    submitted = await client.post(
        "/api/v1/reviews/r-1/submit",
        data={"rating": "5", "recommendation": "accept", "comments": "Excellent."},
        files={"assessment_file": ("form.docx", b"form", "application/octet-stream")},
    )
    assert submitted.status_code == 200
    data = submitted.json()["data"]
    assert data["status"] == "pending_admin_approval"
    assert data["rating"] == 5
    assert data["assessment_file_path"].startswith(f"{REVIEWER_ID}/assessments/")


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", ["", "0", "6", "four"])
async def test_submit_invalid_rating_is_422(client: AsyncClient, login, seeded, reviewer_session, rating):
    seeded.db.tables["reviews"].append(_review())
    login(reviewer_session)

    response = await client.post(
        "/api/v1/reviews/r-1/submit",
        data={"rating": rating, "recommendation": "accept", "comments": "x"},
    )

    assert response.status_code == 422
    assert seeded.db.rows("reviews")[0]["status"] == "assigned"


@pytest.mark.asyncio
async def test_admin_cannot_use_reviewer_endpoints(client: AsyncClient, login, seeded, admin_session):
    seeded.db.tables["reviews"].append(_review())
    login(admin_session)

    assert (await client.get("/api/v1/reviews/mine")).status_code == 403
    response = await client.post(
        "/api/v1/reviews/r-1/submit", data={"rating": "3", "recommendation": "accept", "comments": "x"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_pending_board_and_decision(client: AsyncClient, login, seeded, admin_session, author_session):
    seeded.db.tables["reviews"].append(
        _review(status="pending_admin_approval", completed_date=FIXED_NOW.isoformat(), rating=4)
    )

    login(author_session)
    assert (await client.get("/api/v1/manuscripts/m-1/reviews")).json()["data"] == []

    login(admin_session)
    board = (await client.get("/api/v1/reviews/pending")).json()["data"]
    assert board[0]["manuscript_id"] == "m-1"

    decided = await client.post("/api/v1/reviews/r-1/decision", json={"approve": True, "notes": "thanks"})
    assert decided.json()["data"]["status"] == "admin_approved"
    seeded.notifier.review_feedback.assert_called_once()

    login(author_session)
    visible = (await client.get("/api/v1/manuscripts/m-1/reviews")).json()["data"]
    assert [r["id"] for r in visible] == ["r-1"]
