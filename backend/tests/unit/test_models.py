from datetime import datetime, timedelta

import pytest

from app.models.email_log import EmailLog, EmailStatus
from app.models.manuscript import (
    COMPLETED_STATUSES,
    TERMINAL_STATUSES,
    ManuscriptStatus,
    normalize_status,
)
from app.models.reviews import ReviewStatus, ReviewWorkflow, is_overdue
from app.models.user import Role, normalize_role
from tests.conftest import FIXED_NOW


def test_manuscript_status_initial_and_terminal():
    assert ManuscriptStatus.initial() is ManuscriptStatus.SUBMITTED
    assert ManuscriptStatus.PUBLISHED.is_terminal
    assert ManuscriptStatus.REJECT.is_terminal
    assert not ManuscriptStatus.UNDER_REVIEW.is_terminal
    assert TERMINAL_STATUSES <= set(ManuscriptStatus)


def test_manuscript_status_labels():
    assert ManuscriptStatus.ACCEPT_MINOR_CORRECTIONS.label == "Accept Minor Corrections"
    assert ManuscriptStatus.UNDER_REVIEW.label == "Under Review"


def test_completed_statuses_are_decisions():
    assert all(s.is_decision for s in COMPLETED_STATUSES)
    assert not ManuscriptStatus.REVISION_REQUESTED.is_decision


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("under_review", ManuscriptStatus.UNDER_REVIEW),
        ("Under Review", ManuscriptStatus.UNDER_REVIEW),
        (" PUBLISHED ", ManuscriptStatus.PUBLISHED),
        (ManuscriptStatus.REJECT, ManuscriptStatus.REJECT),
        ("archived", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) is expected


def test_review_workflow_submitted_status():
    assert ReviewWorkflow.APPROVAL.submitted_status is ReviewStatus.PENDING_ADMIN_APPROVAL
    assert ReviewWorkflow.DIRECT.submitted_status is ReviewStatus.COMPLETED


def test_is_overdue_is_derived_from_dates():
    past = (FIXED_NOW - timedelta(days=1)).isoformat()
    future = (FIXED_NOW + timedelta(days=1)).isoformat()

    assert is_overdue({"due_date": past}, FIXED_NOW) is True
    assert is_overdue({"due_date": future}, FIXED_NOW) is False
    assert is_overdue({"due_date": past, "completed_date": FIXED_NOW.isoformat()}, FIXED_NOW) is False
    assert is_overdue({"due_date": None}, FIXED_NOW) is False


def test_is_overdue_accepts_naive_and_zulu_timestamps():
    assert is_overdue({"due_date": "2026-03-01T00:00:00Z"}, FIXED_NOW) is True
    assert is_overdue({"due_date": datetime(2026, 3, 1)}, FIXED_NOW) is True


def test_role_admin_flags():
    assert Role.SUPER_ADMIN.is_admin
    assert not Role.REVIEWER.is_admin
    assert normalize_role("Reviewer") is Role.REVIEWER
    assert normalize_role("unknown") is None


def test_email_log_row():
    log = EmailLog(recipient="a@example.com", subject="Hi", template_name="welcome", status="skipped")
    assert log.status is EmailStatus.SKIPPED
    assert log.id is None
