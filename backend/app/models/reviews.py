from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class ReviewStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    PENDING_ADMIN_APPROVAL = "pending_admin_approval"
    ADMIN_APPROVED = "admin_approved"
    ADMIN_REJECTED = "admin_rejected"


# 仍在等待审稿人提交的状态
OPEN_REVIEW_STATUSES = frozenset(
    {ReviewStatus.ASSIGNED, ReviewStatus.IN_PROGRESS, ReviewStatus.OVERDUE}
)


class ReviewWorkflow(str, Enum):
    """
    审稿提交后的走向：

    - APPROVAL（默认）：进入 pending_admin_approval，由管理员批准后作者才可见。
    - DIRECT：直接标记为 completed（旧版审稿人面板的行为）。
    """

    APPROVAL = "approval"
    DIRECT = "direct"

    @property
    def submitted_status(self) -> ReviewStatus:
        if self is ReviewWorkflow.DIRECT:
            return ReviewStatus.COMPLETED
        return ReviewStatus.PENDING_ADMIN_APPROVAL


def _parse_ts(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_overdue(review: dict, now: Optional[datetime] = None) -> bool:
    """
    逾期是读时计算的派生属性：due_date < now 且 completed_date 为空。
    """
    now = now or datetime.now(timezone.utc)
    due = _parse_ts(review.get("due_date"))
    if due is None:
        return False
    return due < now and not review.get("completed_date")

