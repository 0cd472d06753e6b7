from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from app.core.access_policy import display_name
from app.lib.api_client import rows, supabase_admin
from app.models.reviews import ReviewStatus
from app.services.notification_service import NotificationDispatcher, format_date

logger = logging.getLogger("portal.scheduler")

URGENT_DAYS = 3
WEEK_DAYS = 7
REMINDER_WINDOWS = (URGENT_DAYS, WEEK_DAYS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def due_window(today: date, days: int) -> tuple[datetime, datetime]:
    """
    返回 today+days 这一自然日（UTC）的 [start, end) 区间。
    """
    start = datetime.combine(today + timedelta(days=days), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class ReminderScheduler:
    """
    审稿截止提醒（3 天“紧急”与 7 天两档）

    中文注释:
    1) 触发方式：内部接口 /api/v1/internal/cron/review-reminders?days=3|7，由外部 cron 每天调用。
    2) 只处理 status=assigned 且 due_date 落在 today+days 当天的审稿。
    3) 幂等性：发送成功后写入 last_reminder_days，同一档位重复触发不会再次发送。
    4) 缺少审稿人邮箱的记录跳过；发送失败只记录日志，不影响其它记录。
    """

    def __init__(
        self,
        *,
        notifier: Optional[NotificationDispatcher] = None,
        client: Any = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._client = client if client is not None else supabase_admin
        self._notifier = notifier
        self._clock = clock

    @property
    def notifier(self) -> NotificationDispatcher:
        if self._notifier is None:
            self._notifier = NotificationDispatcher(client=self._client)
        return self._notifier

    def run(self, days: int) -> Dict[str, int]:
        if days not in REMINDER_WINDOWS:
            raise ValueError(f"Unsupported reminder window: {days}")
        start, end = due_window(self._clock().date(), days)

        try:
            res = (
                self._client.table("reviews")
                .select("id, reviewer_id, manuscript_id, due_date, last_reminder_days")
                .eq("status", ReviewStatus.ASSIGNED.value)
                .gte("due_date", start.isoformat())
                .lt("due_date", end.isoformat())
                .execute()
            )
            reviews = rows(res)
        except Exception as e:
            logger.warning("[ReminderScheduler] query failed: %s", e)
            return {"processed_count": 0, "emails_sent": 0}

        processed_count = 0
        emails_sent = 0
        titles = self._manuscript_titles(r.get("manuscript_id") for r in reviews)

        for review in reviews:
            if review.get("last_reminder_days") == days:
                continue
            processed_count += 1
            reviewer = self._reviewer_contact(review.get("reviewer_id"))
            if not reviewer or not reviewer.get("email"):
                logger.info("[ReminderScheduler] no email for reviewer %s, skip", review.get("reviewer_id"))
                continue

            ok = self.notifier.send(
                "review_reminder",
                reviewer["email"],
                {
                    "recipient_name": display_name(reviewer) or "Reviewer",
                    "manuscript_title": titles.get(str(review.get("manuscript_id"))) or "Manuscript",
                    "manuscript_id": review.get("manuscript_id"),
                    "due_date": format_date(review.get("due_date")),
                    "days_left": days,
                    "urgent": days == URGENT_DAYS,
                },
                subject_key="review_reminder_urgent" if days == URGENT_DAYS else "review_reminder",
            )
            if not ok:
                continue

            emails_sent += 1
            try:
                self._client.table("reviews").update({"last_reminder_days": days}).eq("id", review["id"]).execute()
            except Exception as e:
                # 中文注释: 仅影响幂等标记，不影响本次 Cron 调用结果
                logger.warning("[ReminderScheduler] failed to mark review %s: %s", review.get("id"), e)

        logger.info("[ReminderScheduler] %d-day sweep: processed=%d sent=%d", days, processed_count, emails_sent)
        return {"processed_count": processed_count, "emails_sent": emails_sent}

    def _manuscript_titles(self, manuscript_ids) -> Dict[str, str]:
        ids = list(dict.fromkeys(str(i) for i in manuscript_ids if i))
        if not ids:
            return {}
        try:
            res = self._client.table("manuscripts").select("id, title").in_("id", ids).execute()
        except Exception as e:
            logger.warning("[ReminderScheduler] manuscript lookup failed: %s", e)
            return {}
        return {str(m.get("id")): m.get("title") or "" for m in rows(res)}

    def _reviewer_contact(self, reviewer_id: Any) -> Optional[Dict[str, Any]]:
        if not reviewer_id:
            return None
        try:
            return self.notifier.profile_contact(str(reviewer_id))
        except Exception as e:
            logger.warning("[ReminderScheduler] reviewer lookup failed for %s: %s", reviewer_id, e)
            return None
