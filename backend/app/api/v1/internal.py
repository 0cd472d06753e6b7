from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.scheduler import REMINDER_WINDOWS, ReminderScheduler
from app.core.security import require_cron_key
from app.services.review_service import ReviewService

router = APIRouter(prefix="/internal", tags=["Internal"])


def get_reminder_scheduler() -> ReminderScheduler:
    return ReminderScheduler()


def get_review_service() -> ReviewService:
    return ReviewService()


@router.post("/cron/review-reminders")
async def review_reminders(
    days: int = Query(..., description="提醒档位：3（紧急）或 7"),
    _cron: None = Depends(require_cron_key),
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
):
    """
    触发审稿截止提醒（内部接口，由外部 cron 每天调用两次：days=3 与 days=7）
    """
    if days not in REMINDER_WINDOWS:
        raise HTTPException(status_code=422, detail=f"days must be one of {list(REMINDER_WINDOWS)}")
    result = scheduler.run(days)
    return {"success": True, "days": days, **result}


@router.post("/cron/overdue-sweep")
async def overdue_sweep(
    _cron: None = Depends(require_cron_key),
    service: ReviewService = Depends(get_review_service),
):
    """
    把已过截止日且未完成的审稿标记为 overdue（幂等）
    """
    result = service.sweep_overdue()
    return {"success": True, **result}
