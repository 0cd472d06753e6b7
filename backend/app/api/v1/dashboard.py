from fastapi import APIRouter, Depends

from app.core.roles import get_current_session
from app.models.user import Role, Session
from app.services.manuscript_service import ManuscriptService, compute_stats
from app.services.review_service import ReviewService

router = APIRouter(tags=["Dashboard"])


def get_manuscript_service() -> ManuscriptService:
    return ManuscriptService()


def get_review_service() -> ReviewService:
    return ReviewService()


@router.get("/dashboard")
async def dashboard(
    session: Session = Depends(get_current_session),
    manuscripts: ManuscriptService = Depends(get_manuscript_service),
    reviews: ReviewService = Depends(get_review_service),
):
    """
    按角色返回面板数据：super_admin 与 admin 看到同一视图。
    """
    if session.is_admin:
        items = manuscripts.list_manuscripts(session)
        return {
            "success": True,
            "data": {"view": "admin", "stats": compute_stats(items), "manuscripts": items},
        }
    if session.role is Role.REVIEWER:
        return {"success": True, "data": {"view": "reviewer", "reviews": reviews.list_for_reviewer(session)}}
    return {
        "success": True,
        "data": {"view": "author", "manuscripts": manuscripts.list_manuscripts(session)},
    }
