from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, File, Form, UploadFile

from app.api.v1.common import read_upload
from app.core.roles import get_current_session, require_admin, require_reviewer
from app.models.user import Session
from app.schemas.review import AssignReviewersRequest, ReviewDecisionRequest
from app.services.review_service import ReviewService

router = APIRouter(tags=["Reviews"])


def get_review_service() -> ReviewService:
    return ReviewService()


@router.post("/manuscripts/{manuscript_id}/reviewers", status_code=201)
async def assign_reviewers(
    manuscript_id: str,
    background_tasks: BackgroundTasks,
    req: AssignReviewersRequest = Body(...),
    session: Session = Depends(require_admin),
    service: ReviewService = Depends(get_review_service),
):
    """
    分配审稿人（已分配的自动跳过；全部已分配时返回 409）
    """
    created = service.assign_reviewers(session, manuscript_id, req.reviewer_ids, background_tasks=background_tasks)
    return {"success": True, "data": created}


@router.get("/manuscripts/{manuscript_id}/reviews")
async def manuscript_reviews(
    manuscript_id: str,
    session: Session = Depends(get_current_session),
    service: ReviewService = Depends(get_review_service),
):
    return {"success": True, "data": service.list_for_manuscript(session, manuscript_id)}


@router.get("/reviews/mine")
async def my_reviews(
    session: Session = Depends(require_reviewer),
    service: ReviewService = Depends(get_review_service),
):
    """
    审稿人面板：我的审稿任务（附稿件信息与 is_overdue）
    """
    return {"success": True, "data": service.list_for_reviewer(session)}


@router.get("/reviews/pending")
async def pending_reviews(
    session: Session = Depends(require_admin),
    service: ReviewService = Depends(get_review_service),
):
    """
    管理员“审稿管理”：待批准审稿按稿件分组
    """
    return {"success": True, "data": service.pending_review_board(session)}


@router.post("/reviews/{review_id}/start")
async def start_review(
    review_id: str,
    session: Session = Depends(require_reviewer),
    service: ReviewService = Depends(get_review_service),
):
    return {"success": True, "data": service.start_review(session, review_id)}


@router.post("/reviews/{review_id}/submit")
async def submit_review(
    review_id: str,
    background_tasks: BackgroundTasks,
    rating: str = Form(""),
    recommendation: str = Form(""),
    comments: str = Form(""),
    assessment_file: Optional[UploadFile] = File(None),
    reviewed_manuscript_file: Optional[UploadFile] = File(None),
    session: Session = Depends(require_reviewer),
    service: ReviewService = Depends(get_review_service),
):
    """
    审稿人提交审稿意见（multipart，可附评估表与批注稿）

    中文注释: rating 以字符串接收，由 service 统一做 1-5 的校验并返回 422。
    """
    updated = service.submit_review(
        session,
        review_id,
        rating=rating,
        recommendation=recommendation,
        comments=comments,
        assessment_file=await read_upload(assessment_file),
        reviewed_manuscript_file=await read_upload(reviewed_manuscript_file),
        background_tasks=background_tasks,
    )
    return {"success": True, "data": updated}


@router.post("/reviews/{review_id}/decision")
async def decide_review(
    review_id: str,
    background_tasks: BackgroundTasks,
    req: ReviewDecisionRequest = Body(...),
    session: Session = Depends(require_admin),
    service: ReviewService = Depends(get_review_service),
):
    updated = service.decide_review(
        session, review_id, approve=req.approve, notes=req.notes, background_tasks=background_tasks
    )
    return {"success": True, "data": updated}
