from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, File, Form, UploadFile

from app.api.v1.common import read_upload, split_csv
from app.core.roles import get_current_session, require_admin
from app.models.user import Session
from app.schemas.manuscript import ManuscriptUpdate, StatusUpdate
from app.services.manuscript_service import ManuscriptService

router = APIRouter(prefix="/manuscripts", tags=["Manuscripts"])


def get_manuscript_service() -> ManuscriptService:
    return ManuscriptService()


@router.post("", status_code=201)
async def submit_manuscript(
    background_tasks: BackgroundTasks,
    title: str = Form(...),
    abstract: str = Form(""),
    keywords: str = Form("", description="逗号分隔"),
    co_authors: str = Form("", description="逗号分隔"),
    manuscript_file: Optional[UploadFile] = File(None),
    cover_letter_file: Optional[UploadFile] = File(None),
    session: Session = Depends(get_current_session),
    service: ManuscriptService = Depends(get_manuscript_service),
):
    """
    作者投稿（multipart：稿件 + cover letter 均为必填）
    """
    created = service.submit_manuscript(
        session,
        title=title,
        abstract=abstract,
        keywords=split_csv(keywords),
        co_authors=split_csv(co_authors),
        manuscript_file=await read_upload(manuscript_file),
        cover_letter_file=await read_upload(cover_letter_file),
        background_tasks=background_tasks,
    )
    return {"success": True, "data": created}


@router.get("")
async def list_manuscripts(
    session: Session = Depends(get_current_session),
    service: ManuscriptService = Depends(get_manuscript_service),
):
    return {"success": True, "data": service.list_manuscripts(session)}


@router.get("/stats")
async def manuscript_stats(
    session: Session = Depends(require_admin),
    service: ManuscriptService = Depends(get_manuscript_service),
):
    """
    管理员面板统计：total / pending / under_review / completed
    """
    return {"success": True, "data": service.stats(session)}


@router.get("/{manuscript_id}")
async def get_manuscript(
    manuscript_id: str,
    session: Session = Depends(get_current_session),
    service: ManuscriptService = Depends(get_manuscript_service),
):
    return {"success": True, "data": service.get_manuscript(session, manuscript_id)}


@router.patch("/{manuscript_id}")
async def update_manuscript(
    manuscript_id: str,
    req: ManuscriptUpdate = Body(...),
    session: Session = Depends(get_current_session),
    service: ManuscriptService = Depends(get_manuscript_service),
):
    updated = service.update_manuscript(session, manuscript_id, req.model_dump(exclude_unset=True))
    return {"success": True, "data": updated}


@router.put("/{manuscript_id}/status")
async def update_status(
    manuscript_id: str,
    background_tasks: BackgroundTasks,
    req: StatusUpdate = Body(...),
    session: Session = Depends(require_admin),
    service: ManuscriptService = Depends(get_manuscript_service),
):
    """
    管理员设置稿件状态；决策类状态会写入 decision_date。
    """
    updated = service.transition(session, manuscript_id, req.status, background_tasks=background_tasks)
    return {"success": True, "data": updated}


@router.delete("/{manuscript_id}")
async def delete_manuscript(
    manuscript_id: str,
    session: Session = Depends(require_admin),
    service: ManuscriptService = Depends(get_manuscript_service),
):
    service.delete_manuscript(session, manuscript_id)
    return {"success": True, "data": {"id": manuscript_id}}
