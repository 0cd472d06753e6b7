from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, File, Query, UploadFile
from fastapi.responses import Response

from app.api.v1.common import read_upload
from app.core.roles import get_current_session, require_admin
from app.models.user import Session
from app.services.file_access_service import FileAccessService
from app.services.final_document_service import FinalDocumentService

router = APIRouter(tags=["Documents"])


def get_final_document_service() -> FinalDocumentService:
    return FinalDocumentService()


def get_file_access_service() -> FileAccessService:
    return FileAccessService()


@router.get("/manuscripts/{manuscript_id}/final-documents")
async def list_final_documents(
    manuscript_id: str,
    session: Session = Depends(get_current_session),
    service: FinalDocumentService = Depends(get_final_document_service),
):
    return {"success": True, "data": service.list_final_documents(session, manuscript_id)}


@router.post("/manuscripts/{manuscript_id}/final-documents", status_code=201)
async def upload_final_documents(
    manuscript_id: str,
    files: List[UploadFile] = File(...),
    session: Session = Depends(require_admin),
    service: FinalDocumentService = Depends(get_final_document_service),
):
    uploads = [await read_upload(f) for f in files]
    created = service.upload_final_documents(session, manuscript_id, [u for u in uploads if u is not None])
    return {"success": True, "data": created}


@router.post("/manuscripts/{manuscript_id}/final-documents/send")
async def send_final_documents(
    manuscript_id: str,
    background_tasks: BackgroundTasks,
    session: Session = Depends(require_admin),
    service: FinalDocumentService = Depends(get_final_document_service),
):
    """
    生成 7 天有效的签名链接并邮件发送给作者
    """
    result = service.send_final_documents(session, manuscript_id, background_tasks=background_tasks)
    return {"success": True, "data": result}


@router.get("/files")
async def download_file(
    path: str = Query(..., min_length=1),
    session: Session = Depends(get_current_session),
    service: FileAccessService = Depends(get_file_access_service),
):
    downloaded = service.download(session, path)
    return Response(
        content=downloaded.content,
        media_type=downloaded.content_type,
        headers={"Content-Disposition": f'attachment; filename="{downloaded.filename}"'},
    )
