from __future__ import annotations

from typing import List, Optional

from fastapi import UploadFile

from app.services.storage_service import UploadedFile


async def read_upload(file: Optional[UploadFile]) -> Optional[UploadedFile]:
    """
    把 multipart 上传读成内存中的 UploadedFile；未选择文件时返回 None。
    """
    if file is None or not file.filename:
        return None
    content = await file.read()
    return UploadedFile(
        filename=file.filename,
        content=content,
        content_type=file.content_type or "application/octet-stream",
    )


def split_csv(value: Optional[str]) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]
