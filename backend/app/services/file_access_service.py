from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Optional

from app.core.config import PortalConfig
from app.core.errors import NotFound, PermissionDenied, ValidationFailed, persistence_error
from app.lib.api_client import rows, supabase_admin
from app.models.reviews import ReviewStatus
from app.models.user import Role, Session
from app.services import storage_service

logger = logging.getLogger("portal.files")


@dataclass(frozen=True)
class DownloadedFile:
    filename: str
    content: bytes
    content_type: str


class FileAccessService:
    """
    受控文件下载：只有能读取所属稿件/审稿的调用方才能拿到文件内容。

    中文注释:
    - 管理员：全部；上传者本人（路径首段为 user_id）：全部。
    - 作者：自己稿件的最终文件，以及已批准审稿的附件。
    - 审稿人：被分配稿件的原稿。
    """

    def __init__(self, *, client: Any = None, config: Optional[PortalConfig] = None):
        self._client = client if client is not None else supabase_admin
        self._config = config or PortalConfig.from_env()

    def can_download(self, session: Session, path: str) -> bool:
        if session.is_admin:
            return True
        if storage_service.owner_of_path(path) == session.user_id:
            return True
        try:
            if session.role is Role.REVIEWER:
                return self._reviewer_can_read(session, path)
            if session.role is Role.AUTHOR:
                return self._author_can_read(session, path)
        except Exception as e:
            raise persistence_error("Checking file access", e) from e
        return False

    def _reviewer_can_read(self, session: Session, path: str) -> bool:
        manuscripts = rows(self._client.table("manuscripts").select("id").eq("file_path", path).execute())
        if not manuscripts:
            return False
        assigned = rows(
            self._client.table("reviews")
            .select("id")
            .eq("reviewer_id", session.user_id)
            .in_("manuscript_id", [str(m.get("id")) for m in manuscripts])
            .execute()
        )
        return bool(assigned)

    def _author_can_read(self, session: Session, path: str) -> bool:
        own_ids = {
            str(m.get("id"))
            for m in rows(self._client.table("manuscripts").select("id").eq("author_id", session.user_id).execute())
        }
        if not own_ids:
            return False
        docs = rows(self._client.table("final_documents").select("manuscript_id").eq("file_path", path).execute())
        if any(str(d.get("manuscript_id")) in own_ids for d in docs):
            return True
        reviews = rows(
            self._client.table("reviews")
            .select("manuscript_id, status, assessment_file_path, reviewed_manuscript_path")
            .in_("manuscript_id", sorted(own_ids))
            .eq("status", ReviewStatus.ADMIN_APPROVED.value)
            .execute()
        )
        return any(path in (r.get("assessment_file_path"), r.get("reviewed_manuscript_path")) for r in reviews)

    def download(self, session: Session, path: str) -> DownloadedFile:
        path = (path or "").strip().lstrip("/")
        if not path or ".." in PurePosixPath(path).parts:
            raise ValidationFailed("Invalid file path")
        if not self.can_download(session, path):
            raise PermissionDenied("You do not have access to this file")
        try:
            content = storage_service.download_bytes(bucket=self._config.storage_bucket, path=path)
        except Exception as e:
            logger.warning("download of %s failed: %s", path, e)
            raise NotFound("File not found") from e
        filename = PurePosixPath(path).name
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        return DownloadedFile(filename=filename, content=content, content_type=content_type)
