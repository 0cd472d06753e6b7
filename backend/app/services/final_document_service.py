from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from fastapi import BackgroundTasks

from app.core.access_policy import can_read_manuscript
from app.core.config import PortalConfig
from app.core.errors import NotFound, PermissionDenied, ValidationFailed, persistence_error
from app.lib.api_client import rows, supabase_admin
from app.models.user import Session
from app.services import storage_service
from app.services.manuscript_service import ManuscriptService, utcnow
from app.services.notification_service import NotificationDispatcher
from app.services.storage_service import UploadedFile

logger = logging.getLogger("portal.final_documents")


class FinalDocumentService:
    """
    录用后的最终文件：管理员上传、列表、通过邮件发送给作者。

    中文注释:
    - final_documents 只追加不修改，新上传的文件按 upload_date 排在前面。
    - 发送邮件使用有效期 7 天的签名链接（PortalConfig.final_document_url_ttl）。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        notifier: Optional[NotificationDispatcher] = None,
        config: Optional[PortalConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        manuscripts: Optional[ManuscriptService] = None,
    ):
        self._client = client if client is not None else supabase_admin
        self._config = config or PortalConfig.from_env()
        self._notifier = notifier
        self._clock = clock
        self._manuscripts = manuscripts or ManuscriptService(
            client=self._client, notifier=notifier, config=self._config, clock=clock
        )

    @property
    def notifier(self) -> NotificationDispatcher:
        if self._notifier is None:
            self._notifier = NotificationDispatcher(config=self._config)
        return self._notifier

    def upload_final_documents(
        self,
        session: Session,
        manuscript_id: str,
        files: Sequence[UploadedFile],
    ) -> List[Dict[str, Any]]:
        if not session.is_admin:
            raise PermissionDenied("Only administrators can upload final documents")
        files = [f for f in files if f is not None and f.content]
        if not files:
            raise ValidationFailed("Select at least one file to upload")
        self._manuscripts.load(manuscript_id)

        bucket = self._config.storage_bucket
        now = self._clock()
        payload = []
        uploaded: List[str] = []
        try:
            for f in files:
                path = storage_service.build_object_path(
                    user_id=session.user_id,
                    kind=storage_service.FINAL_DOCUMENTS,
                    filename=f.filename,
                    prefix=manuscript_id,
                )
                storage_service.upload_bytes(bucket=bucket, path=path, content=f.content, content_type=f.content_type)
                uploaded.append(path)
                payload.append(
                    {
                        "manuscript_id": manuscript_id,
                        "file_name": f.filename,
                        "file_path": path,
                        "file_size": f.size,
                        "uploaded_by": session.user_id,
                        "upload_date": now.isoformat(),
                    }
                )
        except Exception as e:
            storage_service.discard_objects(bucket=bucket, paths=uploaded)
            raise persistence_error("Uploading final documents", e) from e

        try:
            resp = self._client.table("final_documents").insert(payload).execute()
        except Exception as e:
            storage_service.discard_objects(bucket=bucket, paths=uploaded)
            raise persistence_error("Recording final documents", e) from e
        logger.info("manuscript %s: %d final document(s) uploaded", manuscript_id, len(payload))
        return rows(resp) or payload

    def list_final_documents(self, session: Session, manuscript_id: str) -> List[Dict[str, Any]]:
        manuscript = self._manuscripts.load(manuscript_id)
        if not can_read_manuscript(session, manuscript):
            raise PermissionDenied("You do not have access to this manuscript")
        return self._documents(manuscript_id)

    def _documents(self, manuscript_id: str) -> List[Dict[str, Any]]:
        try:
            return rows(
                self._client.table("final_documents")
                .select("*")
                .eq("manuscript_id", manuscript_id)
                .order("upload_date", desc=True)
                .execute()
            )
        except Exception as e:
            raise persistence_error("Loading final documents", e) from e

    def send_final_documents(
        self,
        session: Session,
        manuscript_id: str,
        *,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Dict[str, Any]:
        """
        为每个最终文件生成签名链接并邮件发送给作者。没有文件时不产生任何写入。
        """
        if not session.is_admin:
            raise PermissionDenied("Only administrators can send final documents")
        manuscript = self._manuscripts.load(manuscript_id)
        documents = self._documents(manuscript_id)
        if not documents:
            raise NotFound("No final documents to send")

        ttl = self._config.final_document_url_ttl
        links = []
        try:
            for doc in documents:
                signed = storage_service.create_signed_url(
                    bucket=self._config.storage_bucket, path=doc["file_path"], expires_in=ttl
                )
                links.append({"name": doc.get("file_name") or "document", "url": signed.url})
        except Exception as e:
            raise persistence_error("Creating download links", e) from e

        self.notifier.final_documents(manuscript, links, background_tasks)
        logger.info("manuscript %s: final documents sent (%d link(s))", manuscript_id, len(links))
        return {"manuscript_id": manuscript_id, "documents": links, "expires_in": ttl}
