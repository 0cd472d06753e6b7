from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from fastapi import BackgroundTasks

from app.core.access_policy import (
    ProfileKind,
    can_read_manuscript,
    can_write_manuscript,
    display_name,
    fetch_profiles,
    mask_email,
)
from app.core.config import PortalConfig
from app.core.errors import NotFound, PermissionDenied, ValidationFailed, persistence_error
from app.lib.api_client import create_user_supabase_client, rows, supabase_admin
from app.models.manuscript import COMPLETED_STATUSES, ManuscriptStatus, normalize_status
from app.models.user import Role, Session
from app.services import storage_service
from app.services.storage_service import UploadedFile
from app.services.notification_service import NotificationDispatcher

logger = logging.getLogger("portal.manuscripts")

# 作者可改题录信息，admin_notes 只有管理员可写
AUTHOR_EDITABLE_FIELDS = ("title", "abstract", "keywords", "co_authors")
ADMIN_EDITABLE_FIELDS = AUTHOR_EDITABLE_FIELDS + ("admin_notes",)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decision_date_for(status: ManuscriptStatus, now: datetime) -> Optional[str]:
    """
    仅当新状态属于决策集合时写入 decision_date，否则清空。
    """
    return now.isoformat() if status.is_decision else None


def compute_stats(manuscripts: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    """
    管理员面板统计（纯函数，无 I/O）。

    - pending: status == submitted
    - under_review: status == under_review
    - completed: status in {accepted, rejected}
    """
    total = pending = under_review = completed = 0
    for m in manuscripts:
        total += 1
        status = normalize_status(m.get("status"))
        if status is ManuscriptStatus.SUBMITTED:
            pending += 1
        elif status is ManuscriptStatus.UNDER_REVIEW:
            under_review += 1
        elif status in COMPLETED_STATUSES:
            completed += 1
    return {
        "total": total,
        "pending": pending,
        "under_review": under_review,
        "completed": completed,
    }


class ManuscriptService:
    """
    稿件生命周期：投稿、列表、管理员编辑、状态流转、删除。

    中文注释:
    1) 写操作统一走 service_role（self._client），权限在进入 service 前/内显式校验。
    2) 作者姓名等聚合读取走“用户态 client”，RLS 拒绝时由 access_policy 降级为占位数据。
    3) 写失败直接抛 PersistenceError，不做乐观更新，调用方需重新拉取。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        reader: Optional[Callable[[Session], Any]] = None,
        notifier: Optional[NotificationDispatcher] = None,
        config: Optional[PortalConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._client = client if client is not None else supabase_admin
        self._reader = reader
        self._notifier = notifier
        self._config = config or PortalConfig.from_env()
        self._clock = clock

    @property
    def notifier(self) -> NotificationDispatcher:
        if self._notifier is None:
            self._notifier = NotificationDispatcher(config=self._config)
        return self._notifier

    def _read_client(self, session: Session) -> Any:
        if self._reader is not None:
            return self._reader(session)
        if session.access_token:
            return create_user_supabase_client(session.access_token)
        return self._client

    # === 读取 ===

    def load(self, manuscript_id: str) -> Dict[str, Any]:
        try:
            resp = self._client.table("manuscripts").select("*").eq("id", manuscript_id).execute()
        except Exception as e:
            raise persistence_error("Loading manuscript", e) from e
        found = rows(resp)
        if not found:
            raise NotFound("Manuscript not found")
        return found[0]

    def get_manuscript(self, session: Session, manuscript_id: str) -> Dict[str, Any]:
        manuscript = self.load(manuscript_id)
        if not can_read_manuscript(session, manuscript):
            raise PermissionDenied("You do not have access to this manuscript")
        return manuscript

    def list_manuscripts(self, session: Session) -> List[Dict[str, Any]]:
        """
        管理员：全部稿件（附作者姓名/邮箱）；作者：自己的稿件；审稿人：无。
        """
        if session.role is Role.REVIEWER:
            return []

        query = self._client.table("manuscripts").select("*")
        if not session.is_admin:
            query = query.eq("author_id", session.user_id)
        try:
            manuscripts = rows(query.order("submission_date", desc=True).execute())
        except Exception as e:
            raise persistence_error("Loading manuscripts", e) from e

        if not session.is_admin:
            return manuscripts

        authors = fetch_profiles(
            self._read_client(session),
            (m.get("author_id") for m in manuscripts),
            ProfileKind.AUTHOR,
        )
        for m in manuscripts:
            author = authors.get(str(m.get("author_id"))) or {}
            m["author_name"] = display_name(author)
            m["author_email"] = mask_email(session.role, session.user_id, m.get("author_id"), author.get("email"))
        return manuscripts

    def stats(self, session: Session) -> Dict[str, int]:
        return compute_stats(self.list_manuscripts(session))

    # === 投稿 ===

    def submit_manuscript(
        self,
        session: Session,
        *,
        title: str,
        manuscript_file: Optional[UploadedFile],
        cover_letter_file: Optional[UploadedFile],
        abstract: str = "",
        keywords: Optional[List[str]] = None,
        co_authors: Optional[List[str]] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Dict[str, Any]:
        if session.role is Role.REVIEWER:
            raise PermissionDenied("Reviewer accounts cannot submit manuscripts")
        title = (title or "").strip()
        if not title:
            raise ValidationFailed("Title is required")
        if manuscript_file is None or not manuscript_file.content:
            raise ValidationFailed("Manuscript file is required")
        if cover_letter_file is None or not cover_letter_file.content:
            raise ValidationFailed("Cover letter is required")

        bucket = self._config.storage_bucket
        manuscript_path = storage_service.build_object_path(
            user_id=session.user_id, kind=storage_service.MANUSCRIPTS, filename=manuscript_file.filename
        )
        cover_letter_path = storage_service.build_object_path(
            user_id=session.user_id, kind=storage_service.COVER_LETTERS, filename=cover_letter_file.filename
        )
        uploaded: List[str] = []
        try:
            for path, upload in ((manuscript_path, manuscript_file), (cover_letter_path, cover_letter_file)):
                storage_service.upload_bytes(
                    bucket=bucket, path=path, content=upload.content, content_type=upload.content_type
                )
                uploaded.append(path)
        except Exception as e:
            storage_service.discard_objects(bucket=bucket, paths=uploaded)
            raise persistence_error("Uploading manuscript files", e) from e

        now = self._clock()
        payload = {
            "title": title,
            "abstract": (abstract or "").strip(),
            "author_id": session.user_id,
            "status": ManuscriptStatus.initial().value,
            "submission_date": now.isoformat(),
            "keywords": [k.strip() for k in (keywords or []) if k and k.strip()],
            "co_authors": [c.strip() for c in (co_authors or []) if c and c.strip()],
            "file_path": manuscript_path,
            "file_name": manuscript_file.filename,
            "file_size": manuscript_file.size,
            "cover_letter_path": cover_letter_path,
            "cover_letter_name": cover_letter_file.filename,
            "cover_letter_size": cover_letter_file.size,
        }
        try:
            resp = self._client.table("manuscripts").insert(payload).execute()
        except Exception as e:
            storage_service.discard_objects(bucket=bucket, paths=uploaded)
            raise persistence_error("Creating manuscript", e) from e
        created = (rows(resp) or [payload])[0]

        logger.info("manuscript %s submitted by %s", created.get("id"), session.user_id)
        self.notifier.manuscript_submitted(created, background_tasks)
        return created

    def update_manuscript(self, session: Session, manuscript_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        manuscript = self.load(manuscript_id)
        if not can_write_manuscript(session, manuscript):
            raise PermissionDenied("You do not have access to this manuscript")

        allowed = ADMIN_EDITABLE_FIELDS if session.is_admin else AUTHOR_EDITABLE_FIELDS
        updates = {k: v for k, v in fields.items() if k in allowed and v is not None}
        if "title" in updates and not str(updates["title"]).strip():
            raise ValidationFailed("Title cannot be empty")
        if not updates:
            raise ValidationFailed("No editable fields provided")
        updates["updated_at"] = self._clock().isoformat()
        return self._write(manuscript_id, updates, action="Updating manuscript")

    # === 管理员操作 ===

    def _require_admin(self, session: Session) -> None:
        if not session.is_admin:
            raise PermissionDenied("Only administrators can perform this action")

    def transition(
        self,
        session: Session,
        manuscript_id: str,
        new_status: str | ManuscriptStatus,
        *,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Dict[str, Any]:
        """
        设置稿件状态（管理员可从任意状态设置为任意状态）。

        decision_date 在决策/终态集合内写入当前时间，否则清空为 null。
        """
        self._require_admin(session)
        status = normalize_status(new_status)
        if status is None:
            raise ValidationFailed(f"Unknown manuscript status: {new_status}")

        before = self.load(manuscript_id)
        now = self._clock()
        updated = self._write(
            manuscript_id,
            {
                "status": status.value,
                "decision_date": decision_date_for(status, now),
                "updated_at": now.isoformat(),
            },
            action="Updating manuscript status",
        )
        logger.info("manuscript %s: %s -> %s", manuscript_id, before.get("status"), status.value)
        previous = normalize_status(before.get("status"))
        if previous is not None and previous.is_terminal and previous is not status:
            logger.warning("manuscript %s reopened from terminal status %s", manuscript_id, previous.value)
        if before.get("status") != status.value:
            self.notifier.status_changed(updated, before.get("status"), status.value, background_tasks)
        return updated

    def delete_manuscript(self, session: Session, manuscript_id: str) -> None:
        """
        删除稿件及其审稿记录、最终文件（先子表后主表）。
        """
        self._require_admin(session)
        manuscript = self.load(manuscript_id)
        try:
            docs = rows(
                self._client.table("final_documents").select("file_path").eq("manuscript_id", manuscript_id).execute()
            )
            self._client.table("final_documents").delete().eq("manuscript_id", manuscript_id).execute()
            self._client.table("reviews").delete().eq("manuscript_id", manuscript_id).execute()
            self._client.table("manuscripts").delete().eq("id", manuscript_id).execute()
        except Exception as e:
            raise persistence_error("Deleting manuscript", e) from e

        paths = [manuscript.get("file_path"), manuscript.get("cover_letter_path")]
        paths += [d.get("file_path") for d in docs]
        try:
            storage_service.remove_objects(bucket=self._config.storage_bucket, paths=paths)
        except Exception as e:
            logger.warning("manuscript %s deleted but file cleanup failed: %s", manuscript_id, e)

    def _write(self, manuscript_id: str, updates: Dict[str, Any], *, action: str) -> Dict[str, Any]:
        try:
            resp = self._client.table("manuscripts").update(updates).eq("id", manuscript_id).execute()
        except Exception as e:
            raise persistence_error(action, e) from e
        found = rows(resp)
        if not found:
            raise NotFound("Manuscript not found")
        return found[0]
