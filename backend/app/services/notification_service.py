from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import BackgroundTasks

from app.core.access_policy import display_name
from app.core.config import PortalConfig
from app.core.mail import EmailService
from app.lib.api_client import rows, supabase_admin
from app.models.manuscript import normalize_status
from app.models.user import ADMIN_ROLES

logger = logging.getLogger("portal.notifications")

# template -> 主题模板
SUBJECTS: Dict[str, str] = {
    "manuscript_submitted_admin": "New Manuscript Submission: {manuscript_title}",
    "submission_confirmation": 'Manuscript Submission Confirmed: "{manuscript_title}"',
    "reviewer_assignment": "Manuscript Review Assignment: {manuscript_title}",
    "review_submitted": 'Review Submitted for "{manuscript_title}"',
    "review_feedback": 'Reviews Available for "{manuscript_title}"',
    "status_change": 'Manuscript Status Update: "{manuscript_title}"',
    "final_documents": "Final Documents Ready - {manuscript_title}",
    "welcome": "Welcome to {portal_name} - Please Verify Your Email",
    "password_reset": "Reset Your {portal_name} Password",
    "review_reminder": "Reminder: Review Due in {days_left} Days - {manuscript_title}",
    "review_reminder_urgent": "URGENT: Review Due in {days_left} Days - {manuscript_title}",
}


class NotificationDispatcher:
    """
    邮件通知分发（fire-and-forget）

    中文注释:
    1) 所有事件方法都不会抛异常：收件人查询、渲染、发送的失败只记录日志。
    2) 传入 BackgroundTasks 时在响应返回后执行；否则同步执行（cron / 测试）。
    3) 收件人信息用 service_role 读取，避免 RLS 导致查不到管理员邮箱。
    """

    def __init__(
        self,
        *,
        email_service: Optional[EmailService] = None,
        client: Any = None,
        config: Optional[PortalConfig] = None,
    ):
        self._email = email_service or EmailService()
        self._client = client if client is not None else supabase_admin
        self._config = config or PortalConfig.from_env()

    # === 基础发送 ===

    def send(self, template: str, recipient: str, fields: Dict[str, Any], *, subject_key: Optional[str] = None) -> bool:
        context = {
            "portal_name": self._config.portal_name,
            "action_url": f"{self._config.frontend_base_url}/dashboard",
            **fields,
        }
        subject_tpl = SUBJECTS.get(subject_key or template, self._config.portal_name)
        try:
            subject = subject_tpl.format(**context)
        except (KeyError, IndexError):
            subject = self._config.portal_name
        context.setdefault("subject", subject)
        try:
            ok = self._email.send_template_email(
                to_email=recipient,
                subject=subject,
                template_name=f"{template}.html",
                context=context,
            )
        except Exception as e:
            logger.warning("[Notify] %s -> %s failed: %s", template, recipient, e)
            return False
        if not ok:
            logger.info("[Notify] %s -> %s not delivered", template, recipient)
        return ok

    def _dispatch(self, background_tasks: Optional[BackgroundTasks], fn: Callable[..., None], *args: Any) -> None:
        if background_tasks is not None:
            background_tasks.add_task(self._guarded, fn, *args)
        else:
            self._guarded(fn, *args)

    def _guarded(self, fn: Callable[..., None], *args: Any) -> None:
        try:
            fn(*args)
        except Exception as e:
            logger.warning("[Notify] %s failed: %s", getattr(fn, "__name__", "notification"), e)

    # === 收件人查询 ===

    def profile_contact(self, user_id: str) -> Optional[Dict[str, Any]]:
        resp = (
            self._client.table("profiles")
            .select("user_id, email, first_name, last_name")
            .eq("user_id", str(user_id))
            .execute()
        )
        found = rows(resp)
        return found[0] if found else None

    def admin_contacts(self) -> List[Dict[str, Any]]:
        resp = (
            self._client.table("user_roles")
            .select("user_id")
            .in_("role", sorted(r.value for r in ADMIN_ROLES))
            .execute()
        )
        admin_ids = [str(r.get("user_id")) for r in rows(resp) if r.get("user_id")]
        if not admin_ids:
            return []
        profiles = (
            self._client.table("profiles")
            .select("user_id, email, first_name, last_name")
            .in_("user_id", admin_ids)
            .execute()
        )
        return [p for p in rows(profiles) if p.get("email")]

    # === 事件 ===

    def manuscript_submitted(self, manuscript: Dict[str, Any], background_tasks: Optional[BackgroundTasks] = None) -> None:
        self._dispatch(background_tasks, self._manuscript_submitted, dict(manuscript))

    def _manuscript_submitted(self, manuscript: Dict[str, Any]) -> None:
        author = self.profile_contact(manuscript["author_id"]) or {}
        fields = {
            "manuscript_title": manuscript.get("title") or "Manuscript",
            "manuscript_id": manuscript.get("id"),
            "author_name": display_name(author) or "Author",
        }
        for admin in self.admin_contacts():
            self.send("manuscript_submitted_admin", admin["email"], {**fields, "recipient_name": display_name(admin)})
        if author.get("email"):
            self.send("submission_confirmation", author["email"], {**fields, "recipient_name": display_name(author)})

    def reviewers_assigned(
        self,
        manuscript: Dict[str, Any],
        reviews: List[Dict[str, Any]],
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> None:
        self._dispatch(background_tasks, self._reviewers_assigned, dict(manuscript), [dict(r) for r in reviews])

    def _reviewers_assigned(self, manuscript: Dict[str, Any], reviews: List[Dict[str, Any]]) -> None:
        for review in reviews:
            reviewer = self.profile_contact(review["reviewer_id"])
            if not reviewer or not reviewer.get("email"):
                logger.warning("[Notify] no email for reviewer %s, skip assignment mail", review.get("reviewer_id"))
                continue
            self.send(
                "reviewer_assignment",
                reviewer["email"],
                {
                    "recipient_name": display_name(reviewer) or "Reviewer",
                    "manuscript_title": manuscript.get("title") or "Manuscript",
                    "manuscript_id": manuscript.get("id"),
                    "due_date": format_date(review.get("due_date")),
                },
            )

    def review_submitted(
        self,
        manuscript: Dict[str, Any],
        review: Dict[str, Any],
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> None:
        self._dispatch(background_tasks, self._review_submitted, dict(manuscript), dict(review))

    def _review_submitted(self, manuscript: Dict[str, Any], review: Dict[str, Any]) -> None:
        reviewer = self.profile_contact(review["reviewer_id"]) or {}
        fields = {
            "manuscript_title": manuscript.get("title") or "Manuscript",
            "reviewer_name": display_name(reviewer) or "A reviewer",
            "rating": review.get("rating"),
            "recommendation": str(review.get("recommendation") or "").replace("_", " "),
        }
        for admin in self.admin_contacts():
            self.send("review_submitted", admin["email"], {**fields, "recipient_name": display_name(admin)})

    def review_feedback(self, manuscript: Dict[str, Any], background_tasks: Optional[BackgroundTasks] = None) -> None:
        self._dispatch(background_tasks, self._author_mail, "review_feedback", dict(manuscript), {})

    def status_changed(
        self,
        manuscript: Dict[str, Any],
        old_status: Optional[str],
        new_status: str,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> None:
        fields = {"old_status": _status_label(old_status), "new_status": _status_label(new_status)}
        self._dispatch(background_tasks, self._author_mail, "status_change", dict(manuscript), fields)

    def final_documents(
        self,
        manuscript: Dict[str, Any],
        documents: List[Dict[str, Any]],
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> None:
        fields = {
            "documents": documents,
            "link_days": max(1, self._config.final_document_url_ttl // 86400),
        }
        self._dispatch(background_tasks, self._author_mail, "final_documents", dict(manuscript), fields)

    def _author_mail(self, template: str, manuscript: Dict[str, Any], fields: Dict[str, Any]) -> None:
        author = self.profile_contact(manuscript["author_id"])
        if not author or not author.get("email"):
            logger.warning("[Notify] no email for author of %s, skip %s", manuscript.get("id"), template)
            return
        self.send(
            template,
            author["email"],
            {
                "recipient_name": display_name(author) or "Author",
                "manuscript_title": manuscript.get("title") or "Manuscript",
                "manuscript_id": manuscript.get("id"),
                **fields,
            },
        )

    def welcome(self, email: str, name: str, background_tasks: Optional[BackgroundTasks] = None) -> None:
        self._dispatch(background_tasks, self.send, "welcome", email, {"recipient_name": name})

    def password_reset(self, email: str, reset_url: str, background_tasks: Optional[BackgroundTasks] = None) -> None:
        self._dispatch(background_tasks, self.send, "password_reset", email, {"action_url": reset_url})


def format_date(value: Any) -> str:
    text = str(value or "")
    if not text:
        return ""
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return text
    return dt.strftime("%B %d, %Y")


def _status_label(value: Optional[str]) -> str:
    status = normalize_status(value)
    if status is None:
        return str(value or "")
    return status.label
