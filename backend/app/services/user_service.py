from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks

from app.core.access_policy import present_profile
from app.core.config import PortalConfig
from app.core.errors import ValidationFailed, persistence_error
from app.lib.api_client import rows, supabase, supabase_admin
from app.models.user import Role, Session, normalize_role
from app.schemas.user import ProfileUpdate
from app.services.notification_service import NotificationDispatcher

logger = logging.getLogger("portal.users")

MIN_PASSWORD_LENGTH = 8


def validate_new_password(password: Optional[str], confirm_password: Optional[str]) -> str:
    password = password or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if password != (confirm_password or ""):
        raise ValidationFailed("Passwords do not match")
    return password


class UserService:
    """
    自助账户操作：注册、找回密码、修改密码、个人资料、用户目录。

    中文注释:
    - 注册与找回密码走 anon client（与浏览器端一致，由 Supabase Auth 处理确认邮件）。
    - 所有校验在调用 Supabase 之前完成，校验失败不会产生任何外部调用。
    """

    def __init__(
        self,
        *,
        client: Any = None,
        auth_client: Any = None,
        notifier: Optional[NotificationDispatcher] = None,
        config: Optional[PortalConfig] = None,
    ):
        self._client = client if client is not None else supabase_admin
        self._auth_client = auth_client if auth_client is not None else supabase
        self._notifier = notifier
        self._config = config or PortalConfig.from_env()

    @property
    def notifier(self) -> NotificationDispatcher:
        if self._notifier is None:
            self._notifier = NotificationDispatcher(config=self._config)
        return self._notifier

    def register(
        self,
        *,
        email: str,
        password: str,
        confirm_password: str,
        first_name: str,
        last_name: str,
        institution: Optional[str] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Dict[str, Any]:
        email = (email or "").strip().lower()
        first_name = (first_name or "").strip()
        last_name = (last_name or "").strip()
        if "@" not in email:
            raise ValidationFailed("A valid email address is required")
        if not first_name or not last_name:
            raise ValidationFailed("First name and last name are required")
        validate_new_password(password, confirm_password)

        try:
            res = self._auth_client.auth.sign_up(
                {
                    "email": email,
                    "password": password,
                    "options": {
                        "email_redirect_to": f"{self._config.frontend_base_url}/auth/callback",
                        "data": {
                            "first_name": first_name,
                            "last_name": last_name,
                            "institution": (institution or "").strip(),
                        },
                    },
                }
            )
        except Exception as e:
            logger.warning("sign up failed for %s: %s", email, e)
            raise ValidationFailed(f"Registration failed: {e}") from e

        user = getattr(res, "user", None)
        user_id = str(getattr(user, "id", "") or "")
        logger.info("registered account %s", user_id or email)
        self.notifier.welcome(email, f"{first_name} {last_name}", background_tasks)
        return {"user_id": user_id or None, "email": email}

    def send_password_reset_email(self, email: str, redirect_url: Optional[str] = None) -> None:
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationFailed("A valid email address is required")
        redirect_to = redirect_url or f"{self._config.frontend_base_url}/auth/reset-password"
        try:
            self._auth_client.auth.reset_password_for_email(email, {"redirect_to": redirect_to})
        except Exception as e:
            # 中文注释: 不向调用方暴露账户是否存在
            logger.warning("password reset request for %s failed: %s", email, e)

    def update_password(self, session: Session, password: str, confirm_password: str) -> None:
        validate_new_password(password, confirm_password)
        try:
            self._client.auth.admin.update_user_by_id(session.user_id, {"password": password})
        except Exception as e:
            raise persistence_error("Updating password", e) from e

    # === 个人资料 ===

    def get_profile(self, session: Session) -> Dict[str, Any]:
        try:
            found = rows(self._client.table("profiles").select("*").eq("user_id", session.user_id).execute())
        except Exception as e:
            raise persistence_error("Loading profile", e) from e
        profile = found[0] if found else {"user_id": session.user_id, "email": session.email or ""}
        return {**profile, "role": session.role.value}

    def update_profile(self, session: Session, update: ProfileUpdate) -> Dict[str, Any]:
        data = update.model_dump(exclude_unset=True)
        if not data:
            raise ValidationFailed("At least one field must be provided")
        if "first_name" in data and not data["first_name"]:
            raise ValidationFailed("First name cannot be empty")
        if "last_name" in data and not data["last_name"]:
            raise ValidationFailed("Last name cannot be empty")
        data["updated_at"] = datetime.now(timezone.utc).isoformat()

        try:
            resp = self._client.table("profiles").update(data).eq("user_id", session.user_id).execute()
            updated = rows(resp)
            if not updated:
                # 兼容注册触发器未写入 profiles 的旧账户
                insert_data = {**data, "user_id": session.user_id, "email": session.email or ""}
                resp = self._client.table("profiles").insert(insert_data).execute()
                updated = rows(resp) or [insert_data]
        except Exception as e:
            raise persistence_error("Updating profile", e) from e
        return updated[0]

    def directory(self, session: Session, role: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        用户目录（带角色）；非管理员只能看到自己的真实邮箱。
        """
        wanted = normalize_role(role) if role else None
        if role and wanted is None:
            raise ValidationFailed(f"Unknown role: {role}")
        try:
            query = self._client.table("user_roles").select("user_id, role")
            if wanted is not None:
                query = query.eq("role", wanted.value)
            role_rows = rows(query.execute())
            ids = [str(r.get("user_id")) for r in role_rows if r.get("user_id")]
            profiles = {}
            if ids:
                profiles = {
                    str(p.get("user_id")): p
                    for p in rows(
                        self._client.table("profiles")
                        .select("user_id, email, first_name, last_name, institution, expertise_areas")
                        .in_("user_id", ids)
                        .execute()
                    )
                }
        except Exception as e:
            raise persistence_error("Loading users", e) from e

        out = []
        for r in role_rows:
            uid = str(r.get("user_id"))
            profile = profiles.get(uid) or {"user_id": uid, "email": "", "first_name": "", "last_name": ""}
            item = present_profile(profile, session)
            item["role"] = (normalize_role(r.get("role")) or Role.AUTHOR).value
            out.append(item)
        out.sort(key=lambda p: (str(p.get("last_name") or "").lower(), str(p.get("first_name") or "").lower()))
        return out
