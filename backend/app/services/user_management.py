from __future__ import annotations

import logging
import os
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks

from app.core.access_policy import can_edit_role, present_profile
from app.core.config import PortalConfig
from app.core.errors import NotFound, PermissionDenied, ValidationFailed, persistence_error
from app.lib.api_client import rows, supabase_admin
from app.models.user import Role, Session, normalize_role
from app.services.notification_service import NotificationDispatcher

logger = logging.getLogger("portal.user_management")


def _is_production_env() -> bool:
    value = os.environ.get("APP_ENV") or os.environ.get("ENVIRONMENT") or ""
    return str(value).strip().lower() in {"prod", "production"}


class UserManagementService:
    """
    管理员账户操作：
    - 创建账户（邮箱已确认，写入 profiles + user_roles）
    - 账户列表（带角色）
    - 角色变更（受 can_edit_role 约束，审计写入 role_change_logs）
    """

    def __init__(
        self,
        *,
        client: Any = None,
        notifier: Optional[NotificationDispatcher] = None,
        config: Optional[PortalConfig] = None,
    ):
        # service_role：需要调用 auth.admin 并绕过 RLS
        self.admin_client = client if client is not None else supabase_admin
        self._notifier = notifier
        self._config = config or PortalConfig.from_env()

    @property
    def notifier(self) -> NotificationDispatcher:
        if self._notifier is None:
            self._notifier = NotificationDispatcher(config=self._config)
        return self._notifier

    @staticmethod
    def _generate_temporary_password(length: int = 16) -> str:
        """
        生成高熵临时密码（避免固定弱口令）。
        """
        alphabet = string.ascii_letters + string.digits + "!@#$%^&*()-_=+"
        return "".join(secrets.choice(alphabet) for _ in range(length))

    def _require_admin(self, session: Session) -> None:
        if not session.is_admin:
            raise PermissionDenied("Only administrators can manage users")

    def current_role(self, user_id: str) -> Optional[Role]:
        try:
            found = rows(self.admin_client.table("user_roles").select("role").eq("user_id", user_id).execute())
        except Exception as e:
            raise persistence_error("Loading user role", e) from e
        return normalize_role(found[0].get("role")) if found else None

    def log_role_change(
        self,
        *,
        user_id: str,
        changed_by: str,
        old_role: Optional[str],
        new_role: str,
        reason: str,
    ) -> None:
        try:
            self.admin_client.table("role_change_logs").insert(
                {
                    "user_id": user_id,
                    "changed_by": changed_by,
                    "old_role": old_role,
                    "new_role": new_role,
                    "reason": reason,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                }
            ).execute()
        except Exception as e:
            # 审计失败不回滚已生效的角色变更
            logger.warning("Failed to log role change for %s: %s", user_id, e)

    def create_user(
        self,
        session: Session,
        *,
        email: str,
        first_name: str,
        last_name: str,
        role: str = "author",
        institution: Optional[str] = None,
        password: Optional[str] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Dict[str, Any]:
        self._require_admin(session)
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationFailed("A valid email address is required")
        new_role = normalize_role(role)
        if new_role is None:
            raise ValidationFailed(f"Invalid role: {role}")
        if not can_edit_role(session.role, None, new_role):
            raise PermissionDenied(f"You cannot create {new_role.value} accounts")

        if password is not None:
            pwd = password.strip()
            if len(pwd) < 8:
                raise ValidationFailed("Password must be at least 8 characters")
        else:
            # 中文注释: 开发/UAT 默认固定口令便于演示；生产使用强随机。
            pwd = "12345678" if not _is_production_env() else self._generate_temporary_password()

        try:
            existing = rows(self.admin_client.table("profiles").select("user_id").eq("email", email).execute())
        except Exception as e:
            raise persistence_error("Checking existing accounts", e) from e
        if existing:
            raise ValidationFailed("User with this email already exists")

        try:
            created = self.admin_client.auth.admin.create_user(
                {
                    "email": email,
                    "password": pwd,
                    "email_confirm": True,
                    "user_metadata": {"first_name": first_name, "last_name": last_name},
                }
            )
        except Exception as e:
            raise persistence_error("Creating auth user", e) from e
        new_user = getattr(created, "user", None)
        user_id = str(getattr(new_user, "id", "") or "")
        if not user_id:
            raise ValidationFailed("Failed to create user in Auth")

        now = datetime.now(timezone.utc).isoformat()
        profile = {
            "user_id": user_id,
            "email": email,
            "first_name": first_name.strip(),
            "last_name": last_name.strip(),
            "institution": (institution or "").strip() or None,
            "updated_at": now,
        }
        try:
            # 注册触发器可能已写入默认行，这里 upsert 覆盖
            self.admin_client.table("profiles").upsert(profile, on_conflict="user_id").execute()
            self.admin_client.table("user_roles").upsert(
                {"user_id": user_id, "role": new_role.value}, on_conflict="user_id"
            ).execute()
        except Exception as e:
            raise persistence_error("Creating user profile", e) from e

        self.log_role_change(
            user_id=user_id,
            changed_by=session.user_id,
            old_role=None,
            new_role=new_role.value,
            reason="account created by administrator",
        )
        logger.info("admin %s created %s account %s", session.user_id, new_role.value, user_id)
        self.notifier.welcome(email, f"{first_name} {last_name}".strip(), background_tasks)
        return {**profile, "role": new_role.value}

    def list_users(self, session: Session, *, role: Optional[str] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
        self._require_admin(session)
        wanted = normalize_role(role) if role else None
        if role and wanted is None:
            raise ValidationFailed(f"Invalid role: {role}")
        try:
            query = self.admin_client.table("profiles").select("*")
            if search:
                term = search.strip().replace(",", " ")
                query = query.or_(f"email.ilike.%{term}%,first_name.ilike.%{term}%,last_name.ilike.%{term}%")
            profiles = rows(query.order("created_at", desc=True).execute())
            role_rows = rows(self.admin_client.table("user_roles").select("user_id, role").execute())
        except Exception as e:
            raise persistence_error("Loading users", e) from e

        roles = {str(r.get("user_id")): normalize_role(r.get("role")) or Role.AUTHOR for r in role_rows}
        out = []
        for p in profiles:
            user_role = roles.get(str(p.get("user_id")), Role.AUTHOR)
            if wanted is not None and user_role is not wanted:
                continue
            item = present_profile(p, session)
            item["role"] = user_role.value
            out.append(item)
        return out

    def change_role(self, session: Session, user_id: str, new_role: str, reason: str = "") -> Dict[str, Any]:
        """
        修改单一角色。

        - 调用方必须是管理员；
        - admin 不能修改 super_admin，也不能授予 super_admin；
        - 不能修改自己的角色（避免管理员把自己降级后无法恢复）。
        """
        self._require_admin(session)
        target_role = normalize_role(new_role)
        if target_role is None:
            raise ValidationFailed(f"Invalid role: {new_role}")
        if str(user_id) == session.user_id:
            raise PermissionDenied("You cannot change your own role")

        old_role = self.current_role(str(user_id))
        if old_role is None:
            try:
                profile = rows(self.admin_client.table("profiles").select("user_id").eq("user_id", user_id).execute())
            except Exception as e:
                raise persistence_error("Loading user", e) from e
            if not profile:
                raise NotFound("User not found")
        if not can_edit_role(session.role, old_role, target_role):
            raise PermissionDenied("You are not allowed to assign this role")

        try:
            self.admin_client.table("user_roles").upsert(
                {"user_id": str(user_id), "role": target_role.value}, on_conflict="user_id"
            ).execute()
        except Exception as e:
            raise persistence_error("Updating role", e) from e

        self.log_role_change(
            user_id=str(user_id),
            changed_by=session.user_id,
            old_role=old_role.value if old_role else None,
            new_role=target_role.value,
            reason=reason,
        )
        logger.info(
            "role of %s changed %s -> %s by %s",
            user_id,
            old_role.value if old_role else None,
            target_role.value,
            session.user_id,
        )
        return {"user_id": str(user_id), "old_role": old_role.value if old_role else None, "role": target_role.value}

    def role_history(self, session: Session, user_id: str) -> List[Dict[str, Any]]:
        self._require_admin(session)
        try:
            return rows(
                self.admin_client.table("role_change_logs")
                .select("*")
                .eq("user_id", str(user_id))
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            logger.warning("Failed to fetch role history for %s: %s", user_id, e)
            return []
