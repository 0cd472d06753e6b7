import logging
import os
from typing import Callable, Iterable, Optional, Set

from fastapi import Depends

from app.core.auth_utils import get_current_user
from app.core.errors import PermissionDenied
from app.lib.api_client import rows, supabase_admin
from app.models.user import Role, Session, normalize_role

logger = logging.getLogger("portal.auth")


def _parse_admin_emails() -> Set[str]:
    raw = os.environ.get("ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def _is_admin_email(email: Optional[str]) -> bool:
    if not email:
        return False
    return email.strip().lower() in _parse_admin_emails()


def load_role(user_id: str, email: Optional[str]) -> Role:
    """
    读取 user_roles 中的唯一角色。

    中文注释:
    1) 注册触发器会写入默认 author 角色；若缺失则在这里补齐。
    2) ADMIN_EMAILS 中的账号（本地/演示环境）至少拥有 admin 角色，已是 super_admin 的不降级。
    """
    resp = supabase_admin.table("user_roles").select("role").eq("user_id", user_id).execute()
    existing = rows(resp)
    role = normalize_role(existing[0].get("role")) if existing else None

    if _is_admin_email(email) and (role is None or not role.is_admin):
        if existing:
            supabase_admin.table("user_roles").update({"role": Role.ADMIN.value}).eq("user_id", user_id).execute()
        else:
            supabase_admin.table("user_roles").insert({"user_id": user_id, "role": Role.ADMIN.value}).execute()
        return Role.ADMIN

    if role is None:
        if not existing:
            supabase_admin.table("user_roles").insert({"user_id": user_id, "role": Role.AUTHOR.value}).execute()
        return Role.AUTHOR
    return role


async def get_current_session(current_user: dict = Depends(get_current_user)) -> Session:
    """
    构造显式的 Session（user_id / email / role）并注入到各 handler。
    """
    user_id = str(current_user["id"])
    email = current_user.get("email")

    try:
        role = load_role(user_id, email)
    except Exception as e:
        logger.warning("Failed to load role for %s: %s", user_id, e)
        # 最小化降级：按最低权限 author 处理，避免 UI 完全不可用
        role = Role.ADMIN if _is_admin_email(email) else Role.AUTHOR

    return Session(
        user_id=user_id,
        email=email,
        role=role,
        access_token=current_user.get("access_token"),
    )


def require_roles(required: Iterable[Role | str]) -> Callable[..., Session]:
    required_set = {normalize_role(r) for r in required} - {None}

    async def _dep(session: Session = Depends(get_current_session)) -> Session:
        if session.role not in required_set:
            raise PermissionDenied("Insufficient role")
        return session

    return _dep


require_admin = require_roles([Role.ADMIN, Role.SUPER_ADMIN])
# 审稿操作只开放给 reviewer，管理员不能代填
require_reviewer = require_roles([Role.REVIEWER])
