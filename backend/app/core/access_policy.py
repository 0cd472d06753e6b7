from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable, Mapping

from app.core.errors import is_policy_denial
from app.lib.api_client import rows
from app.models.reviews import ReviewStatus
from app.models.user import ADMIN_ROLES, Role, Session, normalize_role

logger = logging.getLogger("portal.access")

# 中文注释：
# - 这里集中定义“角色 -> 资源”的读写规则，避免权限判断散落在各路由。
# - 权威边界在 Supabase RLS；这里是展示层的二次校验，并负责读失败时的降级。

REDACTED_EMAIL = "***@***.***"

PROFILE_COLUMNS = "user_id, first_name, last_name, email, institution"


class ProfileKind(str, Enum):
    AUTHOR = "Author"
    REVIEWER = "Reviewer"


def _is_admin(role: Role | str | None) -> bool:
    return normalize_role(role) in ADMIN_ROLES


def mask_email(viewer_role: Role | str | None, viewer_id: str | None, target_id: str | None, email: str | None) -> str:
    """
    管理员或本人可见真实邮箱，其余一律返回固定脱敏串。
    """
    if _is_admin(viewer_role):
        return email or ""
    if viewer_id is not None and target_id is not None and str(viewer_id) == str(target_id):
        return email or ""
    return REDACTED_EMAIL


def can_read_manuscript(session: Session, manuscript: Mapping[str, Any]) -> bool:
    if session.is_admin:
        return True
    return session.role is Role.AUTHOR and str(manuscript.get("author_id")) == session.user_id


def can_write_manuscript(session: Session, manuscript: Mapping[str, Any]) -> bool:
    # 稿件读写范围一致：管理员全部，作者只限本人稿件，审稿人不可写
    return can_read_manuscript(session, manuscript)


def can_read_review(
    session: Session,
    review: Mapping[str, Any],
    manuscript: Mapping[str, Any] | None = None,
) -> bool:
    """
    - 管理员：全部可读
    - 审稿人：仅自己的审稿
    - 作者：仅自己稿件上、已被管理员批准且已完成的审稿（作者面板的“Reviews”）
    """
    if session.is_admin:
        return True
    if session.role is Role.REVIEWER:
        return str(review.get("reviewer_id")) == session.user_id
    if session.role is Role.AUTHOR and manuscript is not None:
        return (
            str(manuscript.get("author_id")) == session.user_id
            and review.get("status") == ReviewStatus.ADMIN_APPROVED.value
            and bool(review.get("completed_date"))
        )
    return False


def can_write_review(session: Session, review: Mapping[str, Any]) -> bool:
    # 管理员只能审批，不能代替审稿人填写
    return session.role is Role.REVIEWER and str(review.get("reviewer_id")) == session.user_id


def can_edit_role(actor_role: Role | str | None, target_role: Role | str | None, new_role: Role | str | None) -> bool:
    """
    角色字段写权限：

    - super_admin 可修改任何人的角色；
    - admin 不可修改 super_admin，也不可授予 super_admin；
    - 其余角色只读。
    """
    actor = normalize_role(actor_role)
    target = normalize_role(target_role)
    new = normalize_role(new_role)
    if new is None or actor not in ADMIN_ROLES:
        return False
    if actor is Role.SUPER_ADMIN:
        return True
    return target is not Role.SUPER_ADMIN and new is not Role.SUPER_ADMIN


def placeholder_profile(user_id: str, kind: ProfileKind) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "first_name": kind.value,
        "last_name": f"({str(user_id)[:8]})",
        "email": REDACTED_EMAIL,
        "institution": None,
    }


def fetch_profiles(
    client: Any,
    user_ids: Iterable[str],
    kind: ProfileKind,
    *,
    columns: str = PROFILE_COLUMNS,
) -> dict[str, dict[str, Any]]:
    """
    批量读取 profiles，读失败时按 id 生成占位数据，不让整个聚合读取失败。

    中文注释:
    - RLS 拒绝（policy）与其它异常都降级为占位；前者仅记 info，后者记 warning。
    - 成功返回但缺失的 id 同样补占位，保证调用方按 id 取值时一定命中。
    """
    ids = list(dict.fromkeys(str(i) for i in user_ids if i))
    if not ids:
        return {}

    try:
        resp = client.table("profiles").select(columns).in_("user_id", ids).execute()
        found = {str(p.get("user_id")): p for p in rows(resp)}
    except Exception as e:
        if is_policy_denial(e):
            logger.info("profiles read restricted by policy, using %s placeholders", kind.value)
        else:
            logger.warning("Error fetching %s profiles: %s", kind.value.lower(), e)
        found = {}

    return {uid: found.get(uid) or placeholder_profile(uid, kind) for uid in ids}


def display_name(profile: Mapping[str, Any] | None) -> str:
    if not profile:
        return ""
    return f"{profile.get('first_name') or ''} {profile.get('last_name') or ''}".strip()


def present_profile(profile: Mapping[str, Any], session: Session) -> dict[str, Any]:
    out = dict(profile)
    out["email"] = mask_email(session.role, session.user_id, profile.get("user_id"), profile.get("email"))
    return out
