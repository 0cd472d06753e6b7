from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """
    账户角色（每个账户同一时刻只有一个角色）。
    """

    AUTHOR = "author"
    REVIEWER = "reviewer"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def is_admin(self) -> bool:
        return self in ADMIN_ROLES


ADMIN_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


def normalize_role(value: str | Role | None) -> Role | None:
    if value is None:
        return None
    if isinstance(value, Role):
        return value
    v = str(value).strip().lower()
    # 旧数据里存在 editor 角色，按管理员处理
    if v == "editor":
        return Role.ADMIN
    try:
        return Role(v)
    except ValueError:
        return None


@dataclass(frozen=True)
class Session:
    """
    当前请求的调用者上下文。

    中文注释:
    - 由 get_current_session 依赖构造，并显式传给每个 service 调用。
    - 不存在任何进程级的“当前用户”全局变量。
    """

    user_id: str
    email: Optional[str]
    role: Role
    access_token: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role.is_admin

