from __future__ import annotations

from typing import Any

from postgrest.exceptions import APIError

# 中文注释:
# - 服务层只抛出领域异常，由 main.py 注册的 handler 统一转换为 HTTP 响应。
# - PostgREST 的 RLS 拒绝（42501 / "policy"）需要与一般失败区分开，读路径会据此降级。

POLICY_DENIAL_CODES = {"42501", "PGRST301"}


class PortalError(Exception):
    status_code = 500
    error_type = "portal_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationFailed(PortalError):
    status_code = 422
    error_type = "validation_error"


class NotFound(PortalError):
    status_code = 404
    error_type = "not_found"


class PermissionDenied(PortalError):
    status_code = 403
    error_type = "unauthorized"


class DuplicateAssignment(PortalError):
    status_code = 409
    error_type = "duplicate_assignment"

    def __init__(self, detail: str = "All selected reviewers are already assigned to this manuscript"):
        super().__init__(detail)


class PersistenceError(PortalError):
    status_code = 502
    error_type = "persistence_error"


def _error_text(exc: BaseException) -> str:
    parts = [str(exc)]
    for attr in ("message", "details", "hint"):
        value = getattr(exc, attr, None)
        if value:
            parts.append(str(value))
    return " ".join(parts).lower()


def error_code(exc: BaseException) -> str:
    return str(getattr(exc, "code", "") or "").strip()


def is_policy_denial(exc: BaseException) -> bool:
    """
    判断异常是否为 Supabase 行级策略（RLS）拒绝，而非网络/通用失败。
    """
    if not isinstance(exc, APIError):
        return False
    if error_code(exc) in POLICY_DENIAL_CODES:
        return True
    text = _error_text(exc)
    return "policy" in text or "permission denied" in text


def is_unique_violation(exc: BaseException) -> bool:
    if error_code(exc) == "23505":
        return True
    text = _error_text(exc)
    return "23505" in text or "duplicate key" in text


def persistence_error(action: str, exc: BaseException) -> PortalError:
    if is_policy_denial(exc):
        return PermissionDenied(f"{action} denied by access policy")
    return PersistenceError(f"{action} failed: {exc}")


def error_payload(exc: PortalError) -> dict[str, Any]:
    return {"detail": exc.detail, "type": exc.error_type}
