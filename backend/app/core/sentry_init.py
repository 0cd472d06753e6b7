from typing import Any, Iterable, Mapping

from app.core.config import SentryConfig

FILTERED = "[Filtered]"

# 凭据类字段：请求头与 payload 中都要去掉
CREDENTIAL_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "x-admin-key",
        "password",
        "confirm_password",
        "access_token",
        "refresh_token",
        "token",
        "service_role_key",
    }
)

# 审稿内容保密：评语、管理员备注、上传文件字段都不上报
CONFIDENTIAL_KEYS = frozenset(
    {
        "comments",
        "admin_notes",
        "manuscript_file",
        "cover_letter_file",
        "assessment_file",
        "reviewed_manuscript_file",
        "files",
    }
)

MAX_TEXT_LENGTH = 5000


def _is_blocked_key(key: Any) -> bool:
    k = str(key).strip().lower()
    return k in CREDENTIAL_KEYS or k in CONFIDENTIAL_KEYS


def scrub(value: Any) -> Any:
    """
    递归清洗：去掉凭据与保密字段，文件字节和超长文本整体替换。
    """
    if isinstance(value, (bytes, bytearray)):
        return FILTERED
    if isinstance(value, str):
        return FILTERED if len(value) > MAX_TEXT_LENGTH else value
    if isinstance(value, Mapping):
        return {str(k): (FILTERED if _is_blocked_key(k) else scrub(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [scrub(v) for v in value]
    return value


def _strip_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in headers.items() if str(k).strip().lower() not in CREDENTIAL_KEYS}


def _scrub_breadcrumbs(crumbs: Iterable[Any]) -> list[Any]:
    cleaned = []
    for crumb in crumbs:
        if isinstance(crumb, dict) and isinstance(crumb.get("data"), Mapping):
            crumb = {**crumb, "data": scrub(crumb["data"])}
        cleaned.append(crumb)
    return cleaned


def before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    request = event.get("request")
    if isinstance(request, dict):
        if isinstance(request.get("headers"), Mapping):
            request["headers"] = _strip_headers(request["headers"])
        # 中文注释: 请求体可能是 multipart 稿件，一律不上报
        for field in ("data", "body", "cookies"):
            if field in request:
                request[field] = FILTERED

    for section in ("extra", "contexts"):
        if isinstance(event.get(section), Mapping):
            event[section] = scrub(event[section])

    breadcrumbs = event.get("breadcrumbs")
    if isinstance(breadcrumbs, dict) and isinstance(breadcrumbs.get("values"), list):
        breadcrumbs["values"] = _scrub_breadcrumbs(breadcrumbs["values"])

    return event


def init_sentry(config: SentryConfig | None = None) -> bool:
    """
    未配置 DSN 或显式关闭时返回 False；初始化异常交给调用方兜底。
    """
    cfg = config or SentryConfig.from_env()
    if not cfg.enabled or not cfg.dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=cfg.dsn,
        environment=cfg.environment,
        traces_sample_rate=cfg.traces_sample_rate,
        integrations=[FastApiIntegration()],
        send_default_pii=False,
        max_request_body_size="never",
        before_send=before_send,
    )
    return True
