import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


def _env_int(key: str, default: int) -> int:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _split_origins(*raw_values: str) -> tuple[str, ...]:
    origins: list[str] = []
    for raw in raw_values:
        for part in (raw or "").split(","):
            origin = part.strip().rstrip("/")
            if origin:
                origins.append(origin)
    return tuple(dict.fromkeys(origins))


@dataclass(frozen=True)
class AppConfig:
    """
    进程级环境配置

    中文注释:
    - cors_origins 来自 FRONTEND_ORIGIN / FRONTEND_ORIGINS（逗号分隔），缺省只放行本地前端。
    """

    env: str  # 'development', 'staging', 'production'
    supabase_url: str
    cors_origins: tuple[str, ...]

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @staticmethod
    def from_env() -> "AppConfig":
        origins = _split_origins(
            os.environ.get("FRONTEND_ORIGIN") or "",
            os.environ.get("FRONTEND_ORIGINS") or "",
        )
        return AppConfig(
            env=(os.environ.get("APP_ENV") or "development").strip().lower(),
            supabase_url=(os.environ.get("SUPABASE_URL") or "").strip(),
            cors_origins=origins or ("http://localhost:3000",),
        )


# Global Config Instance
app_config = AppConfig.from_env()


@dataclass(frozen=True)
class PortalConfig:
    """
    投审稿门户的业务参数

    中文注释:
    1) 审稿期限默认 14 天，提醒邮件在截止前 7 天 / 3 天各发一次。
    2) 所有上传文件统一存放在 `manuscripts` bucket 下，按 user_id 分目录。
    3) review_workflow: "approval"（默认，审稿提交后需管理员批准）或 "direct"（直接 completed）。
    """

    portal_name: str
    review_due_days: int
    storage_bucket: str
    final_document_url_ttl: int
    frontend_base_url: str
    review_workflow: str

    @staticmethod
    def from_env() -> "PortalConfig":
        workflow = (os.environ.get("REVIEW_WORKFLOW") or "approval").strip().lower()
        if workflow not in {"approval", "direct"}:
            workflow = "approval"

        return PortalConfig(
            portal_name=(os.environ.get("PORTAL_NAME") or "AIPM Manuscript Portal").strip(),
            review_due_days=_env_int("REVIEW_DUE_DAYS", 14),
            storage_bucket=(os.environ.get("STORAGE_BUCKET") or "manuscripts").strip(),
            final_document_url_ttl=_env_int("FINAL_DOCUMENT_URL_TTL", 7 * 24 * 60 * 60),
            frontend_base_url=(
                os.environ.get("FRONTEND_BASE_URL") or "http://localhost:3000"
            ).strip().rstrip("/"),
            review_workflow=workflow,
        )


@dataclass(frozen=True)
class SMTPConfig:
    """
    SMTP 配置（从环境变量读取）

    中文注释:
    1) 该配置只存在于后端进程内，严禁泄露到前端。
    2) 允许在本地/测试环境缺省（此时邮件发送逻辑会优雅降级为“只记录日志”）。
    """

    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    from_email: str
    use_starttls: bool

    @staticmethod
    def from_env() -> Optional["SMTPConfig"]:
        host = (os.environ.get("SMTP_HOST") or "").strip()
        if not host:
            return None

        user = (os.environ.get("SMTP_USER") or "").strip() or None
        password = (os.environ.get("SMTP_PASSWORD") or "").strip() or None

        from_email = (
            os.environ.get("SMTP_FROM_EMAIL") or user or "no-reply@portal.local"
        ).strip()

        return SMTPConfig(
            host=host,
            port=_env_int("SMTP_PORT", 587),
            user=user,
            password=password,
            from_email=from_email,
            use_starttls=_env_bool("SMTP_USE_STARTTLS", True),
        )


@dataclass(frozen=True)
class ResendConfig:
    """
    Resend API Configuration
    """
    api_key: str
    sender: str

    @staticmethod
    def from_env() -> Optional["ResendConfig"]:
        api_key = (os.environ.get("RESEND_API_KEY") or "").strip()
        if not api_key:
            return None

        sender = (
            os.environ.get("EMAIL_SENDER") or "Manuscript Portal <noreply@portal.local>"
        ).strip()

        return ResendConfig(api_key=api_key, sender=sender)


@dataclass(frozen=True)
class SentryConfig:
    """
    Sentry 错误上报配置（可选）
    """

    enabled: bool
    dsn: Optional[str]
    environment: str
    traces_sample_rate: float

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip() or None
        return SentryConfig(
            enabled=_env_bool("SENTRY_ENABLED", bool(dsn)),
            dsn=dsn,
            environment=(os.environ.get("SENTRY_ENVIRONMENT") or app_config.env).strip(),
            traces_sample_rate=_env_float("SENTRY_TRACES_SAMPLE_RATE", 0.0),
        )


def get_admin_api_key() -> Optional[str]:
    """
    内部 Cron 接口鉴权 Key

    中文注释:
    - 仅用于 `/api/v1/internal/cron/*`（审稿提醒 / 逾期扫描），避免暴露到公网用户接口。
    """

    raw = os.environ.get("ADMIN_API_KEY")
    return raw.strip() if raw else None
