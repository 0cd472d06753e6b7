import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict, List, Optional

import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape
from supabase import Client

from app.core.config import ResendConfig, SMTPConfig, app_config
from app.lib.api_client import supabase_admin
from app.models.email_log import EmailLog, EmailStatus

logger = logging.getLogger("portal.mail")

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


@dataclass(frozen=True)
class OutgoingEmail:
    to_email: str
    subject: str
    html_body: str
    text_body: Optional[str] = None


class SmtpTransport:
    name = "smtp"

    def __init__(self, config: SMTPConfig):
        self.config = config

    def _build(self, email: OutgoingEmail) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = email.subject
        msg["From"] = self.config.from_email
        msg["To"] = email.to_email
        if email.text_body:
            msg.attach(MIMEText(email.text_body, "plain", "utf-8"))
        msg.attach(MIMEText(email.html_body, "html", "utf-8"))
        return msg

    def deliver(self, email: OutgoingEmail) -> None:
        cfg = self.config
        with smtplib.SMTP(cfg.host, cfg.port) as server:
            if cfg.use_starttls:
                server.starttls()
            # 中文注释: 内网中继可以不需要认证
            if cfg.user and cfg.password:
                server.login(cfg.user, cfg.password)
            server.sendmail(cfg.from_email, [email.to_email], self._build(email).as_string())


class ResendTransport:
    name = "resend"

    def __init__(self, config: ResendConfig):
        self.config = config
        resend.api_key = config.api_key

    def deliver(self, email: OutgoingEmail) -> None:
        payload: Dict[str, Any] = {
            "from": self.config.sender,
            "to": [email.to_email],
            "subject": email.subject,
            "html": email.html_body,
        }
        if email.text_body:
            payload["text"] = email.text_body
        resend.Emails.send(payload)


class EmailService:
    """
    模板邮件发送 + email_logs 记录。

    中文注释:
    - 通道按 SMTP -> Resend 顺序选择第一个已配置的，不做跨通道重试。
    - 发送失败只返回 False，不向业务流程抛异常。
    - 每次尝试（sent / failed / skipped）都尽力写一条 email_logs。
    """

    _SENTINEL = object()

    def __init__(
        self,
        *,
        smtp_config: SMTPConfig | None | object = _SENTINEL,
        resend_config: ResendConfig | None | object = _SENTINEL,
        supabase_client: Client | None | object = _SENTINEL,
    ):
        # 显式传 None 表示禁用该通道
        if smtp_config is self._SENTINEL:
            smtp_config = SMTPConfig.from_env()
        if resend_config is self._SENTINEL:
            resend_config = ResendConfig.from_env()

        self.transports: List[SmtpTransport | ResendTransport] = []
        if smtp_config:
            self.transports.append(SmtpTransport(smtp_config))  # type: ignore[arg-type]
        if resend_config:
            self.transports.append(ResendTransport(resend_config))  # type: ignore[arg-type]

        self._jinja = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html", "xml"]),
        )

        if supabase_client is self._SENTINEL:
            supabase_client = supabase_admin if app_config.supabase_url else None
        self._log_client = supabase_client

    def is_configured(self) -> bool:
        return bool(self.transports)

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        return self._jinja.get_template(template_name).render(**context)

    def send_email(
        self,
        *,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        if not self.transports:
            return False
        transport = self.transports[0]
        try:
            transport.deliver(OutgoingEmail(to_email, subject, html_body, text_body))
        except Exception as e:
            logger.warning("[%s] send to %s failed: %s", transport.name, to_email, e)
            return False
        return True

    def send_template_email(
        self,
        *,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
    ) -> bool:
        log = EmailLog(recipient=to_email, subject=subject, template_name=template_name, status=EmailStatus.SKIPPED)

        if not self.is_configured():
            logger.info("[Email] no provider configured, skip %s -> %s", template_name, to_email)
            self._record(log)
            return False

        try:
            html = self.render_template(template_name, context)
        except Exception as e:
            logger.warning("[Email] template %s render failed: %s", template_name, e)
            self._record(log.model_copy(update={"status": EmailStatus.FAILED, "error_message": str(e)}))
            return False

        ok = self.send_email(to_email=to_email, subject=subject, html_body=html)
        if ok:
            self._record(log.model_copy(update={"status": EmailStatus.SENT}))
        else:
            self._record(log.model_copy(update={"status": EmailStatus.FAILED, "error_message": "send failed"}))
        return ok

    def _record(self, log: EmailLog) -> None:
        if self._log_client is None:
            return
        data = log.model_dump(mode="json", exclude={"id", "created_at"})
        try:
            self._log_client.table("email_logs").insert(data).execute()
        except Exception as e:
            logger.warning("[Email] Failed to log email attempt: %s", e)
