from dataclasses import FrozenInstanceError

import pytest

from app.core import config as config_module
from app.core.security import cron_key_matches


def test_portal_config_defaults(monkeypatch):
    for key in ("PORTAL_NAME", "REVIEW_DUE_DAYS", "STORAGE_BUCKET", "FINAL_DOCUMENT_URL_TTL", "FRONTEND_BASE_URL", "REVIEW_WORKFLOW"):
        monkeypatch.delenv(key, raising=False)

    cfg = config_module.PortalConfig.from_env()

    assert cfg.review_due_days == 14
    assert cfg.storage_bucket == "manuscripts"
    assert cfg.final_document_url_ttl == 604800
    assert cfg.frontend_base_url == "http://localhost:3000"
    assert cfg.review_workflow == "approval"


def test_portal_config_overrides(monkeypatch):
    monkeypatch.setenv("REVIEW_DUE_DAYS", "21")
    monkeypatch.setenv("FRONTEND_BASE_URL", "https://portal.example.org/")
    monkeypatch.setenv("REVIEW_WORKFLOW", "DIRECT")

    cfg = config_module.PortalConfig.from_env()

    assert cfg.review_due_days == 21
    assert cfg.frontend_base_url == "https://portal.example.org"
    assert cfg.review_workflow == "direct"


def test_invalid_values_fall_back(monkeypatch):
    monkeypatch.setenv("REVIEW_DUE_DAYS", "two weeks")
    monkeypatch.setenv("REVIEW_WORKFLOW", "auto")

    cfg = config_module.PortalConfig.from_env()

    assert cfg.review_due_days == 14
    assert cfg.review_workflow == "approval"


def test_portal_config_is_immutable(portal_config):
    with pytest.raises(FrozenInstanceError):
        portal_config.review_due_days = 1  # type: ignore[misc]


def test_smtp_config_absent_without_host(monkeypatch):
    monkeypatch.delenv("SMTP_HOST", raising=False)
    assert config_module.SMTPConfig.from_env() is None


def test_smtp_config_from_env(monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_USER", "mailer@example.com")
    monkeypatch.delenv("SMTP_FROM_EMAIL", raising=False)
    monkeypatch.setenv("SMTP_USE_STARTTLS", "no")

    cfg = config_module.SMTPConfig.from_env()

    assert cfg.port == 587
    assert cfg.from_email == "mailer@example.com"
    assert cfg.use_starttls is False


def test_admin_api_key(monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", " cron-key ")
    assert config_module.get_admin_api_key() == "cron-key"

    monkeypatch.delenv("ADMIN_API_KEY")
    assert config_module.get_admin_api_key() is None


@pytest.mark.parametrize(
    "provided,expected,ok",
    [
        ("cron-key", "cron-key", True),
        ("wrong", "cron-key", False),
        (None, "cron-key", False),
        ("cron-key", None, False),
        ("", "", False),
    ],
)
def test_cron_key_matches(provided, expected, ok):
    assert cron_key_matches(provided, expected) is ok


def test_cors_origins_merge_and_dedupe(monkeypatch):
    monkeypatch.setenv("FRONTEND_ORIGIN", "https://portal.example.com/")
    monkeypatch.setenv("FRONTEND_ORIGINS", "https://portal.example.com, https://staging.example.com ,")

    cfg = config_module.AppConfig.from_env()

    assert cfg.cors_origins == ("https://portal.example.com", "https://staging.example.com")


def test_cors_origins_default_to_local_frontend(monkeypatch):
    monkeypatch.delenv("FRONTEND_ORIGIN", raising=False)
    monkeypatch.delenv("FRONTEND_ORIGINS", raising=False)
    monkeypatch.setenv("APP_ENV", "Production")

    cfg = config_module.AppConfig.from_env()

    assert cfg.cors_origins == ("http://localhost:3000",)
    assert cfg.is_production is True
