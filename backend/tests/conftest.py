import os
import sys
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import MagicMock

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Import app from the correct location
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from main import app

from app.core.config import PortalConfig
from app.core.roles import get_current_session
from app.models.user import Role, Session
from app.services import storage_service
from app.services.notification_service import NotificationDispatcher
from app.services.storage_service import SignedUrl
from tests.utils.supabase_stub import FakeSupabase, assign_reviewers_rpc

# === 全局测试配置 ===
# 中文注释:
# 1. 单元测试不连真实 Supabase：FakeSupabase 作为 client 注入到各 service。
# 2. API 测试通过 dependency_overrides 注入 Session 与 service，不走 JWT。
# 3. JWT 令牌生成仅用于 auth_utils 的单测。

AUTHOR_ID = "11111111-1111-4111-a111-111111111111"
REVIEWER_ID = "22222222-2222-4222-a222-222222222222"
REVIEWER2_ID = "33333333-3333-4333-a333-333333333333"
ADMIN_ID = "44444444-4444-4444-a444-444444444444"
SUPER_ADMIN_ID = "55555555-5555-4555-a555-555555555555"

FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def make_session(role: Role, user_id: str | None = None, email: str | None = None) -> Session:
    default_ids = {
        Role.AUTHOR: AUTHOR_ID,
        Role.REVIEWER: REVIEWER_ID,
        Role.ADMIN: ADMIN_ID,
        Role.SUPER_ADMIN: SUPER_ADMIN_ID,
    }
    uid = user_id or default_ids[role]
    return Session(user_id=uid, email=email or f"{role.value}@example.com", role=role)


@pytest.fixture
def author_session() -> Session:
    return make_session(Role.AUTHOR)


@pytest.fixture
def reviewer_session() -> Session:
    return make_session(Role.REVIEWER)


@pytest.fixture
def admin_session() -> Session:
    return make_session(Role.ADMIN)


@pytest.fixture
def super_admin_session() -> Session:
    return make_session(Role.SUPER_ADMIN)


@pytest.fixture
def portal_config() -> PortalConfig:
    return PortalConfig(
        portal_name="Test Portal",
        review_due_days=14,
        storage_bucket="manuscripts",
        final_document_url_ttl=7 * 24 * 60 * 60,
        frontend_base_url="http://portal.test",
        review_workflow="approval",
    )


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def fake_db() -> FakeSupabase:
    db = FakeSupabase(
        {
            "profiles": [
                {"user_id": AUTHOR_ID, "email": "ada@example.com", "first_name": "Ada", "last_name": "Lovelace"},
                {"user_id": REVIEWER_ID, "email": "rev@example.com", "first_name": "Rene", "last_name": "Viewer"},
                {"user_id": REVIEWER2_ID, "email": "rev2@example.com", "first_name": "Rita", "last_name": "Second"},
                {"user_id": ADMIN_ID, "email": "admin@example.com", "first_name": "Ann", "last_name": "Admin"},
                {"user_id": SUPER_ADMIN_ID, "email": "root@example.com", "first_name": "Sue", "last_name": "Root"},
            ],
            "user_roles": [
                {"user_id": AUTHOR_ID, "role": "author"},
                {"user_id": REVIEWER_ID, "role": "reviewer"},
                {"user_id": REVIEWER2_ID, "role": "reviewer"},
                {"user_id": ADMIN_ID, "role": "admin"},
                {"user_id": SUPER_ADMIN_ID, "role": "super_admin"},
            ],
            "manuscripts": [],
            "reviews": [],
            "final_documents": [],
        }
    )
    db.register_rpc("assign_reviewers", assign_reviewers_rpc)
    return db


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(spec=NotificationDispatcher)


@pytest.fixture
def storage(monkeypatch):
    """
    替换 storage_service 的对象存储调用，记录上传/删除/签名的路径。
    """
    recorded = {"uploads": [], "removed": [], "signed": [], "objects": {}}

    def _upload(*, bucket, path, content, content_type, upsert=False):
        recorded["uploads"].append(path)
        recorded["objects"][path] = content

    def _remove(*, bucket, paths):
        recorded["removed"].extend(p for p in paths if p)

    def _signed(*, bucket, path, expires_in):
        recorded["signed"].append((path, expires_in))
        return SignedUrl(url=f"https://storage.test/{path}?token=x", expires_in=expires_in)

    def _download(*, bucket, path):
        if path not in recorded["objects"]:
            raise RuntimeError("Object not found")
        return recorded["objects"][path]

    monkeypatch.setattr(storage_service, "upload_bytes", _upload)
    monkeypatch.setattr(storage_service, "remove_objects", _remove)
    monkeypatch.setattr(storage_service, "create_signed_url", _signed)
    monkeypatch.setattr(storage_service, "download_bytes", _download)
    return recorded


@pytest_asyncio.fixture
async def client() -> AsyncGenerator:
    """
    提供一个模拟的异步测试客户端
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def login():
    """
    以指定 Session 调用 API：login(session)
    """

    def _login(session: Session) -> None:
        app.dependency_overrides[get_current_session] = lambda: session

    yield _login
    app.dependency_overrides.pop(get_current_session, None)


def generate_test_token(user_id: str = AUTHOR_ID, email: str = "test@example.com", expires_in: timedelta = timedelta(hours=1)):
    """
    生成用于测试的 JWT 令牌（HS256，与 SUPABASE_JWT_SECRET 一致）
    """
    secret = os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")
    now = datetime.now(timezone.utc)

    payload = {
        "sub": user_id,
        "email": email,
        "aud": "authenticated",
        "exp": now + expires_in,
        "iat": now,
        "role": "authenticated",
    }

    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def auth_token():
    return generate_test_token()


@pytest.fixture
def expired_token():
    return generate_test_token(expires_in=timedelta(hours=-1))
