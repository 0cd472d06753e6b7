from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from main import app

from app.api.v1 import auth as auth_api
from app.api.v1 import dashboard as dashboard_api
from app.api.v1 import documents as documents_api
from app.api.v1 import internal as internal_api
from app.api.v1 import manuscripts as manuscripts_api
from app.api.v1 import reviews as reviews_api
from app.api.v1 import users as users_api
from app.api.v1.admin import users as admin_users_api
from app.core.scheduler import ReminderScheduler
from app.services.file_access_service import FileAccessService
from app.services.final_document_service import FinalDocumentService
from app.services.manuscript_service import ManuscriptService
from app.services.review_service import ReviewService
from app.services.user_management import UserManagementService
from app.services.user_service import UserService


@pytest.fixture
def services(fake_db, notifier, portal_config, clock, storage):
    """
    API 测试：所有 service 工厂都替换为基于 FakeSupabase 的实例。

    中文注释:
    - 路由层只负责参数解析与响应包装，业务断言以 fake_db 的最终状态为准。
    - auth 客户端（sign_up / reset）使用 MagicMock，可在用例中改写返回值。
    """
    common = {"client": fake_db, "notifier": notifier, "config": portal_config}
    manuscripts = ManuscriptService(reader=lambda _session: fake_db, clock=clock, **common)
    reviews = ReviewService(reader=lambda _session: fake_db, clock=clock, manuscripts=manuscripts, **common)
    documents = FinalDocumentService(clock=clock, manuscripts=manuscripts, **common)
    files = FileAccessService(client=fake_db, config=portal_config)
    auth_client = MagicMock()
    auth_client.auth.sign_up.return_value = SimpleNamespace(user=SimpleNamespace(id="new-user-id"))
    users = UserService(auth_client=auth_client, **common)
    fake_db.tables.setdefault("role_change_logs", [])
    fake_db.auth.admin.create_user.return_value = SimpleNamespace(
        user=SimpleNamespace(id="66666666-6666-4666-a666-666666666666")
    )
    user_management = UserManagementService(**common)
    scheduler = ReminderScheduler(notifier=notifier, client=fake_db, clock=clock)

    overrides = {
        manuscripts_api.get_manuscript_service: lambda: manuscripts,
        dashboard_api.get_manuscript_service: lambda: manuscripts,
        dashboard_api.get_review_service: lambda: reviews,
        reviews_api.get_review_service: lambda: reviews,
        internal_api.get_review_service: lambda: reviews,
        internal_api.get_reminder_scheduler: lambda: scheduler,
        documents_api.get_final_document_service: lambda: documents,
        documents_api.get_file_access_service: lambda: files,
        auth_api.get_user_service: lambda: users,
        users_api.get_user_service: lambda: users,
        admin_users_api.get_user_management_service: lambda: user_management,
    }
    app.dependency_overrides.update(overrides)
    yield SimpleNamespace(db=fake_db, auth_client=auth_client, notifier=notifier, storage=storage)
    for dep in overrides:
        app.dependency_overrides.pop(dep, None)
