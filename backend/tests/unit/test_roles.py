import pytest

from app.core import roles as roles_mod
from app.core.errors import PermissionDenied
from app.models.user import Role, normalize_role
from tests.conftest import make_session
from tests.utils.supabase_stub import FakeSupabase

USER_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def admin_db(monkeypatch):
    db = FakeSupabase({"user_roles": []})
    monkeypatch.setattr(roles_mod, "supabase_admin", db)
    return db


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("author", Role.AUTHOR),
        (" Reviewer ", Role.REVIEWER),
        ("super_admin", Role.SUPER_ADMIN),
        ("editor", Role.ADMIN),
        ("", None),
        ("owner", None),
        (None, None),
    ],
)
def test_normalize_role(raw, expected):
    assert normalize_role(raw) is expected


def test_load_role_reads_single_role(admin_db, monkeypatch):
    monkeypatch.delenv("ADMIN_EMAILS", raising=False)
    admin_db.tables["user_roles"].append({"user_id": USER_ID, "role": "reviewer"})

    assert roles_mod.load_role(USER_ID, "r@example.com") is Role.REVIEWER
    assert admin_db.writes() == []


def test_load_role_creates_default_author(admin_db, monkeypatch):
    monkeypatch.delenv("ADMIN_EMAILS", raising=False)

    assert roles_mod.load_role(USER_ID, "new@example.com") is Role.AUTHOR
    assert [(r["user_id"], r["role"]) for r in admin_db.rows("user_roles")] == [(USER_ID, "author")]


def test_load_role_admin_email_elevates(admin_db, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAILS", "Boss@Example.com, other@example.com")
    admin_db.tables["user_roles"].append({"user_id": USER_ID, "role": "author"})

    assert roles_mod.load_role(USER_ID, "boss@example.com") is Role.ADMIN
    assert admin_db.rows("user_roles")[0]["role"] == "admin"


def test_load_role_admin_email_keeps_super_admin(admin_db, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAILS", "boss@example.com")
    admin_db.tables["user_roles"].append({"user_id": USER_ID, "role": "super_admin"})

    assert roles_mod.load_role(USER_ID, "boss@example.com") is Role.SUPER_ADMIN


@pytest.mark.asyncio
async def test_get_current_session_builds_explicit_context(admin_db, monkeypatch):
    monkeypatch.delenv("ADMIN_EMAILS", raising=False)
    admin_db.tables["user_roles"].append({"user_id": USER_ID, "role": "reviewer"})

    session = await roles_mod.get_current_session(
        {"id": USER_ID, "email": "r@example.com", "access_token": "tok"}
    )

    assert session.user_id == USER_ID
    assert session.role is Role.REVIEWER
    assert session.access_token == "tok"
    assert session.is_admin is False


@pytest.mark.asyncio
async def test_get_current_session_falls_back_to_author_on_error(admin_db, monkeypatch):
    monkeypatch.delenv("ADMIN_EMAILS", raising=False)
    admin_db.fail_on("user_roles", "select", RuntimeError("boom"))

    session = await roles_mod.get_current_session({"id": USER_ID, "email": "x@example.com"})

    assert session.role is Role.AUTHOR


@pytest.mark.asyncio
async def test_require_roles_allows_and_denies():
    dep = roles_mod.require_roles([Role.REVIEWER])
    reviewer = make_session(Role.REVIEWER)
    assert await dep(session=reviewer) is reviewer

    with pytest.raises(PermissionDenied) as exc:
        await dep(session=make_session(Role.AUTHOR))
    assert exc.value.status_code == 403
    assert exc.value.error_type == "unauthorized"


@pytest.mark.asyncio
async def test_require_admin_accepts_super_admin():
    session = make_session(Role.SUPER_ADMIN)
    assert await roles_mod.require_admin(session=session) is session


@pytest.mark.asyncio
@pytest.mark.parametrize("role", [Role.ADMIN, Role.SUPER_ADMIN, Role.AUTHOR])
async def test_require_reviewer_is_reviewer_only(role):
    assert await roles_mod.require_reviewer(session=make_session(Role.REVIEWER))
    with pytest.raises(PermissionDenied):
        await roles_mod.require_reviewer(session=make_session(role))
