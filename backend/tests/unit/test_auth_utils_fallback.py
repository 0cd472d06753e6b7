import base64
import json
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from app.core import auth_utils
from tests.conftest import AUTHOR_ID, generate_test_token


def _unsigned_token(header: dict, payload: dict) -> str:
    """
    只需三段结构即可让 jose 读出 header；签名不会被本地校验。
    """

    def b64url(raw: bytes) -> str:
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("utf-8")

    def encode(obj: dict) -> str:
        return b64url(json.dumps(obj, separators=(",", ":")).encode("utf-8"))

    return f"{encode(header)}.{encode(payload)}.{b64url(b'sig')}"


def _rs256_token() -> str:
    return _unsigned_token(
        {"alg": "RS256", "typ": "JWT"},
        {"sub": "user-1", "email": "u@example.com", "aud": "authenticated"},
    )


def _creds(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def _fake_auth(get_user):
    return SimpleNamespace(auth=SimpleNamespace(get_user=get_user))


@pytest.mark.asyncio
async def test_hs256_token_decoded_locally(monkeypatch, auth_token):
    monkeypatch.delenv("SUPABASE_JWT_SECRET", raising=False)

    user = await auth_utils.get_current_user(_creds(auth_token))

    assert user == {"id": AUTHOR_ID, "email": "test@example.com", "access_token": auth_token}


@pytest.mark.asyncio
async def test_missing_credentials_rejected():
    with pytest.raises(HTTPException) as exc:
        await auth_utils.get_current_user(None)
    assert exc.value.status_code == 401
    assert exc.value.headers == {"WWW-Authenticate": "Bearer"}


@pytest.mark.asyncio
async def test_expired_token_rejected(monkeypatch, expired_token):
    monkeypatch.delenv("SUPABASE_JWT_SECRET", raising=False)

    with pytest.raises(HTTPException) as exc:
        await auth_utils.get_current_user(_creds(expired_token))
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_token_signed_with_rotated_secret_rejected(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", "server-secret")
    token = generate_test_token()

    monkeypatch.setenv("SUPABASE_JWT_SECRET", "rotated-secret")
    with pytest.raises(HTTPException) as exc:
        await auth_utils.get_current_user(_creds(token))
    assert exc.value.status_code == 401


def test_malformed_token_rejected():
    with pytest.raises(HTTPException) as exc:
        auth_utils.verify_token("not-a-jwt")
    assert exc.value.status_code == 401


def test_missing_sub_rejected():
    token = jwt.encode({"email": "u@example.com", "aud": "authenticated"}, "local-secret", algorithm="HS256")

    with pytest.raises(HTTPException) as exc:
        auth_utils.decode_local(token, "local-secret")
    assert exc.value.detail == "Invalid token payload"


def test_signing_key_token_verified_remotely(monkeypatch):
    user = SimpleNamespace(id="user-1", email="u@example.com")
    monkeypatch.setattr(auth_utils, "supabase", _fake_auth(lambda _token: SimpleNamespace(user=user)))

    identity = auth_utils.verify_token(_rs256_token())

    assert identity["id"] == "user-1"
    assert identity["email"] == "u@example.com"


def test_remote_verification_failure_is_401(monkeypatch):
    def boom(_token):
        raise RuntimeError("auth service down")

    monkeypatch.setattr(auth_utils, "supabase", _fake_auth(boom))

    with pytest.raises(HTTPException) as exc:
        auth_utils.verify_token(_rs256_token())
    assert exc.value.status_code == 401


def test_remote_verification_without_user_is_401(monkeypatch):
    monkeypatch.setattr(auth_utils, "supabase", _fake_auth(lambda _token: SimpleNamespace(user=None)))

    with pytest.raises(HTTPException) as exc:
        auth_utils.verify_token(_rs256_token())
    assert exc.value.detail == "Invalid token payload"
