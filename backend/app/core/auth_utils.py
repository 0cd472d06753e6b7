import logging
import os
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.lib.api_client import supabase

logger = logging.getLogger("portal.auth")

LOCAL_ALGORITHM = "HS256"
TOKEN_AUDIENCE = "authenticated"

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Token invalid or expired") -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _jwt_secret() -> str:
    # 中文注释: 每次读取环境变量，便于密钥轮换后无需重启即可生效
    return os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")


def _claims_to_identity(user_id: Any, email: Optional[str], token: str) -> Dict[str, Any]:
    if not user_id:
        raise _unauthorized("Invalid token payload")
    return {"id": str(user_id), "email": email, "access_token": token}


def decode_local(token: str, secret: str) -> Dict[str, Any]:
    """
    用项目 JWT Secret 本地校验 HS256 令牌（签名、过期、audience）。
    """
    payload = jwt.decode(token, secret, algorithms=[LOCAL_ALGORITHM], audience=TOKEN_AUDIENCE)
    return _claims_to_identity(payload.get("sub"), payload.get("email"), token)


def verify_remote(token: str) -> Dict[str, Any]:
    """
    非 HS256 令牌（Supabase JWT Signing Keys）交给 Auth API 校验。
    """
    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        # 中文注释: Auth 服务不可达也按鉴权失败处理，不向调用方暴露 500
        logger.warning("Remote token verification failed: %s", e)
        raise _unauthorized()

    user = getattr(response, "user", None) if response else None
    if user is None:
        raise _unauthorized("Invalid token payload")
    return _claims_to_identity(user.id, user.email, token)


def verify_token(token: str) -> Dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as e:
        logger.info("Malformed bearer token: %s", e)
        raise _unauthorized()

    secret = _jwt_secret()
    if header.get("alg") != LOCAL_ALGORITHM or not secret:
        return verify_remote(token)

    try:
        return decode_local(token, secret)
    except JWTError as e:
        logger.info("JWT verification failed: %s", e)
        raise _unauthorized()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    """
    从 Authorization: Bearer 头解析当前账户，返回 {"id", "email", "access_token"}。
    """
    if credentials is None or not (credentials.credentials or "").strip():
        raise _unauthorized("Not authenticated")
    return verify_token(credentials.credentials.strip())
