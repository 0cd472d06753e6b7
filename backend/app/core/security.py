import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException

from app.core.config import get_admin_api_key

logger = logging.getLogger("portal.internal")

CRON_KEY_HEADER = "X-Admin-Key"


def cron_key_matches(provided: Optional[str], expected: Optional[str]) -> bool:
    """
    未配置 ADMIN_API_KEY 时一律不匹配，内部接口保持关闭。
    """
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def require_cron_key(
    x_admin_key: Optional[str] = Header(default=None, alias=CRON_KEY_HEADER),
) -> None:
    """
    内部 cron 接口的共享密钥校验（与用户 JWT 无关）。
    """
    if cron_key_matches(x_admin_key, get_admin_api_key()):
        return
    logger.warning("Rejected internal cron call (key %s)", "missing" if not x_admin_key else "mismatch")
    raise HTTPException(status_code=401, detail="Invalid admin key")
