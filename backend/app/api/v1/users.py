from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from app.core.roles import get_current_session
from app.models.user import Session
from app.schemas.user import ProfileUpdate
from app.services.user_service import UserService

router = APIRouter(tags=["User Profile"])


def get_user_service() -> UserService:
    return UserService()


@router.get("/profile")
async def get_profile(
    session: Session = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """
    获取当前登录用户的资料（含角色）
    """
    return {"success": True, "data": service.get_profile(session)}


@router.put("/profile")
async def update_profile(
    req: ProfileUpdate = Body(...),
    session: Session = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """
    更新自己的资料（通过 Session.user_id 锁定，不能修改他人）
    """
    return {"success": True, "data": service.update_profile(session, req)}


@router.get("/users")
async def list_directory(
    role: Optional[str] = Query(None, description="按角色过滤，例如 reviewer"),
    session: Session = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """
    用户目录；非管理员看到的他人邮箱统一脱敏。
    """
    return {"success": True, "data": service.directory(session, role)}
