from fastapi import APIRouter, BackgroundTasks, Body, Depends

from app.core.roles import get_current_session
from app.models.user import Session
from app.schemas.user import PasswordResetRequest, PasswordUpdate, RegisterRequest
from app.services.user_service import UserService

router = APIRouter(prefix="/auth", tags=["Auth"])


def get_user_service() -> UserService:
    return UserService()


@router.post("/register", status_code=201)
async def register(
    background_tasks: BackgroundTasks,
    req: RegisterRequest = Body(...),
    service: UserService = Depends(get_user_service),
):
    """
    注册新账户（默认角色 author，由数据库触发器写入 user_roles）
    """
    created = service.register(
        email=req.email,
        password=req.password,
        confirm_password=req.confirm_password,
        first_name=req.first_name,
        last_name=req.last_name,
        institution=req.institution,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": created}


@router.post("/password-reset")
async def request_password_reset(
    req: PasswordResetRequest = Body(...),
    service: UserService = Depends(get_user_service),
):
    # 中文注释: 无论邮箱是否存在都返回成功，避免账户探测
    service.send_password_reset_email(req.email, req.redirect_url)
    return {"success": True, "message": "If the account exists, a reset link has been sent."}


@router.post("/update-password")
async def update_password(
    req: PasswordUpdate = Body(...),
    session: Session = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    service.update_password(session, req.password, req.confirm_password)
    return {"success": True}


@router.get("/me")
async def me(session: Session = Depends(get_current_session)):
    return {
        "success": True,
        "data": {"id": session.user_id, "email": session.email, "role": session.role.value},
    }
