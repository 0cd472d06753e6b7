from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query

from app.core.roles import require_admin
from app.models.user import Session
from app.schemas.user import AdminCreateUserRequest, RoleChangeRequest
from app.services.user_management import UserManagementService

router = APIRouter(prefix="/admin/users", tags=["Admin User Management"])


def get_user_management_service() -> UserManagementService:
    return UserManagementService()


@router.post("", status_code=201)
async def create_user(
    background_tasks: BackgroundTasks,
    req: AdminCreateUserRequest = Body(...),
    session: Session = Depends(require_admin),
    service: UserManagementService = Depends(get_user_management_service),
):
    """
    管理员直接创建账户（邮箱已确认）
    """
    created = service.create_user(
        session,
        email=req.email,
        first_name=req.first_name,
        last_name=req.last_name,
        role=req.role,
        institution=req.institution,
        password=req.password,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": created}


@router.get("")
async def list_users(
    role: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    session: Session = Depends(require_admin),
    service: UserManagementService = Depends(get_user_management_service),
):
    return {"success": True, "data": service.list_users(session, role=role, search=search)}


@router.put("/{user_id}/role")
async def change_role(
    user_id: str,
    req: RoleChangeRequest = Body(...),
    session: Session = Depends(require_admin),
    service: UserManagementService = Depends(get_user_management_service),
):
    """
    修改账户角色（admin 不能修改/授予 super_admin）
    """
    return {"success": True, "data": service.change_role(session, user_id, req.role, req.reason)}


@router.get("/{user_id}/role-changes")
async def role_changes(
    user_id: str,
    session: Session = Depends(require_admin),
    service: UserManagementService = Depends(get_user_management_service),
):
    return {"success": True, "data": service.role_history(session, user_id)}
