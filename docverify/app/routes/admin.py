from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..models.schemas import UserRole, UserStatus, UserUpdateRequest
from ..services.admin_service import admin_service
from .deps import require_admin

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/users")
async def list_users(
    role: Optional[UserRole] = None,
    status: Optional[UserStatus] = None,
    admin: Dict[str, Any] = Depends(require_admin),
):
    users = admin_service.list_users(
        role=role.value if role else None,
        status=status.value if status else None,
    )
    return {"success": True, "message": f"{len(users)} user(s)", "data": users}


@router.patch("/users/{user_id}")
async def update_user(
    user_id: str,
    payload: UserUpdateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
):
    try:
        user = admin_service.update_user(
            user_id,
            admin,
            role=payload.role.value if payload.role else None,
            status=payload.status.value if payload.status else None,
        )
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "message": "User updated", "data": user}


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    try:
        deleted = admin_service.delete_user(user_id, admin)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    if not deleted:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "message": "User deleted", "data": None}


@router.get("/stats")
async def system_stats(admin: Dict[str, Any] = Depends(require_admin)):
    return {"success": True, "message": None, "data": admin_service.get_stats()}
