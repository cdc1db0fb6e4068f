from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from ..config import settings
from ..models.schemas import LoginRequest, RegisterRequest
from ..services.auth_service import auth_service
from ..utils.logging import logger
from .deps import get_bearer_token, get_current_user

router = APIRouter(prefix="/api/auth", tags=["Auth"])


def _session_payload(user: Dict[str, Any]) -> Dict[str, Any]:
    session = auth_service.create_session(user)
    return {
        "token": session["token"],
        "expiresInMinutes": settings.SESSION_TIMEOUT_MINUTES,
        "user": auth_service.public_user(user),
    }


@router.post("/register", status_code=201)
async def register(payload: RegisterRequest):
    try:
        user = auth_service.register_user(
            name=payload.name,
            email=payload.email,
            password=payload.password,
            role=payload.role,
            organization=payload.organization,
            phone=payload.phone,
        )
    except ValueError as ve:
        logger.log_error("registration_validation_error", {"error": str(ve)})
        raise HTTPException(status_code=400, detail=str(ve))

    return {"success": True, "message": "Registration successful", "data": _session_payload(user)}


@router.post("/login")
async def login(payload: LoginRequest, request: Request):
    logger.log_step("login_request_received", {
        "client": request.client.host if request.client else "unknown"
    })
    try:
        user = auth_service.authenticate(payload.email, payload.password)
    except PermissionError as pe:
        raise HTTPException(status_code=403, detail=str(pe))

    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")

    return {"success": True, "message": "Login successful", "data": _session_payload(user)}


@router.post("/logout")
async def logout(token: Optional[str] = Depends(get_bearer_token)):
    if not token or not auth_service.logout(token):
        raise HTTPException(status_code=401, detail="Not logged in")
    return {"success": True, "message": "Logged out", "data": None}


@router.get("/me")
async def me(user: Dict[str, Any] = Depends(get_current_user)):
    return {"success": True, "message": None, "data": auth_service.public_user(user)}
