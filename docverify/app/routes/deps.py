"""Shared route dependencies: bearer-token auth, role guards and rate limiting."""

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import settings
from ..models.schemas import UserRole
from ..services.auth_service import auth_service
from ..services.cache_service import cache_service
from ..utils.logging import logger

bearer_scheme = HTTPBearer(auto_error=False)

ISSUER_ROLES = (UserRole.user.value, UserRole.institution.value, UserRole.admin.value)


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    return credentials.credentials if credentials else None


def get_current_user(token: Optional[str] = Depends(get_bearer_token)) -> Dict[str, Any]:
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    user = auth_service.validate_session(token)
    if not user:
        raise HTTPException(status_code=401, detail="Session expired or invalid")
    return user


def require_roles(*roles: str):
    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            logger.log_step("access_denied", {"user_id": str(user["_id"]), "role": user.get("role")})
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


require_issuer = require_roles(*ISSUER_ROLES)
require_admin = require_roles(UserRole.admin.value)


def verification_rate_limit(request: Request, response: Response):
    identifier = request.client.host if request.client else "unknown"
    limit = cache_service.check_rate_limit(
        identifier,
        "verify",
        settings.VERIFY_RATE_LIMIT,
        settings.VERIFY_RATE_WINDOW_SECONDS,
    )
    headers = {
        "X-RateLimit-Limit": str(limit["total"]),
        "X-RateLimit-Remaining": str(limit["remaining"]),
        "X-RateLimit-Reset": str(limit["reset_in"]),
    }
    if not limit["allowed"]:
        headers["Retry-After"] = str(limit["reset_in"])
        raise HTTPException(status_code=429, detail="Too many verification requests", headers=headers)
    response.headers.update(headers)
