"""
Authentication service for user accounts and bearer-token sessions
"""
import re
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import bcrypt
from pymongo.errors import DuplicateKeyError

from ..config import settings
from ..models.schemas import UserRole, UserStatus
from ..utils.logging import logger
from ..utils.mongo import mongo_manager, serialize_for_json

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


class AuthService:
    """Service for user registration, login and session management"""

    @property
    def session_timeout(self) -> timedelta:
        return timedelta(minutes=settings.SESSION_TIMEOUT_MINUTES)

    def register_user(
        self,
        name: str,
        email: str,
        password: str,
        role: str = UserRole.user.value,
        organization: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Register a new user

        Raises:
            ValueError: If the input is invalid or the email already exists
        """
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name:
            raise ValueError("Name is required")
        if not EMAIL_PATTERN.match(email):
            raise ValueError("A valid email address is required")
        self._check_password(password)

        user = {
            "name": name,
            "email": email,
            "passwordHash": self._hash_password(password),
            "role": role,
            "organization": organization.strip() if organization else None,
            "phone": phone.strip() if phone else None,
            "status": UserStatus.active.value,
            "isVerified": False,
            "authProvider": "local",
            "createdAt": datetime.utcnow(),
            "lastLogin": None,
        }
        try:
            user["_id"] = mongo_manager.users.insert_one(user).inserted_id
        except DuplicateKeyError:
            raise ValueError(f"Email '{email}' is already registered")

        logger.log_step("user_registered", {"email": email, "role": role})
        return user

    def authenticate(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Authenticate a user by email and password

        Returns:
            User document if the credentials match, None otherwise

        Raises:
            PermissionError: If the account is suspended
        """
        email = (email or "").strip().lower()
        user = mongo_manager.users.find_one({"email": email})

        if not user or not user.get("passwordHash"):
            logger.log_step("authentication_failed", {"email": email, "reason": "unknown_user"})
            return None

        if not self._verify_password(password, user["passwordHash"]):
            logger.log_step("authentication_failed", {"email": email, "reason": "invalid_password"})
            return None

        if user.get("status") == UserStatus.suspended.value:
            logger.log_step("authentication_failed", {"email": email, "reason": "suspended"})
            raise PermissionError("Account is suspended")

        now = datetime.utcnow()
        mongo_manager.users.update_one({"_id": user["_id"]}, {"$set": {"lastLogin": now}})
        user["lastLogin"] = now
        logger.log_step("user_authenticated", {"email": email})
        return user

    def create_session(self, user: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new session token for a user"""
        now = datetime.utcnow()
        session = {
            "token": secrets.token_urlsafe(32),
            "userId": str(user["_id"]),
            "createdAt": now,
            "lastActivity": now,
        }
        mongo_manager.sessions.insert_one(session)
        logger.log_step("session_created", {"user_id": session["userId"]})
        return session

    def validate_session(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Resolve a token to its user, sliding the inactivity window forward.

        Sessions idle for longer than the timeout are deleted.
        """
        if not token:
            return None

        session = mongo_manager.sessions.find_one({"token": token})
        if not session:
            return None

        now = datetime.utcnow()
        if now - session["lastActivity"] > self.session_timeout:
            mongo_manager.sessions.delete_one({"_id": session["_id"]})
            logger.log_step("session_expired", {"user_id": session["userId"]})
            return None

        user = mongo_manager.get_document(settings.USERS_COLLECTION, session["userId"])
        if not user or user.get("status") != UserStatus.active.value:
            mongo_manager.sessions.delete_one({"_id": session["_id"]})
            return None

        mongo_manager.sessions.update_one({"_id": session["_id"]}, {"$set": {"lastActivity": now}})
        return user

    def logout(self, token: str) -> bool:
        """Invalidate a session"""
        result = mongo_manager.sessions.delete_one({"token": token})
        return result.deleted_count > 0

    def logout_all_user_sessions(self, user_id: str) -> int:
        result = mongo_manager.sessions.delete_many({"userId": user_id})
        logger.log_step("user_sessions_invalidated", {"user_id": user_id, "count": result.deleted_count})
        return result.deleted_count

    @staticmethod
    def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
        """User document safe to return to clients"""
        data = {key: value for key, value in user.items() if key not in ("passwordHash", "_id")}
        data["id"] = str(user["_id"])
        return serialize_for_json(data)

    @staticmethod
    def _check_password(password: str):
        if not password or len(password) < settings.MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    @staticmethod
    def _hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def _verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False


auth_service = AuthService()
