from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING

from ..config import settings
from ..models.schemas import CertificateStatus, ExtractionStatus, UserRole, UserStatus
from ..utils.logging import logger
from ..utils.mongo import mongo_manager
from .auth_service import auth_service
from .cache_service import cache_service

STATS_CACHE_KEY = "admin_stats"


class AdminService:
    """User management and system-wide statistics"""

    def list_users(self, role: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        criteria = {}
        if role:
            criteria["role"] = role
        if status:
            criteria["status"] = status
        users = mongo_manager.list_documents(
            settings.USERS_COLLECTION,
            criteria,
            projection={"passwordHash": 0},
            sort=[("createdAt", DESCENDING)],
        )
        return [auth_service.public_user(user) for user in users]

    def update_user(
        self,
        user_id: str,
        acting_user: Dict[str, Any],
        role: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        if not ObjectId.is_valid(user_id):
            return None
        if str(acting_user["_id"]) == user_id and (role or status):
            raise ValueError("Admins cannot change their own role or status")

        update: Dict[str, Any] = {}
        if role:
            update["role"] = role
        if status:
            update["status"] = status
        if not update:
            raise ValueError("Nothing to update")

        user = mongo_manager.update_by_field(settings.USERS_COLLECTION, "_id", ObjectId(user_id), update)
        if not user:
            return None
        if status == UserStatus.suspended.value:
            auth_service.logout_all_user_sessions(user_id)

        cache_service.invalidate_analytics(STATS_CACHE_KEY)
        logger.log_step("user_updated", {"user_id": user_id, "changes": update, "by": str(acting_user["_id"])})
        return auth_service.public_user(user)

    def delete_user(self, user_id: str, acting_user: Dict[str, Any]) -> bool:
        if str(acting_user["_id"]) == user_id:
            raise ValueError("You cannot delete your own account")
        if not ObjectId.is_valid(user_id):
            return False

        deleted = mongo_manager.delete_by_field(settings.USERS_COLLECTION, "_id", ObjectId(user_id))
        if deleted:
            auth_service.logout_all_user_sessions(user_id)
            cache_service.invalidate_analytics(STATS_CACHE_KEY)
            logger.log_step("user_deleted", {"user_id": user_id, "by": str(acting_user["_id"])})
        return deleted

    def get_stats(self) -> Dict[str, Any]:
        cached = cache_service.get_cached_analytics(STATS_CACHE_KEY)
        if cached:
            return cached

        certificates = mongo_manager.certificates
        totals = list(certificates.aggregate([
            {"$group": {
                "_id": None,
                "verifications": {"$sum": "$verificationCount"},
                "fullAccess": {"$sum": "$fullAccessCount"},
                "downloads": {"$sum": "$downloadCount"},
            }}
        ]))
        totals = totals[0] if totals else {}

        stats = {
            "users": {
                "total": mongo_manager.count(settings.USERS_COLLECTION),
                "byRole": {
                    role.value: mongo_manager.count(settings.USERS_COLLECTION, {"role": role.value})
                    for role in UserRole
                },
                "suspended": mongo_manager.count(
                    settings.USERS_COLLECTION, {"status": UserStatus.suspended.value}
                ),
            },
            "certificates": {
                "total": mongo_manager.count(settings.CERTIFICATES_COLLECTION),
                "byStatus": {
                    status.value: mongo_manager.count(settings.CERTIFICATES_COLLECTION, {"status": status.value})
                    for status in CertificateStatus
                },
                "byExtractionStatus": {
                    status.value: mongo_manager.count(
                        settings.CERTIFICATES_COLLECTION, {"extractionStatus": status.value}
                    )
                    for status in ExtractionStatus
                },
            },
            "activity": {
                "verifications": totals.get("verifications", 0),
                "fullAccess": totals.get("fullAccess", 0),
                "downloads": totals.get("downloads", 0),
            },
            "batches": mongo_manager.count(settings.BATCHES_COLLECTION),
        }
        cache_service.cache_analytics(STATS_CACHE_KEY, stats)
        return stats


admin_service = AdminService()
