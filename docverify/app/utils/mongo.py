"""MongoDB utility for the DocVerify API"""

from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import OperationFailure

from .logging import logger
from ..config import settings


def serialize_for_json(obj):
    """Convert MongoDB objects to JSON serializable format"""
    if isinstance(obj, ObjectId):
        return str(obj)
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {k: serialize_for_json(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [serialize_for_json(item) for item in obj]
    else:
        return obj


class MongoDBManager:
    """MongoDB manager for certificates, users, sessions and batches"""

    def __init__(self):
        self.client: Optional[MongoClient] = None
        self.db: Optional[Database] = None
        self._connected = False

    def connect(self, client: Optional[MongoClient] = None):
        """Connect to MongoDB, or bind an already constructed client"""
        try:
            uri = settings.MONGODB_URI
            database_name = settings.DATABASE_NAME

            logger.log_step("mongodb_connection_attempt", {
                "uri": uri if client is None else "bound-client",
                "database": database_name
            })

            self.client = client or MongoClient(uri, serverSelectionTimeoutMS=5000)
            self.db = self.client[database_name]

            # Test connection
            self.client.admin.command('ping')
            self._connected = True
            self.ensure_indexes()

            logger.log_step("mongodb_connected", {"status": "success"})

        except Exception as e:
            self._connected = False
            logger.log_error("mongodb_connection_failed", {"error": str(e)})
            raise

    @property
    def is_connected(self) -> bool:
        return self._connected

    def collection(self, name: str) -> Collection:
        """Return a collection, connecting on first use"""
        if not self._connected:
            self.connect()
        return self.db[name]

    @property
    def certificates(self) -> Collection:
        return self.collection(settings.CERTIFICATES_COLLECTION)

    @property
    def users(self) -> Collection:
        return self.collection(settings.USERS_COLLECTION)

    @property
    def sessions(self) -> Collection:
        return self.collection(settings.SESSIONS_COLLECTION)

    @property
    def batches(self) -> Collection:
        return self.collection(settings.BATCHES_COLLECTION)

    def ensure_indexes(self):
        """Create the unique and lookup indexes the API relies on"""
        self.db[settings.CERTIFICATES_COLLECTION].create_index("certificateId", unique=True)
        self.db[settings.CERTIFICATES_COLLECTION].create_index([("issuedBy", ASCENDING), ("createdAt", DESCENDING)])
        self.db[settings.CERTIFICATES_COLLECTION].create_index("batchId")
        self.db[settings.USERS_COLLECTION].create_index("email", unique=True)
        self.db[settings.SESSIONS_COLLECTION].create_index("token", unique=True)
        self.db[settings.BATCHES_COLLECTION].create_index("batchId", unique=True)
        self._ensure_session_ttl()

    def _ensure_session_ttl(self):
        """Let MongoDB drop sessions idle for longer than the timeout"""
        ttl_seconds = settings.SESSION_TIMEOUT_MINUTES * 60
        try:
            self.db[settings.SESSIONS_COLLECTION].create_index(
                "lastActivity", name="session_ttl", expireAfterSeconds=ttl_seconds
            )
        except OperationFailure:
            # Timeout changed since the index was built
            self.db.command(
                "collMod",
                settings.SESSIONS_COLLECTION,
                index={"name": "session_ttl", "expireAfterSeconds": ttl_seconds},
            )

    def save_document(self, collection_name: str, document_data: Dict[str, Any]) -> str:
        """Save document to a collection"""
        try:
            result = self.collection(collection_name).insert_one(document_data)
            return str(result.inserted_id)
        except Exception as e:
            logger.log_error("mongodb_save_failed", {"error": str(e), "collection": collection_name})
            raise

    def save_many(self, collection_name: str, documents: List[Dict[str, Any]]) -> List[str]:
        """Save several documents in one round trip"""
        try:
            result = self.collection(collection_name).insert_many(documents)
            return [str(inserted) for inserted in result.inserted_ids]
        except Exception as e:
            logger.log_error("mongodb_save_many_failed", {"error": str(e), "collection": collection_name})
            raise

    def get_document(self, collection_name: str, document_id: str) -> Optional[Dict[str, Any]]:
        """Get document by _id"""
        if not ObjectId.is_valid(document_id):
            return None
        try:
            return self.collection(collection_name).find_one({"_id": ObjectId(document_id)})
        except Exception as e:
            logger.log_error("mongodb_get_failed", {"error": str(e), "collection": collection_name})
            raise

    def get_document_by_field(
        self,
        collection_name: str,
        field_name: str,
        field_value: Any,
        projection: Optional[Dict[str, int]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Get document by any field"""
        try:
            return self.collection(collection_name).find_one({field_name: field_value}, projection)
        except Exception as e:
            logger.log_error("mongodb_get_by_field_failed", {
                "error": str(e),
                "collection": collection_name,
                "field": field_name
            })
            raise

    def update_by_field(
        self,
        collection_name: str,
        field_name: str,
        field_value: Any,
        update_data: Dict[str, Any],
        increments: Optional[Dict[str, int]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Apply $set (and optionally $inc) and return the updated document"""
        update: Dict[str, Any] = {}
        if update_data:
            update["$set"] = update_data
        if increments:
            update["$inc"] = increments
        if not update:
            return self.get_document_by_field(collection_name, field_name, field_value)
        try:
            return self.collection(collection_name).find_one_and_update(
                {field_name: field_value},
                update,
                return_document=ReturnDocument.AFTER,
            )
        except Exception as e:
            logger.log_error("mongodb_update_failed", {
                "error": str(e),
                "collection": collection_name,
                "field": field_name
            })
            raise

    def list_documents(
        self,
        collection_name: str,
        filter_criteria: Dict[str, Any] = None,
        projection: Optional[Dict[str, int]] = None,
        sort: Optional[List[Tuple[str, int]]] = None,
        limit: int = 0,
    ) -> list:
        """List documents from a collection"""
        try:
            if filter_criteria is None:
                filter_criteria = {}
            cursor = self.collection(collection_name).find(filter_criteria, projection)
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)
        except Exception as e:
            logger.log_error("mongodb_list_failed", {"error": str(e), "collection": collection_name})
            raise

    def delete_by_field(self, collection_name: str, field_name: str, field_value: Any) -> bool:
        try:
            result = self.collection(collection_name).delete_one({field_name: field_value})
            return result.deleted_count > 0
        except Exception as e:
            logger.log_error("mongodb_delete_failed", {"error": str(e), "collection": collection_name})
            raise

    def delete_many_by_field(self, collection_name: str, field_name: str, field_value: Any) -> int:
        try:
            return self.collection(collection_name).delete_many({field_name: field_value}).deleted_count
        except Exception as e:
            logger.log_error("mongodb_delete_many_failed", {"error": str(e), "collection": collection_name})
            raise

    def count(self, collection_name: str, filter_criteria: Dict[str, Any] = None) -> int:
        return self.collection(collection_name).count_documents(filter_criteria or {})

    def close(self):
        """Close MongoDB connection"""
        if self.client:
            self.client.close()
            self._connected = False
            logger.log_step("mongodb_connection_closed")


# Global MongoDB manager instance
mongo_manager = MongoDBManager()
