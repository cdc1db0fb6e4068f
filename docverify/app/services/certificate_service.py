import base64
import hashlib
import hmac
import io
import json
import secrets
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import qrcode
from fastapi import UploadFile
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from ..config import settings
from ..models.schemas import CertificateStatus, ExtractionStatus, UserRole
from ..utils.logging import logger
from ..utils.mongo import mongo_manager, serialize_for_json
from .blockchain_service import BlockchainUnavailableError, blockchain_service
from .cache_service import cache_service
from .extraction_service import document_extractor
from .storage_service import storage_service

LIST_PROJECTION = {"qrCode": 0, "filePath": 0, "accessKey": 0, "fullDetails": 0}
BASIC_FIELDS = (
    "certificateId",
    "title",
    "documentHash",
    "status",
    "createdAt",
    "extractionStatus",
    "verificationSummary",
    "primaryDetails",
    "batchId",
)
FULL_FIELDS = (
    "qrCode",
    "fullDetails",
    "recipientName",
    "recipientEmail",
    "originalFilename",
    "fileType",
    "fileSize",
    "verificationCount",
    "fullAccessCount",
    "downloadCount",
    "lastVerifiedAt",
    "blockchain",
)
MAX_ID_ATTEMPTS = 5


def generate_certificate_id() -> str:
    return f"DOC-{str(uuid.uuid4()).split('-')[0].upper()}"


def generate_access_key() -> str:
    return secrets.token_hex(8).upper()


def generate_qr_code(certificate_id: str, access_key: str) -> str:
    """PNG data URL encoding the id and access key for scan-to-verify."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(json.dumps({"certificateId": certificate_id, "accessKey": access_key}, separators=(",", ":")))
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def access_key_matches(candidate: Optional[str], access_key: str) -> bool:
    if not candidate:
        return False
    return hmac.compare_digest(candidate.strip().upper().encode(), access_key.encode())


def is_admin(user: Dict[str, Any]) -> bool:
    return user.get("role") == UserRole.admin.value


def can_manage(user: Dict[str, Any], certificate: Dict[str, Any]) -> bool:
    return is_admin(user) or certificate.get("issuedBy") == str(user["_id"])


def _public(certificate: Dict[str, Any]) -> Dict[str, Any]:
    return serialize_for_json({key: value for key, value in certificate.items() if key != "_id"})


class CertificateService:
    """Issues certificates and serves tiered verification."""

    def new_record(
        self,
        title: Optional[str],
        document_hash: str,
        issued_by: str,
        **extra: Any,
    ) -> Dict[str, Any]:
        """Build a certificate document with a fresh id, access key and QR code."""
        certificate_id = generate_certificate_id()
        access_key = generate_access_key()
        record = {
            "certificateId": certificate_id,
            "title": (title or "").strip() or "Untitled Certificate",
            "documentHash": document_hash,
            "accessKey": access_key,
            "qrCode": generate_qr_code(certificate_id, access_key),
            "issuedBy": issued_by,
            "recipientName": None,
            "recipientEmail": None,
            "status": CertificateStatus.active.value,
            "extractionStatus": ExtractionStatus.pending.value,
            "extractionError": None,
            "primaryDetails": None,
            "fullDetails": None,
            "verificationSummary": None,
            "verificationCount": 0,
            "fullAccessCount": 0,
            "downloadCount": 0,
            "lastVerifiedAt": None,
            "batchId": None,
            "blockchain": None,
            "createdAt": datetime.utcnow(),
        }
        record.update(extra)
        return record

    def remint(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Give a record a fresh id, access key and QR code."""
        record["certificateId"] = generate_certificate_id()
        record["accessKey"] = generate_access_key()
        record["qrCode"] = generate_qr_code(record["certificateId"], record["accessKey"])
        return record

    def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert, re-minting the id and key on the rare id collision."""
        for attempt in range(MAX_ID_ATTEMPTS):
            try:
                mongo_manager.save_document(settings.CERTIFICATES_COLLECTION, record)
                return record
            except DuplicateKeyError:
                logger.log_step("certificate_id_collision", {"certificate_id": record["certificateId"], "attempt": attempt})
                record.pop("_id", None)
                self.remint(record)
        raise RuntimeError("Could not allocate a unique certificate id")

    async def issue(
        self,
        upload: UploadFile,
        title: Optional[str],
        issuer: Dict[str, Any],
        recipient_name: Optional[str] = None,
        recipient_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store an uploaded file and register it as a certificate."""
        stored = await storage_service.store_upload(upload)
        file_bytes = storage_service.read_bytes(stored.stored_filename)

        record = self.new_record(
            title,
            document_hash=hashlib.sha256(file_bytes).hexdigest(),
            issued_by=str(issuer["_id"]),
            originalFilename=stored.original_filename,
            fileType=stored.content_type,
            fileSize=stored.size_bytes,
            filePath=stored.stored_filename,
            recipientName=recipient_name or None,
            recipientEmail=recipient_email or None,
        )
        try:
            self.insert(record)
        except Exception:
            storage_service.remove(stored.stored_filename)
            raise

        cache_service.invalidate_analytics("admin_stats")
        logger.log_certificate_issued(record["certificateId"], record["issuedBy"], record["fileType"])
        return {
            "certificateId": record["certificateId"],
            "title": record["title"],
            "documentHash": record["documentHash"],
            "accessKey": record["accessKey"],
            "qrCode": record["qrCode"],
            "extractionStatus": record["extractionStatus"],
            "createdAt": record["createdAt"].isoformat(),
        }

    def run_extraction(self, certificate_id: str) -> Optional[str]:
        """Move a record through processing to completed or failed."""
        certificate = mongo_manager.update_by_field(
            settings.CERTIFICATES_COLLECTION,
            "certificateId",
            certificate_id,
            {"extractionStatus": ExtractionStatus.processing.value},
        )
        if not certificate:
            return None

        try:
            file_bytes = storage_service.read_bytes(certificate.get("filePath"))
            if file_bytes is None:
                raise FileNotFoundError(f"Stored file missing for {certificate_id}")

            result = document_extractor.extract_document_data(file_bytes, certificate.get("fileType") or "")
            mongo_manager.update_by_field(
                settings.CERTIFICATES_COLLECTION,
                "certificateId",
                certificate_id,
                {
                    "extractionStatus": ExtractionStatus.completed.value,
                    "extractionError": None,
                    **result.model_dump(),
                },
            )
            logger.log_extraction(certificate_id, ExtractionStatus.completed.value, result.primaryDetails.documentType)
            status = ExtractionStatus.completed.value
        except Exception as e:
            mongo_manager.update_by_field(
                settings.CERTIFICATES_COLLECTION,
                "certificateId",
                certificate_id,
                {"extractionStatus": ExtractionStatus.failed.value, "extractionError": str(e)},
            )
            logger.log_error("extraction_failed", {"certificate_id": certificate_id, "error": str(e)})
            status = ExtractionStatus.failed.value

        cache_service.invalidate_verification(certificate_id)
        return status

    def list_certificates(
        self,
        user: Dict[str, Any],
        status: Optional[str] = None,
        batch_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        criteria: Dict[str, Any] = {} if is_admin(user) else {"issuedBy": str(user["_id"])}
        if status:
            criteria["status"] = status
        if batch_id:
            criteria["batchId"] = batch_id
        certificates = mongo_manager.list_documents(
            settings.CERTIFICATES_COLLECTION,
            criteria,
            projection=LIST_PROJECTION,
            sort=[("createdAt", DESCENDING)],
        )
        return [_public(certificate) for certificate in certificates]

    def _find(self, certificate_id: str) -> Optional[Dict[str, Any]]:
        return mongo_manager.get_document_by_field(settings.CERTIFICATES_COLLECTION, "certificateId", certificate_id)

    def _managed(self, certificate_id: str, user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        certificate = self._find(certificate_id)
        if certificate and not can_manage(user, certificate):
            raise PermissionError("Not allowed to manage this certificate")
        return certificate

    def get_certificate(self, certificate_id: str, user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        certificate = self._managed(certificate_id, user)
        if not certificate:
            return None
        certificate.pop("filePath", None)
        return _public(certificate)

    def verify(self, certificate_id: str, access_key: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Tiered verification.

        Everyone gets the basic tier; the matching access key unlocks the
        full tier. A wrong key is not an error, it simply yields the basic
        tier. Every call is counted.
        """
        certificate = self._find(certificate_id)
        if not certificate:
            logger.log_verification(certificate_id, "invalid", False)
            return None

        full_access = access_key_matches(access_key, certificate["accessKey"])
        increments = {"verificationCount": 1}
        if full_access:
            increments["fullAccessCount"] = 1
        certificate = mongo_manager.update_by_field(
            settings.CERTIFICATES_COLLECTION,
            "certificateId",
            certificate_id,
            {"lastVerifiedAt": datetime.utcnow()},
            increments,
        )
        if not certificate:
            logger.log_verification(certificate_id, "invalid", False)
            return None

        data = {field: certificate.get(field) for field in BASIC_FIELDS}
        if full_access:
            data.update({field: certificate.get(field) for field in FULL_FIELDS})
        data["fullAccess"] = full_access

        status = "revoked" if certificate.get("status") == CertificateStatus.revoked.value else "valid"
        logger.log_verification(certificate_id, status, full_access)
        return {"status": status, "data": serialize_for_json(data)}

    def quick_verify(self, certificate_id: str) -> Optional[Dict[str, Any]]:
        """Primary tier only, served from cache when possible."""
        cached = cache_service.get_cached_verification(certificate_id)
        if cached:
            mongo_manager.update_by_field(
                settings.CERTIFICATES_COLLECTION,
                "certificateId",
                certificate_id,
                {"lastVerifiedAt": datetime.utcnow()},
                {"verificationCount": 1},
            )
            return {**cached, "cached": True}

        result = self.verify(certificate_id)
        if not result:
            return None
        result = {"status": result["status"], "data": result["data"], "cached": False}
        cache_service.cache_verification(certificate_id, {"status": result["status"], "data": result["data"]})
        return result

    def download(self, certificate_id: str, access_key: Optional[str]) -> Optional[Tuple[Dict[str, Any], bytes]]:
        certificate = self._find(certificate_id)
        if not certificate:
            return None
        if not access_key_matches(access_key, certificate["accessKey"]):
            raise PermissionError("Invalid access key")

        file_bytes = storage_service.read_bytes(certificate.get("filePath"))
        if file_bytes is None:
            return None

        mongo_manager.update_by_field(
            settings.CERTIFICATES_COLLECTION,
            "certificateId",
            certificate_id,
            {},
            {"downloadCount": 1},
        )
        logger.log_step("certificate_downloaded", {"certificate_id": certificate_id})
        return certificate, file_bytes

    def anchor(self, certificate_id: str, user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Register a single document hash on-chain."""
        certificate = self._managed(certificate_id, user)
        if not certificate:
            return None

        receipt = blockchain_service.register_document(certificate["documentHash"], certificate_id)
        if receipt.get("success"):
            mongo_manager.update_by_field(
                settings.CERTIFICATES_COLLECTION,
                "certificateId",
                certificate_id,
                {"blockchain": receipt},
            )
            cache_service.invalidate_verification(certificate_id)
        return receipt

    def revoke(self, certificate_id: str, user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        certificate = self._managed(certificate_id, user)
        if not certificate:
            return None
        if certificate.get("status") == CertificateStatus.revoked.value:
            raise ValueError("Certificate is already revoked")

        update: Dict[str, Any] = {
            "status": CertificateStatus.revoked.value,
            "revokedAt": datetime.utcnow(),
            "revokedBy": str(user["_id"]),
        }
        if (certificate.get("blockchain") or {}).get("success"):
            try:
                update["blockchainRevocation"] = blockchain_service.revoke_document(certificate["documentHash"])
            except (BlockchainUnavailableError, RuntimeError) as e:
                logger.log_error("onchain_revocation_skipped", {"certificate_id": certificate_id, "error": str(e)})

        certificate = mongo_manager.update_by_field(
            settings.CERTIFICATES_COLLECTION, "certificateId", certificate_id, update
        )
        if not certificate:
            return None
        cache_service.invalidate_verification(certificate_id)
        cache_service.invalidate_analytics("admin_stats")
        logger.log_step("certificate_revoked", {"certificate_id": certificate_id, "revoked_by": update["revokedBy"]})
        certificate.pop("filePath", None)
        return _public(certificate)

    def delete(self, certificate_id: str, user: Dict[str, Any]) -> bool:
        certificate = self._managed(certificate_id, user)
        if not certificate:
            return False

        mongo_manager.delete_by_field(settings.CERTIFICATES_COLLECTION, "certificateId", certificate_id)
        if certificate.get("filePath"):
            storage_service.remove(certificate["filePath"])
        cache_service.invalidate_verification(certificate_id)
        cache_service.invalidate_analytics("admin_stats")
        logger.log_step("certificate_deleted", {"certificate_id": certificate_id, "deleted_by": str(user["_id"])})
        return True


certificate_service = CertificateService()
