"""
Bulk issuance: many records, one Merkle root, at most one anchoring transaction.
"""
import csv
import hashlib
import io
import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import settings
from ..models.schemas import AnchorStatus, ExtractionStatus
from ..utils.logging import logger
from ..utils.mongo import mongo_manager, serialize_for_json
from .blockchain_service import blockchain_service
from .cache_service import cache_service
from .certificate_service import certificate_service
from .extraction_service import document_extractor
from .merkle import MerkleTree, normalize_hash, to_hex

MAX_BATCH_SIZE = 500
REQUIRED_COLUMNS = ("recipientName",)

# Record columns that map straight onto primary detail fields.
KNOWN_FIELD_MAP = {
    "recipientName": "name",
    "issuingOrganization": "issuingAuthority",
    "issuingAuthority": "issuingAuthority",
    "certificateTitle": "qualification",
    "course": "qualification",
    "issueDate": "issueDate",
    "expiryDate": "expiryDate",
    "documentNumber": "documentNumber",
    "grade": "grade",
    "dateOfBirth": "dateOfBirth",
}


class BatchValidationError(ValueError):
    """Raised with every row problem at once; nothing has been written."""

    def __init__(self, errors: List[Dict[str, Any]]):
        self.errors = errors
        super().__init__(f"{len(errors)} invalid record(s) in batch")


def generate_batch_id() -> str:
    return f"BATCH-{uuid.uuid4().hex[:12].upper()}"


def record_hash(record: Dict[str, Any], title: str) -> str:
    canonical = json.dumps(
        {"record": record, "title": title},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_csv_records(content: bytes) -> List[Dict[str, str]]:
    """Header row first; blank lines are skipped and cells are trimmed."""
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValueError("CSV file must be UTF-8 encoded")

    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("CSV file is empty")

    columns = [name.strip() for name in reader.fieldnames if name]
    missing = [column for column in REQUIRED_COLUMNS if column not in columns]
    if missing:
        raise ValueError(f"CSV is missing required column(s): {', '.join(missing)}")

    records = []
    for row in reader:
        record = {
            key.strip(): (value or "").strip()
            for key, value in row.items()
            if key and isinstance(value, str)
        }
        if any(record.values()):
            records.append(record)
    return records


def _record_text(record: Dict[str, Any], title: str) -> str:
    lines = [title]
    lines.extend(f"{key}: {value}" for key, value in record.items() if value not in (None, ""))
    return "\n".join(lines)


def _known_fields(record: Dict[str, Any]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for column, field in KNOWN_FIELD_MAP.items():
        value = record.get(column)
        if value not in (None, "") and field not in fields:
            fields[field] = str(value).strip()
    return fields


class BatchService:
    def validate_records(self, records: List[Dict[str, Any]], title: str) -> List[Dict[str, Any]]:
        if not records:
            raise ValueError("At least one record is required")
        if len(records) > MAX_BATCH_SIZE:
            raise ValueError(f"A batch may contain at most {MAX_BATCH_SIZE} records")

        errors: List[Dict[str, Any]] = []
        seen: Dict[str, int] = {}
        for row, record in enumerate(records, start=1):
            if not isinstance(record, dict):
                errors.append({"row": row, "error": "Record must be an object"})
                continue
            if not str(record.get("recipientName") or "").strip():
                errors.append({"row": row, "error": "recipientName is required"})
                continue
            leaf = record_hash(record, title)
            if leaf in seen:
                errors.append({"row": row, "error": f"Duplicate of row {seen[leaf]}"})
                continue
            seen[leaf] = row

        if errors:
            logger.log_step("batch_rejected", {"error_count": len(errors), "record_count": len(records)})
            raise BatchValidationError(errors)
        return records

    def _build_record(
        self,
        record: Dict[str, Any],
        title: str,
        batch_id: str,
        issued_by: str,
        document_type: str,
    ) -> Dict[str, Any]:
        extraction = document_extractor.analyze_text(
            _record_text(record, title),
            document_type=document_type,
            known_fields=_known_fields(record),
        )
        return certificate_service.new_record(
            title,
            document_hash=record_hash(record, title),
            issued_by=issued_by,
            recipientName=str(record["recipientName"]).strip(),
            recipientEmail=record.get("recipientEmail") or None,
            batchId=batch_id,
            extractionStatus=ExtractionStatus.completed.value,
            **extraction.model_dump(),
        )

    def issue_batch(
        self,
        title: str,
        records: List[Dict[str, Any]],
        issuer: Dict[str, Any],
        document_type: str = "certificate",
    ) -> Dict[str, Any]:
        """
        Issue every record under one Merkle root.

        Certificates and the batch row are written together; if any write
        fails, the certificates already stored for this batch are removed.
        """
        title = (title or "").strip() or "Untitled Batch"
        self.validate_records(records, title)

        batch_id = generate_batch_id()
        issued_by = str(issuer["_id"])
        documents = []
        certificate_ids = set()
        for record in records:
            certificate = self._build_record(record, title, batch_id, issued_by, document_type)
            while certificate["certificateId"] in certificate_ids:
                certificate_service.remint(certificate)
            certificate_ids.add(certificate["certificateId"])
            documents.append(certificate)

        leaves = [document["documentHash"] for document in documents]
        tree = MerkleTree(leaves)
        batch = {
            "batchId": batch_id,
            "title": title,
            "documentType": document_type,
            "issuedBy": issued_by,
            "documentHashes": leaves,
            "certificateIds": [document["certificateId"] for document in documents],
            "documentCount": len(tree),
            "merkleRoot": tree.root,
            "anchorStatus": AnchorStatus.not_anchored.value,
            "anchor": None,
            "createdAt": datetime.utcnow(),
        }

        try:
            mongo_manager.save_many(settings.CERTIFICATES_COLLECTION, documents)

            if blockchain_service.is_available():
                try:
                    batch["anchor"] = blockchain_service.register_batch(leaves, batch_id)
                    batch["anchorStatus"] = AnchorStatus.anchored.value
                except RuntimeError as e:
                    batch["anchorStatus"] = AnchorStatus.failed.value
                    batch["anchor"] = {"success": False, "error": str(e)}

            mongo_manager.save_document(settings.BATCHES_COLLECTION, batch)
        except Exception as e:
            removed = mongo_manager.delete_many_by_field(settings.CERTIFICATES_COLLECTION, "batchId", batch_id)
            logger.log_error("batch_rolled_back", {"batch_id": batch_id, "removed": removed, "error": str(e)})
            raise

        cache_service.invalidate_analytics("admin_stats")
        logger.log_batch_issued(batch_id, len(tree), tree.root, batch["anchorStatus"])

        summary = self._public(batch)
        summary["documents"] = [
            {
                "certificateId": document["certificateId"],
                "accessKey": document["accessKey"],
                "recipientName": document["recipientName"],
                "documentHash": document["documentHash"],
            }
            for document in documents
        ]
        return summary

    def get_batch(self, batch_id: str) -> Optional[Dict[str, Any]]:
        batch = mongo_manager.get_document_by_field(settings.BATCHES_COLLECTION, "batchId", batch_id)
        return self._public(batch) if batch else None

    def proof(self, batch_id: str, certificate_id: str) -> Optional[Dict[str, Any]]:
        """Inclusion proof for one document; None if the batch or document is unknown."""
        batch = mongo_manager.get_document_by_field(settings.BATCHES_COLLECTION, "batchId", batch_id)
        if not batch:
            return None
        certificate = mongo_manager.get_document_by_field(
            settings.CERTIFICATES_COLLECTION, "certificateId", certificate_id
        )
        if not certificate or certificate.get("batchId") != batch_id:
            return None

        tree = MerkleTree(batch["documentHashes"])
        siblings = tree.proof(certificate["documentHash"])
        if siblings is None:
            return None
        return {
            "batchId": batch_id,
            "certificateId": certificate_id,
            "leaf": to_hex(normalize_hash(certificate["documentHash"])),
            "proof": siblings,
            "merkleRoot": batch["merkleRoot"],
        }

    def verify_inclusion(self, batch_id: str, document_hash: str, proof: List[str]) -> Optional[Dict[str, Any]]:
        """Check that a document hash is a leaf of the batch and folds up to its root."""
        batch = mongo_manager.get_document_by_field(settings.BATCHES_COLLECTION, "batchId", batch_id)
        if not batch:
            return None

        leaf = _bare_hex(document_hash)
        # Interior nodes also fold to the root with a shorter proof
        verified = leaf in batch["documentHashes"] and MerkleTree.verify(leaf, proof, batch["merkleRoot"])
        result: Dict[str, Any] = {
            "batchId": batch_id,
            "documentHash": document_hash,
            "merkleRoot": batch["merkleRoot"],
            "verified": verified,
            "onChain": None,
        }

        if verified:
            certificate = mongo_manager.certificates.find_one({"documentHash": leaf, "batchId": batch_id})
            if certificate:
                result["certificateId"] = certificate["certificateId"]
                result["status"] = certificate.get("status")

            if batch.get("anchorStatus") == AnchorStatus.anchored.value:
                result["onChain"] = blockchain_service.verify_batch_document(batch_id, document_hash, proof)

        logger.log_step("batch_inclusion_checked", {"batch_id": batch_id, "verified": verified})
        return result

    @staticmethod
    def _public(batch: Dict[str, Any]) -> Dict[str, Any]:
        return serialize_for_json({key: value for key, value in batch.items() if key != "_id"})


def _bare_hex(document_hash: str) -> str:
    """Stored hashes are lower-case hex without the 0x prefix."""
    try:
        return normalize_hash(document_hash).hex()
    except ValueError:
        return document_hash


batch_service = BatchService()
