"""Splits document text into a quick primary tier and a complete full tier."""

import hashlib
import io
import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import fitz  # PyMuPDF
import pytesseract
from PIL import Image

from ..models.schemas import (
    ExtractionMetadata,
    ExtractionResult,
    FullDetails,
    PrimaryDetails,
    VerificationSummary,
)
from ..utils.logging import logger

# Ordered: the first pattern that matches wins for each field.
PRIMARY_FIELD_PATTERNS: Dict[str, List[re.Pattern]] = {
    "name": [
        re.compile(r"(?:name|full\s*name|holder|recipient|issued\s*to|awarded\s*to)[:\s]*([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,3})", re.I),
        re.compile(r"(?:Mr\.|Mrs\.|Ms\.|Dr\.)\s*([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,2})", re.I),
    ],
    "dateOfBirth": [
        re.compile(r"(?:date\s*of\s*birth|dob|birth\s*date|born)[:\s]*(\d{1,2}[-/]\d{1,2}[-/]\d{2,4})", re.I),
        re.compile(r"(?:date\s*of\s*birth|dob)[:\s]*(\d{1,2}\s+\w+\s+\d{4})", re.I),
    ],
    "documentNumber": [
        re.compile(r"(?:certificate\s*(?:no|number|id)|document\s*(?:no|number|id)|reg(?:istration)?\s*(?:no|number)|serial\s*(?:no|number)|id\s*(?:no|number))[:\s#]*([A-Z0-9\-/]+)", re.I),
        re.compile(r"(?:no|number|#)[:\s]*([A-Z]{2,}\d+[A-Z0-9\-]*)", re.I),
    ],
    "issueDate": [
        re.compile(r"(?:issue\s*date|date\s*of\s*issue|dated|issued\s*on)[:\s]*(\d{1,2}[-/]\d{1,2}[-/]\d{2,4})", re.I),
        re.compile(r"(?:issue\s*date|dated)[:\s]*(\d{1,2}\s+\w+\s+\d{4})", re.I),
    ],
    "expiryDate": [
        re.compile(r"(?:expiry\s*date|valid\s*(?:until|till|through)|expires?\s*on?)[:\s]*(\d{1,2}[-/]\d{1,2}[-/]\d{2,4})", re.I),
        re.compile(r"(?:valid\s*(?:until|till))[:\s]*(\d{1,2}\s+\w+\s+\d{4})", re.I),
    ],
    "issuingAuthority": [
        re.compile(r"(?:issued\s*by|issuing\s*authority|authority|organization|institution|university|college)[:\s]*([A-Z][A-Za-z\s&,.]+(?:University|College|Institute|Board|Council|Authority|Organization|Government|Ministry|Department))", re.I),
    ],
    "qualification": [
        re.compile(r"(?:degree|diploma|certificate|qualification|course|program(?:me)?)[:\s]*(?:in|of)?\s*([A-Z][A-Za-z\s\-&]+)", re.I),
    ],
    "grade": [
        re.compile(r"(?:grade|result|score|percentage|cgpa|gpa|marks)[:\s]*([A-F][+-]?|\d+(?:\.\d+)?(?:\s*%)?(?:\s*/\s*\d+)?)", re.I),
        re.compile(r"(?:first\s*class|second\s*class|distinction|pass|merit)", re.I),
    ],
}

DOCUMENT_TYPE_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("degree", re.compile(r"(?:bachelor|master|doctor|phd|b\.?tech|m\.?tech|b\.?sc|m\.?sc|b\.?a|m\.?a|b\.?com|m\.?com|degree)", re.I)),
    ("diploma", re.compile(r"(?:diploma|certificate\s+course|vocational)", re.I)),
    ("certificate", re.compile(r"(?:certificate|certification|certified|completion)", re.I)),
    ("license", re.compile(r"(?:license|licence|permit|registration)", re.I)),
    ("identification", re.compile(r"(?:identity|identification|id\s*card|passport|driving)", re.I)),
    ("academic", re.compile(r"(?:transcript|marksheet|grade\s*sheet|result)", re.I)),
    ("professional", re.compile(r"(?:professional|experience|employment|work)", re.I)),
    ("legal", re.compile(r"(?:legal|court|notary|affidavit|deed)", re.I)),
]

CONFIDENCE_WEIGHTS = {
    "name": 25,
    "documentNumber": 20,
    "issueDate": 15,
    "issuingAuthority": 15,
    "qualification": 10,
    "expiryDate": 5,
    "grade": 5,
    "dateOfBirth": 5,
}

KEY_VALUE_PATTERN = re.compile(r"^([A-Za-z\s]+)[:\-]\s*(.+)$")
DATE_PATTERN = re.compile(
    r"\d{1,2}[-/]\d{1,2}[-/]\d{2,4}|\d{1,2}\s+(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\s+\d{4}",
    re.I,
)
SIGNATURE_PATTERN = re.compile(
    r"(?:signed|authorized|approved|verified)\s*(?:by)?[:\s]*([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)",
    re.I,
)


def generate_content_hash(data: Any) -> str:
    """SHA-256 over compact, insertion-ordered JSON."""
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def validate_integrity(stored_hash: str, current_data: Any) -> bool:
    return stored_hash == generate_content_hash(current_data)


def detect_document_type(text: str) -> str:
    for document_type, pattern in DOCUMENT_TYPE_PATTERNS:
        if pattern.search(text):
            return document_type
    return "general"


def extract_primary_fields(text: str) -> Dict[str, str]:
    extracted: Dict[str, str] = {}
    for field, patterns in PRIMARY_FIELD_PATTERNS.items():
        for pattern in patterns:
            match = pattern.search(text)
            if not match:
                continue
            # Classification patterns have no capture group
            value = match.group(1) if match.groups() else match.group(0)
            if value:
                extracted[field] = value.strip()
                break
    return extracted


def extract_full_details(text: str, pdf_info: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    lines = [line.strip() for line in text.split("\n")]
    lines = [line for line in lines if line]

    key_value_pairs: Dict[str, str] = {}
    for line in lines:
        match = KEY_VALUE_PATTERN.match(line)
        if match:
            key = re.sub(r"\s+", "_", match.group(1).strip().lower())
            key_value_pairs[key] = match.group(2).strip()

    return {
        "rawText": text,
        "structuredData": key_value_pairs,
        "dates": DATE_PATTERN.findall(text),
        "signatures": SIGNATURE_PATTERN.findall(text),
        "lineCount": len(lines),
        "wordCount": len(re.split(r"\s+", text)),
        "pdfMetadata": pdf_info or {},
    }


def calculate_confidence_score(primary_fields: Dict[str, str], full_details: Dict[str, Any]) -> int:
    score = sum(weight for field, weight in CONFIDENCE_WEIGHTS.items() if primary_fields.get(field))
    if full_details["wordCount"] > 50:
        score += 5
    if full_details["lineCount"] > 10:
        score += 5
    return min(score, 100)


class DocumentExtractor:
    """Reads text out of PDFs and images and builds the three detail tiers."""

    def extract_text_from_pdf(self, file_bytes: bytes) -> Dict[str, Any]:
        try:
            with fitz.open(stream=file_bytes, filetype="pdf") as document:
                text = "".join(page.get_text() for page in document)
                info = {key: value for key, value in (document.metadata or {}).items() if value}
                return {"text": text, "pages": document.page_count, "info": info}
        except Exception as e:
            logger.log_error("pdf_extraction_failed", {"error": str(e)})
            return {"text": "", "pages": 0, "info": {}}

    def extract_text_from_image(self, file_bytes: bytes) -> Dict[str, Any]:
        try:
            with Image.open(io.BytesIO(file_bytes)) as image:
                text = pytesseract.image_to_string(image, lang="eng")
                data = pytesseract.image_to_data(image, lang="eng", output_type=pytesseract.Output.DICT)
            confidences = [float(conf) for conf in data.get("conf", []) if float(conf) >= 0]
            confidence = round(sum(confidences) / len(confidences), 2) if confidences else 0
            return {"text": text, "confidence": confidence, "words": len(confidences)}
        except Exception as e:
            logger.log_error("ocr_extraction_failed", {"error": str(e)})
            return {"text": "", "confidence": 0, "words": 0}

    def extract_document_data(self, file_bytes: bytes, file_type: str) -> ExtractionResult:
        """Extract text by file type, then split it into detail tiers."""
        extracted: Dict[str, Any] = {"text": ""}
        if file_type == "application/pdf":
            extracted = self.extract_text_from_pdf(file_bytes)
        elif file_type.startswith("image/"):
            extracted = self.extract_text_from_image(file_bytes)

        return self.analyze_text(
            extracted.get("text") or "",
            pdf_info=extracted.get("info") or {},
            pages=extracted.get("pages") or 1,
            ocr_confidence=extracted.get("confidence") or None,
        )

    def analyze_text(
        self,
        text: str,
        pdf_info: Optional[Dict[str, Any]] = None,
        pages: int = 1,
        ocr_confidence: Optional[float] = None,
        document_type: Optional[str] = None,
        known_fields: Optional[Dict[str, str]] = None,
    ) -> ExtractionResult:
        """Build primary, full and summary tiers from plain text.

        ``known_fields`` take precedence over pattern matches, which lets
        records issued from structured data skip guessing.
        """
        document_type = document_type or detect_document_type(text)
        primary_fields = extract_primary_fields(text)
        if known_fields:
            primary_fields.update({key: value for key, value in known_fields.items() if value})

        full_details = extract_full_details(text, pdf_info)
        confidence_score = calculate_confidence_score(primary_fields, full_details)

        primary_hash = generate_content_hash(primary_fields)
        full_hash = generate_content_hash(full_details)

        primary = PrimaryDetails(
            documentType=document_type,
            fields=primary_fields,
            hash=primary_hash,
            extractedAt=datetime.utcnow().isoformat() + "Z",
            confidenceScore=confidence_score,
        )
        full = FullDetails(
            **full_details,
            hash=full_hash,
            extractionMetadata=ExtractionMetadata(
                textLength=len(text),
                pages=pages,
                ocrConfidence=ocr_confidence,
            ),
        )
        summary = VerificationSummary(
            documentType=document_type,
            holderName=primary_fields.get("name") or "Not detected",
            documentNumber=primary_fields.get("documentNumber") or "Not detected",
            issueDate=primary_fields.get("issueDate") or "Not detected",
            issuingAuthority=primary_fields.get("issuingAuthority") or "Not detected",
            qualification=primary_fields.get("qualification"),
            grade=primary_fields.get("grade"),
            validUntil=primary_fields.get("expiryDate") or "Not specified",
            confidenceScore=confidence_score,
            integrityHash=primary_hash,
        )
        return ExtractionResult(primaryDetails=primary, fullDetails=full, verificationSummary=summary)


document_extractor = DocumentExtractor()
