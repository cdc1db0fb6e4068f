import hashlib
import json
import re
from typing import Any, Dict, List, Optional

import google.generativeai as genai  # type: ignore[import-not-found]
from fastapi.concurrency import run_in_threadpool

from ..config import settings
from ..utils.logging import logger
from .cache_service import cache_service


DOCUMENT_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "certificate": {
        "name": "Certificate",
        "requiredFields": ["recipientName", "certificateTitle", "issuingOrganization", "issueDate"],
        "optionalFields": ["description", "grade", "courseHours", "expiryDate", "signatoryName", "signatoryTitle"],
        "promptContext": "This is a certificate or credential document.",
    },
    "student_id": {
        "name": "Student ID Card",
        "requiredFields": ["studentName", "studentId", "institution", "course", "validFrom", "validUntil"],
        "optionalFields": ["department", "dateOfBirth", "bloodGroup", "address", "phone", "email"],
        "promptContext": "This is a student identification card.",
    },
    "bill": {
        "name": "Bill/Invoice",
        "requiredFields": ["billNumber", "billDate", "companyName", "customerName", "totalAmount"],
        "optionalFields": ["dueDate", "companyAddress", "customerAddress", "items", "taxRate", "discount"],
        "promptContext": "This is a bill or invoice document.",
    },
    "degree": {
        "name": "Academic Degree",
        "requiredFields": ["holderName", "degreeName", "institution", "graduationDate"],
        "optionalFields": ["major", "minor", "gpa", "honors", "registrationNumber"],
        "promptContext": "This is an academic degree or diploma.",
    },
    "license": {
        "name": "License/Permit",
        "requiredFields": ["holderName", "licenseNumber", "issuingAuthority", "issueDate", "expiryDate"],
        "optionalFields": ["licenseType", "category", "restrictions", "address"],
        "promptContext": "This is a license or permit document.",
    },
    "general": {
        "name": "General Document",
        "requiredFields": ["documentTitle", "primaryName"],
        "optionalFields": ["documentNumber", "issueDate", "issuingAuthority", "description"],
        "promptContext": "This is a general document.",
    },
}

FIELD_LABELS: Dict[str, str] = {
    "recipientName": "Recipient Name",
    "certificateTitle": "Certificate Title",
    "issuingOrganization": "Issuing Organization",
    "issueDate": "Issue Date",
    "expiryDate": "Expiry Date",
    "description": "Description",
    "grade": "Grade/Score",
    "courseHours": "Course Hours",
    "signatoryName": "Signatory Name",
    "signatoryTitle": "Signatory Title",
    "studentName": "Student Name",
    "studentId": "Student ID",
    "institution": "Institution",
    "course": "Course/Program",
    "department": "Department",
    "validFrom": "Valid From",
    "validUntil": "Valid Until",
    "dateOfBirth": "Date of Birth",
    "bloodGroup": "Blood Group",
    "address": "Address",
    "phone": "Phone",
    "email": "Email",
    "billNumber": "Bill/Invoice Number",
    "billDate": "Bill Date",
    "dueDate": "Due Date",
    "companyName": "Company Name",
    "companyAddress": "Company Address",
    "customerName": "Customer Name",
    "customerAddress": "Customer Address",
    "totalAmount": "Total Amount",
    "items": "Line Items",
    "taxRate": "Tax Rate",
    "discount": "Discount",
    "holderName": "Holder Name",
    "degreeName": "Degree Name",
    "graduationDate": "Graduation Date",
    "major": "Major",
    "minor": "Minor",
    "gpa": "GPA",
    "honors": "Honors",
    "registrationNumber": "Registration Number",
    "licenseNumber": "License Number",
    "licenseType": "License Type",
    "issuingAuthority": "Issuing Authority",
    "category": "Category",
    "restrictions": "Restrictions",
    "documentTitle": "Document Title",
    "primaryName": "Primary Name",
    "documentNumber": "Document Number",
}

# Checked in order; more specific types first.
FALLBACK_TYPE_PATTERNS = [
    ("student_id", re.compile(r"student\s*(?:id|identification|card)", re.I)),
    ("bill", re.compile(r"invoice|bill\s*(?:no|number)|payment\s*due", re.I)),
    ("degree", re.compile(r"bachelor|master|doctor|phd|degree|diploma|graduated", re.I)),
    ("license", re.compile(r"license|permit|authorized\s*to|valid\s*(?:until|through)", re.I)),
    ("certificate", re.compile(r"certificate|certify|certification|awarded|completed", re.I)),
]

FALLBACK_FIELD_PATTERNS: Dict[str, re.Pattern] = {
    "recipientName": re.compile(r"(?:name|recipient|awarded\s*to|certify\s*that)[:\s]*([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,3})", re.I),
    "studentName": re.compile(r"(?:name|student)[:\s]*([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,3})", re.I),
    "holderName": re.compile(r"(?:name|holder)[:\s]*([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,3})", re.I),
    "customerName": re.compile(r"(?:customer|client|bill\s*to)[:\s]*([A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,3})", re.I),
    "certificateTitle": re.compile(r"(?:certificate\s*(?:of|in|for)?|title)[:\s]*([A-Za-z\s]+)", re.I),
    "institution": re.compile(r"(?:university|college|institute|school|institution)[:\s]*([A-Za-z\s]+)", re.I),
    "issuingOrganization": re.compile(r"(?:issued\s*by|organization|authority)[:\s]*([A-Za-z\s]+)", re.I),
    "issueDate": re.compile(r"(?:date|issued|dated)[:\s]*(\d{1,2}[-/]\d{1,2}[-/]\d{2,4}|\d{1,2}\s+\w+\s+\d{4})", re.I),
    "expiryDate": re.compile(r"(?:expiry|expires?|valid\s*(?:until|through))[:\s]*(\d{1,2}[-/]\d{1,2}[-/]\d{2,4})", re.I),
    "studentId": re.compile(r"(?:student\s*id|roll\s*(?:no|number)|reg(?:istration)?)[:\s#]*([A-Z0-9\-]+)", re.I),
    "billNumber": re.compile(r"(?:invoice|bill)\s*(?:no|number|#)[:\s]*([A-Z0-9\-]+)", re.I),
    "licenseNumber": re.compile(r"(?:license|permit)\s*(?:no|number|#)[:\s]*([A-Z0-9\-]+)", re.I),
    "totalAmount": re.compile(r"(?:total|amount|due)[:\s]*[$₹€£]?\s*([\d,]+\.?\d*)", re.I),
    "grade": re.compile(r"(?:grade|score|result)[:\s]*([A-F][+-]?|\d+(?:\.\d+)?%?)", re.I),
    "email": re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})", re.I),
    "phone": re.compile(r"(?:phone|tel|mobile)[:\s]*([+\d\s\-()]{10,})", re.I),
}

CLASSIFY_PROMPT = """
You are a document classification expert. Classify the document into one of these types: certificate, student_id, bill, degree, license, general.
Respond with just the type name, nothing else.
"""

EXTRACT_PROMPT = """
You are a document data extraction expert. {context}
Extract the following fields from the document. Return only a raw JSON object with field names as keys and extracted values.
If a field is not found, use null. Be precise and extract exact values as they appear.

Fields to extract:
{fields}

Important:
- For dates, use the format found in the document
- For names, extract the full name as written
- For amounts, include currency symbols if present
- For IDs/numbers, extract the complete identifier
"""

VALIDATE_PROMPT = """
You are a document validation expert. Check the extracted data for:
1. Completeness: are all required fields present?
2. Format correctness: are dates, numbers and emails properly formatted?
3. Consistency: do the values make sense together?

Return only a raw JSON object with:
- valid: boolean
- issues: array of {field, issue, suggestion}
- enhanced: object with corrected/formatted values
"""


def _content_hash(content: str) -> str:
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def _strip_fences(text: Optional[str]) -> str:
    return (text or "").replace("```json", "").replace("```", "").strip()


def _schema(document_type: Optional[str]) -> Dict[str, Any]:
    return DOCUMENT_SCHEMAS.get(document_type or "general", DOCUMENT_SCHEMAS["general"])


class AIService:
    """Field extraction and smart data entry, backed by Gemini when configured."""

    def __init__(self) -> None:
        self.model_name = settings.GEMINI_MODEL or "gemini-2.0-flash"
        self._model = None
        self._api_key = None

    def is_available(self) -> bool:
        return bool(settings.GEMINI_API_KEY and settings.GEMINI_API_KEY.strip())

    def _ensure_client(self):
        api_key = settings.GEMINI_API_KEY.strip() if settings.GEMINI_API_KEY else ""
        if not api_key:
            raise ValueError("GEMINI_API_KEY is not configured")

        if self._api_key != api_key or self._model is None:
            genai.configure(api_key=api_key)
            self._model = genai.GenerativeModel(self.model_name)
            self._api_key = api_key
            logger.log_step("gemini_client_initialized", {"model": self.model_name})

    async def _generate(self, prompt: str, json_output: bool = False) -> str:
        self._ensure_client()

        def _run():
            kwargs = {}
            if json_output:
                kwargs["generation_config"] = {"response_mime_type": "application/json", "temperature": 0.1}
            response = self._model.generate_content(prompt, **kwargs)
            return _strip_fences(response.text)

        return await run_in_threadpool(_run)

    # Document type

    async def detect_document_type(self, text: str) -> str:
        content_hash = _content_hash(f"type:{text[:500]}")
        cached = cache_service.get_cached_ai_extraction(content_hash)
        if cached:
            return cached

        if not self.is_available():
            return self.fallback_detect_type(text)

        try:
            answer = await self._generate(f"{CLASSIFY_PROMPT}\n\nClassify this document:\n\n{text[:2000]}")
            detected = answer.strip().lower()
            document_type = detected if detected in DOCUMENT_SCHEMAS else "general"
            cache_service.cache_ai_extraction(content_hash, document_type)
            return document_type
        except Exception as e:
            logger.log_error("ai_detect_type_failed", {"error": str(e)})
            return self.fallback_detect_type(text)

    @staticmethod
    def fallback_detect_type(text: str) -> str:
        for document_type, pattern in FALLBACK_TYPE_PATTERNS:
            if pattern.search(text or ""):
                return document_type
        return "general"

    # Field extraction

    async def extract_fields(self, text: str, document_type: Optional[str] = None) -> Dict[str, Any]:
        if not document_type or document_type not in DOCUMENT_SCHEMAS:
            document_type = await self.detect_document_type(text)

        content_hash = _content_hash(f"extract:{document_type}:{text}")
        cached = cache_service.get_cached_ai_extraction(content_hash)
        if cached:
            return cached

        schema = _schema(document_type)
        all_fields = schema["requiredFields"] + schema["optionalFields"]

        if not self.is_available():
            return self.fallback_extract_fields(text, document_type)

        try:
            field_descriptions = "\n".join(f"{field}: {FIELD_LABELS.get(field, field)}" for field in all_fields)
            prompt = EXTRACT_PROMPT.format(context=schema["promptContext"], fields=field_descriptions)
            answer = await self._generate(
                f"{prompt}\n\nExtract data from this document:\n\n{text[:settings.AI_MAX_TEXT_CHARS]}",
                json_output=True,
            )
            extracted = json.loads(answer) if answer else {}
            if not isinstance(extracted, dict):
                raise ValueError("Gemini returned a non-object extraction")

            result = self._build_result(extracted, document_type, ai_processed=True)
            cache_service.cache_ai_extraction(content_hash, result)
            logger.log_step("ai_fields_extracted", {"document_type": document_type, "confidence": result["confidence"]})
            return result
        except Exception as e:
            logger.log_error("ai_extract_failed", {"error": str(e), "document_type": document_type})
            return self.fallback_extract_fields(text, document_type)

    def fallback_extract_fields(self, text: str, document_type: str) -> Dict[str, Any]:
        schema = _schema(document_type)
        extracted: Dict[str, Optional[str]] = {}
        for field in schema["requiredFields"] + schema["optionalFields"]:
            pattern = FALLBACK_FIELD_PATTERNS.get(field)
            match = pattern.search(text or "") if pattern else None
            extracted[field] = match.group(1).strip() if match else None
        return self._build_result(extracted, document_type, ai_processed=False)

    def _build_result(self, extracted: Dict[str, Any], document_type: str, ai_processed: bool) -> Dict[str, Any]:
        schema = _schema(document_type)
        all_fields = schema["requiredFields"] + schema["optionalFields"]
        return {
            "documentType": document_type,
            "schema": schema["name"],
            "fields": self._normalize_fields(extracted, all_fields),
            "confidence": self._calculate_confidence(extracted, schema["requiredFields"]),
            "suggestions": self._missing_field_suggestions(extracted, schema["requiredFields"]),
            "aiProcessed": ai_processed,
        }

    @staticmethod
    def _normalize_fields(data: Dict[str, Any], expected_fields: List[str]) -> Dict[str, Dict[str, Any]]:
        normalized = {}
        for field in expected_fields:
            value = data.get(field)
            normalized[field] = {
                "value": value or None,
                "label": FIELD_LABELS.get(field, field),
                "extracted": value not in (None, ""),
            }
        return normalized

    @staticmethod
    def _calculate_confidence(data: Dict[str, Any], required_fields: List[str]) -> int:
        if not required_fields:
            return 0
        found = len([field for field in required_fields if data.get(field)])
        return round(found / len(required_fields) * 100)

    @staticmethod
    def _missing_field_suggestions(data: Dict[str, Any], required_fields: List[str]) -> List[Dict[str, str]]:
        suggestions = []
        for field in required_fields:
            if not data.get(field):
                label = FIELD_LABELS.get(field, field)
                suggestions.append({
                    "field": field,
                    "label": label,
                    "message": f"{label} could not be detected. Please enter manually.",
                    "priority": "high",
                })
        return suggestions

    # Smart data entry

    async def get_field_suggestions(
        self, field_name: str, partial_value: str, context: Optional[Dict[str, Any]] = None
    ) -> List[str]:
        """Auto-complete candidates; empty without AI or for inputs under two characters."""
        if not self.is_available() or not partial_value or len(partial_value) < 2:
            return []

        label = FIELD_LABELS.get(field_name, field_name)
        prompt = (
            f'You are an auto-complete assistant. Provide 3-5 relevant suggestions for the field "{label}" '
            f"based on the partial input. Return only a JSON array of strings.\n\n"
            f'Field: {label}\nPartial input: "{partial_value}"\nContext: {json.dumps(context or {}, default=str)}'
        )
        try:
            suggestions = json.loads(await self._generate(prompt, json_output=True))
        except Exception as e:
            logger.log_error("ai_suggestion_failed", {"error": str(e), "field": field_name})
            return []
        if not isinstance(suggestions, list):
            return []
        return [str(item) for item in suggestions[:5]]

    async def validate_and_enhance(self, extracted_fields: Dict[str, Any], document_type: str) -> Dict[str, Any]:
        unchanged = {"valid": True, "enhanced": extracted_fields, "issues": []}
        if not self.is_available():
            return unchanged

        prompt = (
            f"{VALIDATE_PROMPT}\n\nDocument type: {document_type}\n"
            f"Extracted data: {json.dumps(extracted_fields, default=str)}"
        )
        try:
            result = json.loads(await self._generate(prompt, json_output=True))
        except Exception as e:
            logger.log_error("ai_validation_failed", {"error": str(e)})
            return unchanged
        if not isinstance(result, dict):
            return unchanged
        return {
            "valid": bool(result.get("valid", True)),
            "enhanced": result.get("enhanced") or extracted_fields,
            "issues": result.get("issues") or [],
        }

    async def generate_summary(self, text: str, document_type: Optional[str] = None) -> str:
        if not self.is_available():
            return self.fallback_summary(text, document_type)
        try:
            summary = await self._generate(
                "Generate a brief 2-3 sentence summary of this document highlighting key information.\n\n"
                + text[:2000]
            )
            return summary or self.fallback_summary(text, document_type)
        except Exception as e:
            logger.log_error("ai_summary_failed", {"error": str(e)})
            return self.fallback_summary(text, document_type)

    @staticmethod
    def fallback_summary(text: str, document_type: Optional[str]) -> str:
        word_count = len((text or "").split())
        name = _schema(document_type)["name"].lower()
        return (
            f"This {name} contains approximately {word_count} words. "
            "Manual review is recommended for detailed information."
        )

    # Schema lookups

    @staticmethod
    def get_recommended_fields(document_type: str) -> Dict[str, Any]:
        schema = _schema(document_type)
        return {
            "documentType": document_type,
            "schemaName": schema["name"],
            "required": [
                {"name": field, "label": FIELD_LABELS.get(field, field), "required": True}
                for field in schema["requiredFields"]
            ],
            "optional": [
                {"name": field, "label": FIELD_LABELS.get(field, field), "required": False}
                for field in schema["optionalFields"]
            ],
        }

    @staticmethod
    def get_supported_document_types() -> List[Dict[str, Any]]:
        return [
            {
                "type": document_type,
                "name": schema["name"],
                "requiredFieldCount": len(schema["requiredFields"]),
                "totalFieldCount": len(schema["requiredFields"]) + len(schema["optionalFields"]),
            }
            for document_type, schema in DOCUMENT_SCHEMAS.items()
        ]

    def status(self) -> Dict[str, Any]:
        return {
            "available": self.is_available(),
            "provider": "gemini" if self.is_available() else "fallback",
            "model": self.model_name if self.is_available() else None,
        }


ai_service = AIService()
