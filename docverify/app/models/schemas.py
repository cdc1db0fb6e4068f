"""DocVerify API models"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ExtractionStatus(str, Enum):
    """Lifecycle of the post-upload text extraction."""
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class CertificateStatus(str, Enum):
    active = "active"
    revoked = "revoked"


class UserRole(str, Enum):
    user = "user"
    institution = "institution"
    verifier = "verifier"
    admin = "admin"


class UserStatus(str, Enum):
    active = "active"
    suspended = "suspended"


class AnchorStatus(str, Enum):
    not_anchored = "not_anchored"
    anchored = "anchored"
    failed = "failed"


class PrimaryDetails(BaseModel):
    """Quick-read tier, small enough to anchor on-chain"""
    documentType: str
    fields: Dict[str, str]
    hash: str
    extractedAt: str
    confidenceScore: int


class ExtractionMetadata(BaseModel):
    textLength: int
    pages: int = 1
    ocrConfidence: Optional[float] = None


class FullDetails(BaseModel):
    """Complete extracted text and metadata"""
    rawText: str
    structuredData: Dict[str, str]
    dates: List[str]
    signatures: List[str]
    lineCount: int
    wordCount: int
    pdfMetadata: Dict[str, Any] = Field(default_factory=dict)
    hash: str
    extractionMetadata: ExtractionMetadata


class VerificationSummary(BaseModel):
    """Precomputed projection shown on verification"""
    documentType: str
    holderName: str
    documentNumber: str
    issueDate: str
    issuingAuthority: str
    qualification: Optional[str] = None
    grade: Optional[str] = None
    validUntil: str
    confidenceScore: int
    integrityHash: str


class ExtractionResult(BaseModel):
    primaryDetails: PrimaryDetails
    fullDetails: FullDetails
    verificationSummary: VerificationSummary


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    role: Literal["user", "institution", "verifier"] = "user"
    organization: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class UserUpdateRequest(BaseModel):
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None


class VerifyRequest(BaseModel):
    certificateId: Optional[str] = None
    accessKey: Optional[str] = None


class BulkIssueRequest(BaseModel):
    """Bulk issuance payload: one record per document"""
    title: str = "Untitled Batch"
    documentType: str = "certificate"
    records: List[Dict[str, Any]]


class BatchVerifyRequest(BaseModel):
    batchId: str
    documentHash: str
    proof: List[str] = Field(default_factory=list)


class TextRequest(BaseModel):
    text: str
    documentType: Optional[str] = None


class SuggestRequest(BaseModel):
    fieldName: str
    partialValue: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)
