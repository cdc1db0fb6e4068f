from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from ..models.schemas import SuggestRequest, TextRequest
from ..services.ai_service import DOCUMENT_SCHEMAS, ai_service
from .deps import get_current_user

router = APIRouter(prefix="/api/ai", tags=["AI"])


def _require_text(payload: TextRequest) -> str:
    text = (payload.text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="text is required")
    return text


@router.get("/status")
async def ai_status():
    return {"success": True, "message": None, "data": ai_service.status()}


@router.get("/document-types")
async def document_types():
    return {"success": True, "message": None, "data": ai_service.get_supported_document_types()}


@router.get("/fields/{document_type}")
async def recommended_fields(document_type: str):
    if document_type not in DOCUMENT_SCHEMAS:
        raise HTTPException(status_code=404, detail=f"Unknown document type '{document_type}'")
    return {"success": True, "message": None, "data": ai_service.get_recommended_fields(document_type)}


@router.post("/detect-type")
async def detect_type(payload: TextRequest, user: Dict[str, Any] = Depends(get_current_user)):
    document_type = await ai_service.detect_document_type(_require_text(payload))
    return {
        "success": True,
        "message": None,
        "data": {"documentType": document_type, "schema": DOCUMENT_SCHEMAS[document_type]["name"]},
    }


@router.post("/extract")
async def extract_fields(payload: TextRequest, user: Dict[str, Any] = Depends(get_current_user)):
    text = _require_text(payload)
    extraction = await ai_service.extract_fields(text, payload.documentType)
    flat = {name: field["value"] for name, field in extraction["fields"].items()}
    validation = await ai_service.validate_and_enhance(flat, extraction["documentType"])
    return {"success": True, "message": None, "data": {**extraction, "validation": validation}}


@router.post("/suggest")
async def suggest(payload: SuggestRequest, user: Dict[str, Any] = Depends(get_current_user)):
    suggestions = await ai_service.get_field_suggestions(payload.fieldName, payload.partialValue, payload.context)
    return {"success": True, "message": None, "data": {"field": payload.fieldName, "suggestions": suggestions}}


@router.post("/summary")
async def summary(payload: TextRequest, user: Dict[str, Any] = Depends(get_current_user)):
    text = _require_text(payload)
    document_type = payload.documentType or await ai_service.detect_document_type(text)
    result = await ai_service.generate_summary(text, document_type)
    return {"success": True, "message": None, "data": {"documentType": document_type, "summary": result}}
