import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from ..config import settings
from ..models.schemas import BulkIssueRequest
from ..services.batch_service import BatchValidationError, batch_service, parse_csv_records
from ..services.certificate_service import certificate_service
from ..utils.logging import logger
from .deps import require_issuer

router = APIRouter(prefix="/api", tags=["Certificates"])


@router.post("/upload", status_code=201)
async def upload_certificate(
    request: Request,
    background_tasks: BackgroundTasks,
    document: UploadFile = File(...),
    title: Optional[str] = Form(None),
    recipientName: Optional[str] = Form(None),
    recipientEmail: Optional[str] = Form(None),
    user: Dict[str, Any] = Depends(require_issuer),
):
    start_time = time.time()
    logger.log_step("upload_request_received", {
        "client": request.client.host if request.client else "unknown",
        "filename": document.filename,
        "content_type": document.content_type
    })

    try:
        issued = await certificate_service.issue(document, title, user, recipientName, recipientEmail)
    except ValueError as ve:
        logger.log_error("upload_validation_error", {
            "error": str(ve),
            "process_time": time.time() - start_time
        })
        raise HTTPException(status_code=400, detail=str(ve))

    background_tasks.add_task(certificate_service.run_extraction, issued["certificateId"])
    logger.log_step("upload_completed", {
        "certificate_id": issued["certificateId"],
        "process_time": time.time() - start_time
    })
    return {"success": True, "message": "Certificate issued successfully", "data": issued}


@router.get("/certificates")
async def list_certificates(
    status: Optional[str] = None,
    batchId: Optional[str] = None,
    user: Dict[str, Any] = Depends(require_issuer),
):
    certificates = certificate_service.list_certificates(user, status=status, batch_id=batchId)
    return {
        "success": True,
        "message": f"{len(certificates)} certificate(s)",
        "data": certificates,
    }


def _bulk_response(title: str, records, document_type: str, user: Dict[str, Any]):
    try:
        batch = batch_service.issue_batch(title, records, user, document_type)
    except BatchValidationError as be:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": str(be), "data": {"errors": be.errors}},
        )
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))

    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "message": f"Issued {batch['documentCount']} certificates in batch {batch['batchId']}",
            "data": batch,
        },
    )


@router.post("/certificates/bulk", status_code=201)
async def bulk_issue(payload: BulkIssueRequest, user: Dict[str, Any] = Depends(require_issuer)):
    return _bulk_response(payload.title, payload.records, payload.documentType, user)


@router.post("/certificates/bulk/csv", status_code=201)
async def bulk_issue_csv(
    file: UploadFile = File(...),
    title: str = Form("Untitled Batch"),
    documentType: str = Form("certificate"),
    user: Dict[str, Any] = Depends(require_issuer),
):
    content = await file.read()
    if len(content) > settings.max_file_size_bytes:
        raise HTTPException(status_code=400, detail=f"CSV exceeds {settings.MAX_FILE_SIZE_MB} MB")
    try:
        records = parse_csv_records(content)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    return _bulk_response(title, records, documentType, user)


@router.get("/certificates/{certificate_id}")
async def get_certificate(certificate_id: str, user: Dict[str, Any] = Depends(require_issuer)):
    try:
        certificate = certificate_service.get_certificate(certificate_id, user)
    except PermissionError as pe:
        raise HTTPException(status_code=403, detail=str(pe))
    if not certificate:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return {"success": True, "message": None, "data": certificate}


@router.post("/certificates/{certificate_id}/revoke")
async def revoke_certificate(certificate_id: str, user: Dict[str, Any] = Depends(require_issuer)):
    try:
        certificate = certificate_service.revoke(certificate_id, user)
    except PermissionError as pe:
        raise HTTPException(status_code=403, detail=str(pe))
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    if not certificate:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return {"success": True, "message": "Certificate revoked", "data": certificate}


@router.delete("/certificates/{certificate_id}")
async def delete_certificate(certificate_id: str, user: Dict[str, Any] = Depends(require_issuer)):
    try:
        deleted = certificate_service.delete(certificate_id, user)
    except PermissionError as pe:
        raise HTTPException(status_code=403, detail=str(pe))
    if not deleted:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return {"success": True, "message": "Certificate deleted", "data": None}
