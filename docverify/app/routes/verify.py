from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse

from ..models.schemas import VerifyRequest
from ..services.certificate_service import certificate_service
from .deps import verification_rate_limit

router = APIRouter(prefix="/api", tags=["Verification"], dependencies=[Depends(verification_rate_limit)])


def _not_found(certificate_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "success": False,
            "status": "invalid",
            "message": f"Certificate {certificate_id} not found",
            "data": None,
        },
    )


@router.post("/verify")
async def verify_certificate(payload: VerifyRequest):
    certificate_id = (payload.certificateId or "").strip()
    if not certificate_id:
        raise HTTPException(status_code=400, detail="certificateId is required")

    result = certificate_service.verify(certificate_id, payload.accessKey)
    if not result:
        return _not_found(certificate_id)

    full_access = result["data"]["fullAccess"]
    return {
        "success": True,
        "status": result["status"],
        "message": "Full access granted" if full_access else "Basic verification",
        "data": result["data"],
    }


@router.get("/verify/quick/{certificate_id}")
async def quick_verify(certificate_id: str):
    result = certificate_service.quick_verify(certificate_id)
    if not result:
        return _not_found(certificate_id)
    return {
        "success": True,
        "status": result["status"],
        "cached": result["cached"],
        "message": None,
        "data": result["data"],
    }


@router.get("/download/{certificate_id}")
async def download_certificate(certificate_id: str, accessKey: Optional[str] = None):
    try:
        found = certificate_service.download(certificate_id, accessKey)
    except PermissionError as pe:
        raise HTTPException(status_code=403, detail=str(pe))
    if not found:
        raise HTTPException(status_code=404, detail="Certificate or file not found")

    certificate, file_bytes = found
    filename = certificate.get("originalFilename") or f"{certificate_id}"
    return Response(
        content=file_bytes,
        media_type=certificate.get("fileType") or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )
