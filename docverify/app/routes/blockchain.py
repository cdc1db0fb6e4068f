from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from ..models.schemas import BatchVerifyRequest
from ..services.batch_service import batch_service
from ..services.blockchain_service import PLACEHOLDER_HASH, blockchain_service
from ..services.certificate_service import certificate_service
from ..utils.logging import logger
from .deps import require_issuer, verification_rate_limit

router = APIRouter(prefix="/api/blockchain", tags=["Blockchain"])

GAS_OPERATIONS = ("register", "batch", "revoke")


@router.get("/status")
async def blockchain_status():
    return {"success": True, "message": None, "data": blockchain_service.status()}


@router.get("/stats")
async def blockchain_stats():
    return {"success": True, "message": None, "data": blockchain_service.get_stats()}


@router.post("/register/{certificate_id}")
async def register_certificate(certificate_id: str, user: Dict[str, Any] = Depends(require_issuer)):
    try:
        receipt = certificate_service.anchor(certificate_id, user)
    except PermissionError as pe:
        raise HTTPException(status_code=403, detail=str(pe))
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))

    if receipt is None:
        raise HTTPException(status_code=404, detail="Certificate not found")
    if not receipt.get("success"):
        return JSONResponse(
            status_code=409,
            content={"success": False, "message": receipt.get("message"), "data": receipt},
        )
    return {"success": True, "message": "Document anchored on blockchain", "data": receipt}


@router.get("/verify/{certificate_id}", dependencies=[Depends(verification_rate_limit)])
async def verify_on_chain(certificate_id: str):
    result = blockchain_service.verify_by_document_id(certificate_id)
    return {"success": True, "message": result.get("message"), "data": result}


@router.get("/gas/{operation}")
async def gas_estimate(
    operation: str,
    documentHash: Optional[str] = None,
    documentCount: int = Query(1, ge=1, le=500),
    user: Dict[str, Any] = Depends(require_issuer),
):
    if operation not in GAS_OPERATIONS:
        raise HTTPException(status_code=400, detail=f"Unknown operation '{operation}'")

    params: Dict[str, Any] = {}
    if documentHash:
        params["documentHash"] = documentHash
    if operation == "batch":
        # Distinct placeholder leaves so the tree has the requested size
        params["documentHashes"] = [
            "0x" + format(index + 1, "064x") for index in range(documentCount)
        ] if documentCount > 1 else [documentHash or PLACEHOLDER_HASH]

    report = blockchain_service.get_gas_estimation_report(operation, params)
    logger.log_step("gas_estimate_requested", {"operation": operation, "user_id": str(user["_id"])})
    return {"success": True, "message": None, "data": report}


@router.get("/batches/{batch_id}")
async def get_batch(batch_id: str):
    batch = batch_service.get_batch(batch_id)
    if not batch:
        raise HTTPException(status_code=404, detail="Batch not found")
    return {"success": True, "message": None, "data": batch}


@router.get("/batches/{batch_id}/proof/{certificate_id}")
async def get_batch_proof(batch_id: str, certificate_id: str):
    proof = batch_service.proof(batch_id, certificate_id)
    if not proof:
        raise HTTPException(status_code=404, detail="Document not found in batch")
    return {"success": True, "message": None, "data": proof}


@router.post("/batches/verify", dependencies=[Depends(verification_rate_limit)])
async def verify_batch_document(payload: BatchVerifyRequest):
    result = batch_service.verify_inclusion(payload.batchId, payload.documentHash, payload.proof)
    if result is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return {
        "success": True,
        "message": "Document is part of the batch" if result["verified"] else "Proof does not match batch root",
        "data": result,
    }
