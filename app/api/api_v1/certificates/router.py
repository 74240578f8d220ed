# =====================================================
# FILE: app/api/api_v1/certificates/router.py
# Certificate issuance and verification endpoints
# =====================================================

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form, Query, status
from typing import Optional
import httpx
import logging

from app.core.config import settings
from app.core.dependencies import (
    get_chain_client,
    get_document_client,
    get_host_resolver,
    get_notarization_service,
)
from app.api.api_v1.certificates.schemas import AnchorCheckRequest, CertificateOut, VerifyLinkRequest
from app.services.chain_client import ChainClient
from app.services.document_source import (
    DocumentFetchError,
    DocumentTooLargeError,
    HostResolver,
    InvalidDocumentLinkError,
    fetch_document,
)
from app.services.notarization_service import (
    CredentialMetadata,
    DuplicateCredentialError,
    NotarizationService,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/certificates", tags=["certificates"])


async def read_upload(file: UploadFile) -> bytes:
    """Read an uploaded document, enforcing MAX_UPLOAD_SIZE"""
    content = await file.read(settings.MAX_UPLOAD_SIZE + 1)
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.MAX_UPLOAD_SIZE} bytes"
        )
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    return content


# =====================================================
# ISSUANCE
# =====================================================

@router.post("/issue", status_code=status.HTTP_201_CREATED)
async def issue_certificate(
    file: UploadFile = File(...),
    hackathon_id: str = Form(...),
    student_user_id: str = Form(...),
    certificate_type: str = Form("participation"),
    file_url: Optional[str] = Form(None),
    axon_id: Optional[str] = Form(None),
    service: NotarizationService = Depends(get_notarization_service)
):
    """
    Hash the uploaded certificate, anchor the hash on Polygon and store
    the record. A chain failure still stores the certificate; the
    response then carries anchored=false and a warning.
    """
    try:
        content = await read_upload(file)
        logger.info(f"🔗 Issuing certificate for student {student_user_id} ({len(content)} bytes)")

        result = await service.issue(
            content,
            CredentialMetadata(
                hackathon_id=hackathon_id,
                student_user_id=student_user_id,
                certificate_type=certificate_type,
                file_url=file_url,
                axon_id=axon_id.strip() if axon_id and axon_id.strip() else None,
            ),
        )
        return result.to_dict()

    except HTTPException:
        raise
    except DuplicateCredentialError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"❌ Error issuing certificate: {str(e)}")
        import traceback
        logger.error(traceback.format_exc())
        raise HTTPException(status_code=500, detail="Certificate issuance failed")


# =====================================================
# VERIFICATION
# =====================================================

@router.get("/verify/{axon_id}")
async def verify_certificate_by_id(
    axon_id: str,
    service: NotarizationService = Depends(get_notarization_service)
):
    """Verify a certificate by its credential id (e.g. AXON-CERT-1A2B3C4D)"""
    try:
        result = await service.verify_by_credential_id(axon_id.strip())
        return result.to_dict()
    except Exception as e:
        logger.error(f"❌ Error verifying certificate {axon_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Verification failed")


@router.post("/verify-file")
async def verify_certificate_by_file(
    file: UploadFile = File(...),
    service: NotarizationService = Depends(get_notarization_service)
):
    """Verify a re-uploaded certificate file by its SHA-256 hash"""
    try:
        content = await read_upload(file)
        result = await service.verify_by_document(content)
        return result.to_dict()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Error verifying uploaded certificate: {str(e)}")
        raise HTTPException(status_code=500, detail="Verification failed")


@router.post("/verify-link")
async def verify_certificate_by_link(
    request: VerifyLinkRequest,
    service: NotarizationService = Depends(get_notarization_service),
    document_client: Optional[httpx.AsyncClient] = Depends(get_document_client),
    resolve: Optional[HostResolver] = Depends(get_host_resolver)
):
    """Download a certificate from a shared link and verify it by hash"""
    try:
        content = await fetch_document(request.url, client=document_client, resolve=resolve)
    except DocumentTooLargeError as e:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(e))
    except InvalidDocumentLinkError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DocumentFetchError as e:
        logger.warning(f"⚠️ Could not fetch document link: {str(e)}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Linked document is empty")

    try:
        result = await service.verify_by_document(content)
        return result.to_dict()
    except Exception as e:
        logger.error(f"❌ Error verifying linked certificate: {str(e)}")
        raise HTTPException(status_code=500, detail="Verification failed")


@router.post("/anchor-check")
async def check_anchor(
    request: AnchorCheckRequest,
    service: NotarizationService = Depends(get_notarization_service)
):
    """Check a transaction's payload against a certificate hash, chain only"""
    result = await service.check_anchor(request.tx_hash, request.certificate_hash)
    return result.to_dict()


# =====================================================
# RECONCILIATION / STATUS
# =====================================================

@router.get("/unanchored")
async def list_unanchored_certificates(
    limit: int = Query(100, ge=1, le=1000),
    service: NotarizationService = Depends(get_notarization_service)
):
    """Certificates stored without a blockchain reference"""
    records = service.list_unanchored(limit=limit)
    return {
        "success": True,
        "total": len(records),
        "certificates": [CertificateOut(**r.to_dict()).model_dump() for r in records]
    }


@router.get("/network-status")
async def get_network_status(
    chain_client: ChainClient = Depends(get_chain_client)
):
    status_info = await chain_client.network_status()
    return {
        "success": True,
        "network_status": status_info
    }
