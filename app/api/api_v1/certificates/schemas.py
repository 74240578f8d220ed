# =====================================================
# FILE: app/api/api_v1/certificates/schemas.py
# =====================================================

from pydantic import BaseModel, Field, field_validator
from typing import Optional

from app.services.hasher import is_digest
from app.services.chain_client import is_tx_id


class VerifyLinkRequest(BaseModel):
    url: str = Field(..., min_length=8, max_length=2048)


class AnchorCheckRequest(BaseModel):
    tx_hash: str
    certificate_hash: str

    @field_validator("tx_hash")
    @classmethod
    def check_tx_hash(cls, v: str) -> str:
        v = v.strip()
        if not is_tx_id(v):
            raise ValueError("tx_hash must be 0x followed by 64 hex characters")
        return v.lower()

    @field_validator("certificate_hash")
    @classmethod
    def check_certificate_hash(cls, v: str) -> str:
        v = v.strip().lower()
        if not is_digest(v):
            raise ValueError("certificate_hash must be a 64 character SHA-256 hex digest")
        return v


class CertificateOut(BaseModel):
    id: str
    axon_id: str
    hackathon_id: str
    student_user_id: str
    certificate_type: str
    file_url: Optional[str] = None
    hash: str
    blockchain_tx: Optional[str] = None
    verified: bool
    anchor_error: Optional[str] = None
    created_at: Optional[str] = None
