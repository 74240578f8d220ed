# =====================================================
# FILE: app/services/notarization_service.py
# Certificate issuance (hash -> anchor -> persist) and verification
# =====================================================

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.models.certificate import Certificate
from app.services import hasher
from app.services.certificate_store import CertificateStore
from app.services.chain_client import (
    ChainClient,
    ChainError,
    ChainRejectedError,
    ConfigurationError,
    LookupStatus,
    explorer_url,
)

logger = logging.getLogger(__name__)


class DuplicateCredentialError(ValueError):
    """A certificate with this credential identifier already exists"""


def _failure_kind(error: Exception) -> str:
    if isinstance(error, ConfigurationError):
        return "configuration"
    if isinstance(error, ChainRejectedError):
        return "chain rejected"
    return "chain unavailable"


class NotarizationActivityLogger:
    """Collects the steps of one issuance for display to the issuer"""

    def __init__(self, axon_id: Optional[str] = None):
        self.axon_id = axon_id
        self.activities: List[Dict[str, Any]] = []

    def log_activity(self, step: str, status: str, details: str, metadata: dict = None):
        activity = {
            "id": str(uuid.uuid4()),
            "axon_id": self.axon_id,
            "timestamp": datetime.utcnow().isoformat(),
            "step": step,
            "status": status,  # 'processing', 'success', 'warning', 'error'
            "details": details,
            "metadata": metadata or {}
        }
        self.activities.append(activity)
        log = logger.warning if status in ("warning", "error") else logger.info
        log(f"🔗 [{step}] {details}")
        return activity

    def get_activities(self) -> List[Dict]:
        return self.activities


# =====================================================
# RESULT TYPES
# =====================================================

class VerificationStatus(str, Enum):
    NOT_VERIFIED = "NOT_VERIFIED"
    VERIFIED_DATABASE_ONLY = "VERIFIED_DATABASE_ONLY"
    VERIFIED_ON_CHAIN = "VERIFIED_ON_CHAIN"


class VerificationReason(str, Enum):
    NO_RECORD = "no_record"
    NO_CHAIN_REFERENCE = "no_chain_reference"
    CHAIN_NOT_FOUND = "chain_not_found"
    CHAIN_UNAVAILABLE = "chain_unavailable"
    PAYLOAD_MISMATCH = "payload_mismatch"


_MESSAGES = {
    (VerificationStatus.VERIFIED_ON_CHAIN, None): "Certificate hash matches blockchain record",
    (VerificationStatus.NOT_VERIFIED, VerificationReason.NO_RECORD): "No matching certificate record found",
    (VerificationStatus.VERIFIED_DATABASE_ONLY, VerificationReason.NO_CHAIN_REFERENCE):
        "Certificate issued by AXON but never anchored on chain",
    (VerificationStatus.VERIFIED_DATABASE_ONLY, VerificationReason.CHAIN_NOT_FOUND):
        "Certificate issued by AXON; on-chain transaction not found yet (pending or wrong network)",
    (VerificationStatus.VERIFIED_DATABASE_ONLY, VerificationReason.CHAIN_UNAVAILABLE):
        "Certificate issued by AXON; blockchain could not be reached, on-chain check inconclusive",
    (VerificationStatus.VERIFIED_DATABASE_ONLY, VerificationReason.PAYLOAD_MISMATCH):
        "⚠️ On-chain payload does not match the stored certificate hash - possible tampering",
    (VerificationStatus.NOT_VERIFIED, VerificationReason.CHAIN_NOT_FOUND): "Transaction not found on chain",
    (VerificationStatus.NOT_VERIFIED, VerificationReason.CHAIN_UNAVAILABLE): "Blockchain could not be reached",
    (VerificationStatus.NOT_VERIFIED, VerificationReason.PAYLOAD_MISMATCH):
        "⚠️ On-chain payload does not match the supplied hash",
}


@dataclass
class VerificationResult:
    status: VerificationStatus
    reason: Optional[VerificationReason] = None
    record: Optional[Certificate] = None
    document_hash: Optional[str] = None
    tx_id: Optional[str] = None
    on_chain_payload: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.status != VerificationStatus.NOT_VERIFIED

    @property
    def mismatch(self) -> bool:
        return self.reason == VerificationReason.PAYLOAD_MISMATCH

    @property
    def message(self) -> str:
        return _MESSAGES.get((self.status, self.reason), self.status.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "verified": self.verified,
            "reason": self.reason.value if self.reason else None,
            "mismatch": self.mismatch,
            "message": self.message,
            "document_hash": self.document_hash,
            "blockchain_tx": self.tx_id,
            "on_chain_payload": self.on_chain_payload,
            "explorer_url": explorer_url(self.tx_id) if self.tx_id else None,
            "network": settings.POLYGON_NETWORK_LABEL,
            "certificate": self.record.to_dict() if self.record is not None else None,
        }


@dataclass
class CredentialMetadata:
    hackathon_id: str
    student_user_id: str
    certificate_type: str = "participation"
    file_url: Optional[str] = None
    axon_id: Optional[str] = None


@dataclass
class IssueResult:
    record: Certificate
    warning: Optional[str] = None
    activities: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def anchored(self) -> bool:
        return bool(self.record.blockchain_tx)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "anchored": self.anchored,
            "warning": self.warning,
            "explorer_url": explorer_url(self.record.blockchain_tx) if self.anchored else None,
            "network": settings.POLYGON_NETWORK_LABEL,
            "certificate": self.record.to_dict(),
            "activities": self.activities,
        }


# =====================================================
# SERVICE
# =====================================================

class NotarizationService:
    """
    Issue: digest the document, try to anchor it on chain, persist the
    record either way. Verify: find the record, then confirm its digest
    against the transaction payload. Chain failures never escape as
    exceptions; they become annotations on the result.
    """

    def __init__(self, chain_client: ChainClient, store: CertificateStore):
        self.chain = chain_client
        self.store = store

    def new_credential_id(self) -> str:
        for _ in range(5):
            candidate = f"{settings.CERTIFICATE_ID_PREFIX}{secrets.token_hex(4).upper()}"
            if not self.store.exists(candidate):
                return candidate
        raise RuntimeError("Could not allocate a unique certificate id")

    async def issue(
        self,
        document: bytes,
        metadata: CredentialMetadata,
        timeout: Optional[float] = None,
    ) -> IssueResult:
        if metadata.axon_id:
            if self.store.exists(metadata.axon_id):
                raise DuplicateCredentialError(f"Certificate {metadata.axon_id} already exists")
            axon_id = metadata.axon_id
        else:
            axon_id = self.new_credential_id()

        activity = NotarizationActivityLogger(axon_id)

        # Step 1: hash
        document_hash = hasher.digest(document)
        activity.log_activity(
            step="hash_generation",
            status="success",
            details=f"Generated SHA-256 hash: {document_hash[:16]}...{document_hash[-16:]}",
            metadata={"hash_algorithm": "SHA-256", "size": len(document), "full_hash": document_hash}
        )

        # Step 2: anchor
        tx_id = None
        warning = None
        anchor_error = None
        failure = None
        activity.log_activity(
            step="blockchain_submission",
            status="processing",
            details=f"Submitting tagged hash to {settings.POLYGON_NETWORK_LABEL}"
        )
        try:
            result = await self.chain.broadcast_tagged_digest(document_hash, timeout=timeout)
        except ChainError as e:
            # ConfigurationError included: only the chain half is skipped
            failure = e
        else:
            if result.ok:
                tx_id = result.tx_id
                activity.log_activity(
                    step="blockchain_submission",
                    status="success",
                    details=f"Transaction accepted by node: {tx_id}",
                    metadata={"transaction_hash": tx_id, "from": result.from_address,
                              "explorer_url": explorer_url(tx_id)}
                )
            else:
                failure = result.error

        if failure is not None:
            kind = _failure_kind(failure)
            warning = f"Certificate saved without blockchain anchor: {kind} ({str(failure)})"
            anchor_error = f"{kind}: {str(failure)}"
            activity.log_activity(
                step="blockchain_submission",
                status="error" if kind == "configuration" else "warning",
                details=warning,
                metadata={"error_type": type(failure).__name__}
            )

        # Step 3: persist
        record = Certificate(
            id=str(uuid.uuid4()),
            axon_id=axon_id,
            hackathon_id=metadata.hackathon_id,
            student_user_id=metadata.student_user_id,
            certificate_type=metadata.certificate_type or "participation",
            file_url=metadata.file_url,
            hash=document_hash,
            blockchain_tx=tx_id,
            verified=tx_id is not None,
            anchor_error=anchor_error,
        )
        record = self.store.insert(record)
        activity.log_activity(
            step="database_storage",
            status="success",
            details="Certificate record stored" + ("" if tx_id else " (flagged for anchor reconciliation)"),
            metadata={"certificate_id": record.id}
        )

        return IssueResult(record=record, warning=warning, activities=activity.get_activities())

    async def verify_by_credential_id(self, axon_id: str, timeout: Optional[float] = None) -> VerificationResult:
        record = self.store.find_by_credential_id(axon_id)
        if record is None:
            logger.info(f"🔍 No certificate with id {axon_id}")
            return VerificationResult(status=VerificationStatus.NOT_VERIFIED, reason=VerificationReason.NO_RECORD)
        return await self._verify_record(record, timeout)

    async def verify_by_document(self, document: bytes, timeout: Optional[float] = None) -> VerificationResult:
        document_hash = hasher.digest(document)
        record = self.store.find_by_digest(document_hash)
        if record is None:
            logger.info(f"🔍 No certificate with hash {document_hash[:16]}...")
            return VerificationResult(
                status=VerificationStatus.NOT_VERIFIED,
                reason=VerificationReason.NO_RECORD,
                document_hash=document_hash,
            )
        return await self._verify_record(record, timeout)

    async def _verify_record(self, record: Certificate, timeout: Optional[float]) -> VerificationResult:
        base = dict(record=record, document_hash=record.hash, tx_id=record.blockchain_tx)

        if not record.blockchain_tx:
            return VerificationResult(
                status=VerificationStatus.VERIFIED_DATABASE_ONLY,
                reason=VerificationReason.NO_CHAIN_REFERENCE,
                **base
            )

        lookup = await self.chain.fetch_tagged_payload(record.blockchain_tx, timeout=timeout)
        if lookup.status == LookupStatus.UNAVAILABLE:
            return VerificationResult(
                status=VerificationStatus.VERIFIED_DATABASE_ONLY,
                reason=VerificationReason.CHAIN_UNAVAILABLE,
                **base
            )
        if lookup.status == LookupStatus.NOT_FOUND:
            return VerificationResult(
                status=VerificationStatus.VERIFIED_DATABASE_ONLY,
                reason=VerificationReason.CHAIN_NOT_FOUND,
                **base
            )

        expected = hasher.tag_digest(record.hash) if hasher.is_digest(record.hash) else None
        if expected is not None and lookup.payload == expected:
            logger.info(f"✅ {record.axon_id} verified on chain ({record.blockchain_tx})")
            return VerificationResult(
                status=VerificationStatus.VERIFIED_ON_CHAIN,
                on_chain_payload=lookup.payload,
                **base
            )

        logger.warning(
            f"⚠️ Possible tampering: {record.axon_id} stored hash {record.hash} "
            f"but transaction {record.blockchain_tx} carries {lookup.payload!r}"
        )
        return VerificationResult(
            status=VerificationStatus.VERIFIED_DATABASE_ONLY,
            reason=VerificationReason.PAYLOAD_MISMATCH,
            on_chain_payload=lookup.payload,
            **base
        )

    async def check_anchor(self, tx_id: str, document_hash: str, timeout: Optional[float] = None) -> VerificationResult:
        """Compare a transaction's payload against a digest without consulting the database"""
        expected = hasher.tag_digest(document_hash.lower())
        base = dict(document_hash=document_hash.lower(), tx_id=tx_id)

        lookup = await self.chain.fetch_tagged_payload(tx_id, timeout=timeout)
        if lookup.status == LookupStatus.UNAVAILABLE:
            return VerificationResult(status=VerificationStatus.NOT_VERIFIED,
                                      reason=VerificationReason.CHAIN_UNAVAILABLE, **base)
        if lookup.status == LookupStatus.NOT_FOUND:
            return VerificationResult(status=VerificationStatus.NOT_VERIFIED,
                                      reason=VerificationReason.CHAIN_NOT_FOUND, **base)
        if lookup.payload == expected:
            return VerificationResult(status=VerificationStatus.VERIFIED_ON_CHAIN,
                                      on_chain_payload=lookup.payload, **base)

        logger.warning(f"⚠️ Transaction {tx_id} payload {lookup.payload!r} does not match {expected}")
        return VerificationResult(status=VerificationStatus.NOT_VERIFIED,
                                  reason=VerificationReason.PAYLOAD_MISMATCH,
                                  on_chain_payload=lookup.payload, **base)

    def list_unanchored(self, limit: int = 100) -> List[Certificate]:
        return self.store.list_unanchored(limit=limit)
