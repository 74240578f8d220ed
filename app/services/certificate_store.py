# =====================================================
# FILE: app/services/certificate_store.py
# Keyed access to certificate records (insert / lookup only)
# =====================================================

from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from app.models.certificate import Certificate

logger = logging.getLogger(__name__)


class CertificateStore:
    """Persistence for certificate records. Records are written once and never updated."""

    def __init__(self, db: Session):
        self.db = db

    def insert(self, record: Certificate) -> Certificate:
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"💾 Stored certificate {record.axon_id}")
        return record

    def find_by_credential_id(self, axon_id: str) -> Optional[Certificate]:
        return self.db.query(Certificate).filter(Certificate.axon_id == axon_id).first()

    def find_by_digest(self, document_hash: str) -> Optional[Certificate]:
        """Earliest record issued for this digest"""
        return (
            self.db.query(Certificate)
            .filter(Certificate.hash == document_hash)
            .order_by(Certificate.created_at.asc(), Certificate.id.asc())
            .first()
        )

    def exists(self, axon_id: str) -> bool:
        return self.db.query(Certificate.id).filter(Certificate.axon_id == axon_id).first() is not None

    def list_unanchored(self, limit: int = 100) -> List[Certificate]:
        """Records issued without a chain reference, oldest first, for reconciliation"""
        return (
            self.db.query(Certificate)
            .filter(Certificate.blockchain_tx.is_(None))
            .order_by(Certificate.created_at.asc())
            .limit(limit)
            .all()
        )
