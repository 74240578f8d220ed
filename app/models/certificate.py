# =====================================================
# FILE: app/models/certificate.py
# =====================================================

from sqlalchemy import Column, String, Text, Boolean, DateTime, Index
from sqlalchemy.sql import func
from datetime import datetime
from app.core.database import Base

class Certificate(Base):
    """Issued certificate and its on-chain anchor reference"""
    __tablename__ = "certificates"
    
    id = Column(String(36), primary_key=True)
    axon_id = Column(String(64), unique=True, nullable=False)
    hackathon_id = Column(String(36), nullable=False)
    student_user_id = Column(String(36), nullable=False)
    certificate_type = Column(String(50), nullable=False, default="participation")
    file_url = Column(Text)
    hash = Column(String(64), nullable=False)
    blockchain_tx = Column(String(66))  # NULL when anchoring was skipped
    verified = Column(Boolean, nullable=False, default=False)
    anchor_error = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, server_default=func.now())
    
    __table_args__ = (
        Index('ix_certificates_hash', 'hash'),
    )

    @property
    def anchored(self) -> bool:
        return bool(self.blockchain_tx)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "axon_id": self.axon_id,
            "hackathon_id": self.hackathon_id,
            "student_user_id": self.student_user_id,
            "certificate_type": self.certificate_type,
            "file_url": self.file_url,
            "hash": self.hash,
            "blockchain_tx": self.blockchain_tx,
            "verified": bool(self.verified),
            "anchor_error": self.anchor_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
