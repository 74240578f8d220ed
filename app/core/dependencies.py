# =====================================================
# FILE: app/core/dependencies.py
# Request-scoped wiring of the notarization services
# =====================================================

from fastapi import Depends, Request
from sqlalchemy.orm import Session
from typing import Optional
import httpx
import logging

from app.core.database import get_db
from app.services.certificate_store import CertificateStore
from app.services.chain_client import ChainClient
from app.services.document_source import HostResolver
from app.services.notarization_service import NotarizationService

logger = logging.getLogger(__name__)


def get_chain_client(request: Request) -> ChainClient:
    """The process-wide chain client created in the app lifespan"""
    return request.app.state.chain_client


def get_document_client(request: Request) -> Optional[httpx.AsyncClient]:
    return getattr(request.app.state, "document_client", None)


def get_certificate_store(db: Session = Depends(get_db)) -> CertificateStore:
    return CertificateStore(db)


def get_notarization_service(
    chain_client: ChainClient = Depends(get_chain_client),
    store: CertificateStore = Depends(get_certificate_store),
) -> NotarizationService:
    return NotarizationService(chain_client, store)


def get_host_resolver(request: Request) -> Optional[HostResolver]:
    """DNS lookup used to vet document links; None means the system resolver"""
    return getattr(request.app.state, "host_resolver", None)
