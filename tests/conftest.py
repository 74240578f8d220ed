from __future__ import annotations

import os

# Settings are read at import time; pin them before the app is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["POLYGON_RPC_URL"] = "http://rpc.test"
os.environ["POLYGON_NETWORK"] = "amoy"
os.environ.pop("POLYGON_PRIVATE_KEY", None)

from typing import Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from app.core.database import Base, build_engine
from app.services.certificate_store import CertificateStore
from app.services.chain_client import (
    BroadcastResult,
    ChainError,
    LookupStatus,
    PayloadLookup,
)
from app.services.notarization_service import NotarizationService

# Hardhat / Anvil development account #0, never funded on a real network
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

HELLO_DIGEST = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


class FakeChainClient:
    """Stand-in for ChainClient with scripted outcomes"""

    def __init__(
        self,
        tx_id: str = "0xabc123",
        broadcast_error: Optional[ChainError] = None,
        raise_on_broadcast: Optional[ChainError] = None,
        payloads: Optional[Dict[str, str]] = None,
        unavailable: bool = False,
    ):
        self.tx_id = tx_id
        self.broadcast_error = broadcast_error
        self.raise_on_broadcast = raise_on_broadcast
        self.payloads = payloads if payloads is not None else {}
        self.unavailable = unavailable
        self.broadcasts: List[str] = []
        self.fetches: List[str] = []

    @property
    def can_sign(self) -> bool:
        return True

    @property
    def address(self) -> str:
        return TEST_ADDRESS

    async def broadcast_tagged_digest(self, document_hash, timeout=None):
        self.broadcasts.append(document_hash)
        if self.raise_on_broadcast is not None:
            raise self.raise_on_broadcast
        if self.broadcast_error is not None:
            return BroadcastResult(from_address=TEST_ADDRESS, error=self.broadcast_error)
        return BroadcastResult(tx_id=self.tx_id, from_address=TEST_ADDRESS)

    async def fetch_tagged_payload(self, tx_id, timeout=None):
        self.fetches.append(tx_id)
        if self.unavailable:
            from app.services.chain_client import ChainUnavailableError

            return PayloadLookup(status=LookupStatus.UNAVAILABLE, error=ChainUnavailableError("node down"))
        if tx_id in self.payloads:
            return PayloadLookup(status=LookupStatus.FOUND, payload=self.payloads[tx_id])
        return PayloadLookup(status=LookupStatus.NOT_FOUND)

    async def network_status(self, timeout=None):
        return {"connected": True, "chain_id": 80002, "signer_address": TEST_ADDRESS, "can_sign": True}


@pytest.fixture
def engine():
    import app.models  # noqa: F401

    eng = build_engine("sqlite://")
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db_session):
    return CertificateStore(db_session)


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def service(chain, store):
    return NotarizationService(chain, store)
