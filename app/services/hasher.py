# =====================================================
# FILE: app/services/hasher.py
# SHA-256 digests of certificate documents and the on-chain payload tag
# =====================================================

import hashlib
import re
from typing import Iterable, Optional

PAYLOAD_PREFIX = "AXON:CERT:"

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


def digest(content: bytes) -> str:
    """Compute SHA-256 hash of document bytes as 64 lowercase hex chars"""
    return hashlib.sha256(content).hexdigest()


def digest_stream(chunks: Iterable[bytes]) -> str:
    """Same digest as digest(), fed chunk by chunk"""
    h = hashlib.sha256()
    for chunk in chunks:
        h.update(chunk)
    return h.hexdigest()


def is_digest(value: Optional[str]) -> bool:
    return bool(value) and _DIGEST_RE.match(value) is not None


def tag_digest(document_hash: str) -> str:
    """
    Wrap a digest in the fixed AXON:CERT: prefix carried in the
    transaction data field. The format is shared with every certificate
    already on chain and must not change.
    """
    if not is_digest(document_hash):
        raise ValueError(f"Not a SHA-256 hex digest: {document_hash!r}")
    return f"{PAYLOAD_PREFIX}{document_hash}"


def untag_payload(payload: str) -> Optional[str]:
    """Return the digest inside a tagged payload, or None if it is not one"""
    if not payload or not payload.startswith(PAYLOAD_PREFIX):
        return None
    candidate = payload[len(PAYLOAD_PREFIX):]
    return candidate if is_digest(candidate) else None
