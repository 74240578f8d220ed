# =====================================================
# FILE: app/services/chain_client.py
# Minimal Ethereum JSON-RPC client for Polygon certificate anchoring
# =====================================================

import asyncio
import itertools
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from eth_account import Account

from app.core.config import settings
from app.services.hasher import tag_digest

logger = logging.getLogger(__name__)

_TX_ID_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

# Yellow paper intrinsic gas for a plain transaction with calldata
TX_BASE_GAS = 21000
TX_DATA_ZERO_GAS = 4
TX_DATA_NONZERO_GAS = 16


# =====================================================
# ERRORS
# =====================================================

class ChainError(Exception):
    """Base class for chain client failures"""


class ConfigurationError(ChainError):
    """Signing key missing or unusable; nothing was submitted"""


class ChainUnavailableError(ChainError):
    """RPC endpoint unreachable, timed out, or answered with a server error"""


class ChainRejectedError(ChainError):
    """Node refused the transaction; message is the node's own"""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code


# =====================================================
# RESULTS
# =====================================================

@dataclass(frozen=True)
class BroadcastResult:
    tx_id: Optional[str] = None
    from_address: Optional[str] = None
    error: Optional[ChainError] = None

    @property
    def ok(self) -> bool:
        return self.tx_id is not None and self.error is None


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class PayloadLookup:
    status: LookupStatus
    payload: Optional[str] = None
    error: Optional[ChainUnavailableError] = None

    @property
    def found(self) -> bool:
        return self.status == LookupStatus.FOUND


# =====================================================
# HELPERS
# =====================================================

def explorer_url(tx_id: str, base_url: Optional[str] = None) -> str:
    """Human-facing polygonscan link for a transaction"""
    base = (base_url or settings.explorer_base_url).rstrip("/")
    return f"{base}/tx/{tx_id}"


def intrinsic_gas(data: bytes) -> int:
    zeros = data.count(0)
    return TX_BASE_GAS + zeros * TX_DATA_ZERO_GAS + (len(data) - zeros) * TX_DATA_NONZERO_GAS


def is_tx_id(value: Optional[str]) -> bool:
    return bool(value) and _TX_ID_RE.match(value) is not None


def _hex_to_int(value: Any, field: str) -> int:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise ChainUnavailableError(f"Malformed {field} from RPC: {value!r}")
    try:
        return int(value, 16)
    except ValueError as e:
        raise ChainUnavailableError(f"Malformed {field} from RPC: {value!r}") from e


def decode_input_data(data: Optional[str]) -> str:
    """Decode a transaction's hex data field as UTF-8 text"""
    if not data:
        return ""
    raw = data[2:] if data.startswith("0x") else data
    try:
        return bytes.fromhex(raw).decode("utf-8", errors="replace")
    except ValueError:
        # not hex at all; hand back as-is so the comparison fails loudly
        return data


# =====================================================
# CLIENT
# =====================================================

class ChainClient:
    """
    Long-lived JSON-RPC client bound to one endpoint and, optionally,
    one signing key. Construct once at startup and share across requests.

    Every RPC call honours a per-call timeout (falling back to the
    configured default) so a hung node cannot stall the caller.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: Optional[str] = None,
        timeout: float = 15.0,
        gas_limit: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        network_label: Optional[str] = None,
        explorer_base_url: Optional[str] = None,
    ):
        self.rpc_url = rpc_url
        self.network_label = network_label or settings.POLYGON_NETWORK_LABEL
        self.explorer_base_url = (explorer_base_url or settings.explorer_base_url).rstrip("/")
        self.timeout = timeout
        self.gas_limit = gas_limit
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None
        self._ids = itertools.count(1)
        self._send_lock = asyncio.Lock()

        self._account = None
        self._key_error: Optional[Exception] = None
        if private_key:
            try:
                self._account = Account.from_key(private_key)
            except Exception as e:
                self._key_error = e
                logger.error(f"❌ POLYGON_PRIVATE_KEY is not a valid secp256k1 key: {type(e).__name__}")

        logger.info(
            f"🔗 Chain client ready ({'signing as ' + self._account.address if self._account else 'read-only'})"
        )

    @classmethod
    def from_settings(cls, config=settings, http_client: Optional[httpx.AsyncClient] = None) -> "ChainClient":
        return cls(
            rpc_url=config.POLYGON_RPC_URL,
            private_key=config.POLYGON_PRIVATE_KEY,
            timeout=config.RPC_TIMEOUT,
            gas_limit=config.CHAIN_GAS_LIMIT,
            http_client=http_client,
            network_label=config.POLYGON_NETWORK_LABEL,
            explorer_base_url=config.explorer_base_url,
        )

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    @property
    def can_sign(self) -> bool:
        return self._account is not None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # -------------------------------------------------
    # JSON-RPC transport
    # -------------------------------------------------

    async def _call(
        self,
        method: str,
        params: List[Any],
        timeout: Optional[float] = None,
        rejectable: bool = False,
    ) -> Any:
        """
        POST one JSON-RPC 2.0 request. Transport failures, timeouts and
        HTTP errors raise ChainUnavailableError. A JSON-RPC error object
        raises ChainRejectedError when rejectable, else ChainUnavailableError.
        """
        body = {"jsonrpc": "2.0", "method": method, "params": params, "id": next(self._ids)}
        try:
            response = await self._http.post(
                self.rpc_url,
                json=body,
                headers={"Content-Type": "application/json"},
                timeout=timeout if timeout is not None else self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            raise ChainUnavailableError(f"{method} timed out") from e
        except httpx.HTTPStatusError as e:
            raise ChainUnavailableError(f"{method} failed with HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ChainUnavailableError(f"{method} failed: {str(e) or type(e).__name__}") from e
        except ValueError as e:
            raise ChainUnavailableError(f"{method} returned a non-JSON response") from e

        if not isinstance(payload, dict):
            raise ChainUnavailableError(f"{method} returned an unexpected response")

        error = payload.get("error")
        if error:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            if rejectable:
                raise ChainRejectedError(message, code=code)
            raise ChainUnavailableError(f"{method} error: {message}")

        return payload.get("result")

    async def get_chain_id(self, timeout: Optional[float] = None) -> int:
        return _hex_to_int(await self._call("eth_chainId", [], timeout), "chainId")

    async def get_nonce(self, address: str, timeout: Optional[float] = None) -> int:
        # "pending" so back-to-back issuances don't reuse an in-flight nonce
        result = await self._call("eth_getTransactionCount", [address, "pending"], timeout)
        return _hex_to_int(result, "nonce")

    async def get_gas_price(self, timeout: Optional[float] = None) -> int:
        return _hex_to_int(await self._call("eth_gasPrice", [], timeout), "gasPrice")

    # -------------------------------------------------
    # Public operations
    # -------------------------------------------------

    def build_transaction(self, data: bytes, nonce: int, gas_price: int, chain_id: int) -> Dict[str, Any]:
        """Legacy EIP-155 self-transaction carrying data, value 0"""
        return {
            "to": self._account.address,
            "value": 0,
            "data": "0x" + data.hex(),
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": self.gas_limit or intrinsic_gas(data),
            "chainId": chain_id,
        }

    async def broadcast_tagged_digest(self, document_hash: str, timeout: Optional[float] = None) -> BroadcastResult:
        """
        Sign and submit a self-transaction whose data is AXON:CERT:<digest>.

        Raises ConfigurationError before any network call when no usable
        signing key is configured. Chain-side failures come back in the
        result, never as exceptions.
        """
        if self._account is None:
            if self._key_error is not None:
                raise ConfigurationError("POLYGON_PRIVATE_KEY is invalid") from self._key_error
            raise ConfigurationError("POLYGON_PRIVATE_KEY not configured")

        data = tag_digest(document_hash).encode("utf-8")
        address = self._account.address

        async with self._send_lock:
            try:
                nonce = await self.get_nonce(address, timeout)
                gas_price = await self.get_gas_price(timeout)
                chain_id = await self.get_chain_id(timeout)
            except ChainUnavailableError as e:
                logger.warning(f"⚠️ Chain unavailable while preparing transaction: {str(e)}")
                return BroadcastResult(from_address=address, error=e)

            tx = self.build_transaction(data, nonce, gas_price, chain_id)
            try:
                signed = self._account.sign_transaction(tx)
            except (TypeError, ValueError) as e:
                logger.error(f"❌ Could not sign transaction: {str(e)}")
                return BroadcastResult(from_address=address, error=ChainRejectedError(f"malformed transaction: {e}"))

            raw = "0x" + bytes(signed.raw_transaction).hex()
            try:
                tx_id = await self._call("eth_sendRawTransaction", [raw], timeout, rejectable=True)
            except ChainRejectedError as e:
                logger.error(f"❌ Node rejected transaction (code={e.code}): {e.message}")
                return BroadcastResult(from_address=address, error=e)
            except ChainUnavailableError as e:
                logger.warning(f"⚠️ Chain unavailable while submitting transaction: {str(e)}")
                return BroadcastResult(from_address=address, error=e)

        if not isinstance(tx_id, str) or not tx_id:
            return BroadcastResult(
                from_address=address,
                error=ChainRejectedError("node accepted the request but returned no transaction hash"),
            )

        tx_id = tx_id.lower()
        logger.info(f"✅ Broadcast {tx_id} (nonce={nonce}, chainId={chain_id})")
        return BroadcastResult(tx_id=tx_id, from_address=address)

    async def fetch_tagged_payload(self, tx_id: str, timeout: Optional[float] = None) -> PayloadLookup:
        """
        Look a transaction up by hash and decode its data field as UTF-8.
        Unknown or malformed ids come back as NOT_FOUND, distinct from an
        empty payload.
        """
        if not is_tx_id(tx_id):
            logger.info(f"🔍 {tx_id!r} is not a transaction hash; treating as not found")
            return PayloadLookup(status=LookupStatus.NOT_FOUND)

        try:
            tx = await self._call("eth_getTransactionByHash", [tx_id], timeout)
        except ChainUnavailableError as e:
            logger.warning(f"⚠️ Chain unavailable while fetching {tx_id}: {str(e)}")
            return PayloadLookup(status=LookupStatus.UNAVAILABLE, error=e)

        if not tx:
            return PayloadLookup(status=LookupStatus.NOT_FOUND)

        data = tx.get("input") if isinstance(tx, dict) else None
        if data is None and isinstance(tx, dict):
            data = tx.get("data")
        return PayloadLookup(status=LookupStatus.FOUND, payload=decode_input_data(data))

    async def network_status(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        status = {
            "network": self.network_label,
            "explorer": self.explorer_base_url,
            "signer_address": self.address,
            "can_sign": self.can_sign,
            "connected": False,
            "chain_id": None,
        }
        try:
            status["chain_id"] = await self.get_chain_id(timeout)
            status["connected"] = True
        except ChainUnavailableError as e:
            status["error"] = str(e)
        return status
