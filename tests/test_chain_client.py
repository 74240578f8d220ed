import asyncio
import json

import httpx
import pytest
from eth_account import Account

from app.core.config import Settings
from app.services.chain_client import (
    ChainClient,
    ChainRejectedError,
    ChainUnavailableError,
    ConfigurationError,
    LookupStatus,
    decode_input_data,
    explorer_url,
    intrinsic_gas,
)
from app.services.hasher import tag_digest
from tests.conftest import HELLO_DIGEST, TEST_ADDRESS, TEST_PRIVATE_KEY

TX_ID = "0x" + "ab" * 32


def rpc_client(handlers):
    """AsyncClient whose JSON-RPC calls are answered from a method -> outcome map"""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append({"body": body, "timeout": request.extensions.get("timeout")})
        outcome = handlers[body["method"]]
        if callable(outcome):
            outcome = outcome(body)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, httpx.Response):
            return outcome
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], **outcome})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), calls


def happy_handlers(sent):
    def send(body):
        sent.append(body["params"][0])
        return {"result": TX_ID.upper().replace("0X", "0x")}

    return {
        "eth_getTransactionCount": {"result": "0x5"},
        "eth_gasPrice": {"result": "0x6fc23ac00"},
        "eth_chainId": {"result": "0x13882"},
        "eth_sendRawTransaction": send,
    }


def methods(calls):
    return [c["body"]["method"] for c in calls]


def test_broadcast_signs_self_transaction_with_tagged_payload():
    sent = []
    http, calls = rpc_client(happy_handlers(sent))
    client = ChainClient("http://rpc.test", private_key=TEST_PRIVATE_KEY, http_client=http)

    result = asyncio.run(client.broadcast_tagged_digest(HELLO_DIGEST))

    assert result.ok
    assert result.tx_id == TX_ID
    assert result.from_address == TEST_ADDRESS
    assert methods(calls) == [
        "eth_getTransactionCount", "eth_gasPrice", "eth_chainId", "eth_sendRawTransaction",
    ]
    assert calls[0]["body"]["params"] == [TEST_ADDRESS, "pending"]

    raw = sent[0]
    assert raw.startswith("0x")
    assert Account.recover_transaction(raw) == TEST_ADDRESS
    assert tag_digest(HELLO_DIGEST).encode("utf-8").hex() in raw


def test_build_transaction_fields():
    client = ChainClient("http://rpc.test", private_key=TEST_PRIVATE_KEY,
                         http_client=httpx.AsyncClient())
    data = tag_digest(HELLO_DIGEST).encode("utf-8")
    tx = client.build_transaction(data, nonce=7, gas_price=30, chain_id=80002)
    assert tx["to"] == TEST_ADDRESS
    assert tx["value"] == 0
    assert tx["nonce"] == 7
    assert tx["chainId"] == 80002
    assert tx["gas"] == 21000 + 16 * 74


def test_gas_limit_override():
    client = ChainClient("http://rpc.test", private_key=TEST_PRIVATE_KEY, gas_limit=50000,
                         http_client=httpx.AsyncClient())
    tx = client.build_transaction(b"x", nonce=0, gas_price=1, chain_id=1)
    assert tx["gas"] == 50000


def test_intrinsic_gas_counts_zero_bytes_cheaper():
    assert intrinsic_gas(b"") == 21000
    assert intrinsic_gas(b"\x00\x01") == 21000 + 4 + 16


def test_missing_key_is_configuration_error_without_network():
    http, calls = rpc_client({})
    client = ChainClient("http://rpc.test", private_key=None, http_client=http)
    assert not client.can_sign
    with pytest.raises(ConfigurationError):
        asyncio.run(client.broadcast_tagged_digest(HELLO_DIGEST))
    assert calls == []


def test_invalid_key_is_configuration_error():
    http, calls = rpc_client({})
    client = ChainClient("http://rpc.test", private_key="not-a-key", http_client=http)
    assert client.address is None
    with pytest.raises(ConfigurationError):
        asyncio.run(client.broadcast_tagged_digest(HELLO_DIGEST))
    assert calls == []


def test_preliminary_read_failure_is_unavailable_and_nothing_sent():
    http, calls = rpc_client({
        "eth_getTransactionCount": {"result": "0x1"},
        "eth_gasPrice": httpx.ConnectError("connection refused"),
    })
    client = ChainClient("http://rpc.test", private_key=TEST_PRIVATE_KEY, http_client=http)

    result = asyncio.run(client.broadcast_tagged_digest(HELLO_DIGEST))

    assert not result.ok
    assert isinstance(result.error, ChainUnavailableError)
    assert "eth_sendRawTransaction" not in methods(calls)


def test_server_error_is_unavailable():
    http, _ = rpc_client({"eth_getTransactionCount": httpx.Response(503, text="upstream down")})
    client = ChainClient("http://rpc.test", private_key=TEST_PRIVATE_KEY, http_client=http)
    result = asyncio.run(client.broadcast_tagged_digest(HELLO_DIGEST))
    assert isinstance(result.error, ChainUnavailableError)
    assert "503" in str(result.error)


def test_timeout_is_unavailable():
    http, _ = rpc_client({"eth_getTransactionCount": httpx.ReadTimeout("timed out")})
    client = ChainClient("http://rpc.test", private_key=TEST_PRIVATE_KEY, http_client=http)
    result = asyncio.run(client.broadcast_tagged_digest(HELLO_DIGEST))
    assert isinstance(result.error, ChainUnavailableError)


def test_node_rejection_preserves_message():
    handlers = happy_handlers([])
    handlers["eth_sendRawTransaction"] = {
        "error": {"code": -32000, "message": "insufficient funds for gas * price + value"}
    }
    http, _ = rpc_client(handlers)
    client = ChainClient("http://rpc.test", private_key=TEST_PRIVATE_KEY, http_client=http)

    result = asyncio.run(client.broadcast_tagged_digest(HELLO_DIGEST))

    assert isinstance(result.error, ChainRejectedError)
    assert result.error.message == "insufficient funds for gas * price + value"
    assert result.error.code == -32000


def test_per_call_timeout_reaches_transport():
    http, calls = rpc_client({"eth_getTransactionByHash": {"result": None}})
    client = ChainClient("http://rpc.test", timeout=15.0, http_client=http)
    asyncio.run(client.fetch_tagged_payload(TX_ID, timeout=2.5))
    assert calls[0]["timeout"]["read"] == 2.5


def test_fetch_decodes_payload():
    payload = tag_digest(HELLO_DIGEST)
    http, calls = rpc_client({
        "eth_getTransactionByHash": {"result": {"hash": TX_ID, "input": "0x" + payload.encode().hex()}},
    })
    client = ChainClient("http://rpc.test", http_client=http)

    lookup = asyncio.run(client.fetch_tagged_payload(TX_ID))

    assert lookup.status == LookupStatus.FOUND
    assert lookup.payload == payload
    assert calls[0]["body"]["params"] == [TX_ID]


def test_fetch_unknown_transaction_is_not_found():
    http, _ = rpc_client({"eth_getTransactionByHash": {"result": None}})
    client = ChainClient("http://rpc.test", http_client=http)
    lookup = asyncio.run(client.fetch_tagged_payload(TX_ID))
    assert lookup.status == LookupStatus.NOT_FOUND
    assert lookup.payload is None


def test_fetch_empty_data_is_found_with_empty_payload():
    http, _ = rpc_client({"eth_getTransactionByHash": {"result": {"hash": TX_ID, "input": "0x"}}})
    client = ChainClient("http://rpc.test", http_client=http)
    lookup = asyncio.run(client.fetch_tagged_payload(TX_ID))
    assert lookup.status == LookupStatus.FOUND
    assert lookup.payload == ""


def test_fetch_malformed_id_skips_network():
    http, calls = rpc_client({})
    client = ChainClient("http://rpc.test", http_client=http)
    lookup = asyncio.run(client.fetch_tagged_payload("0xabc123"))
    assert lookup.status == LookupStatus.NOT_FOUND
    assert calls == []


def test_fetch_network_failure_is_unavailable():
    http, _ = rpc_client({"eth_getTransactionByHash": httpx.ConnectError("refused")})
    client = ChainClient("http://rpc.test", http_client=http)
    lookup = asyncio.run(client.fetch_tagged_payload(TX_ID))
    assert lookup.status == LookupStatus.UNAVAILABLE
    assert isinstance(lookup.error, ChainUnavailableError)


def test_network_status_reports_chain_id():
    http, _ = rpc_client({"eth_chainId": {"result": "0x13882"}})
    client = ChainClient("http://rpc.test", private_key=TEST_PRIVATE_KEY, http_client=http)
    status = asyncio.run(client.network_status())
    assert status["connected"] is True
    assert status["chain_id"] == 80002
    assert status["signer_address"] == TEST_ADDRESS


def test_network_status_uses_the_clients_own_network():
    http, _ = rpc_client({"eth_chainId": {"result": "0x89"}})
    config = Settings(POLYGON_NETWORK="mainnet", POLYGON_NETWORK_LABEL="Polygon PoS Mainnet")
    client = ChainClient.from_settings(config, http_client=http)

    status = asyncio.run(client.network_status())

    assert status["network"] == "Polygon PoS Mainnet"
    assert status["explorer"] == "https://polygonscan.com"
    assert status["chain_id"] == 137


def test_network_status_explicit_labels():
    http, _ = rpc_client({"eth_chainId": {"result": "0x13882"}})
    client = ChainClient("http://rpc.test", http_client=http,
                         network_label="Local devnet", explorer_base_url="https://scan.example/")
    status = asyncio.run(client.network_status())
    assert status["network"] == "Local devnet"
    assert status["explorer"] == "https://scan.example"


def test_decode_input_data_tolerates_invalid_utf8():
    assert decode_input_data("0xff") == "�"
    assert decode_input_data(None) == ""


def test_explorer_url():
    assert explorer_url(TX_ID) == f"https://amoy.polygonscan.com/tx/{TX_ID}"
    assert explorer_url(TX_ID, "https://polygonscan.com") == f"https://polygonscan.com/tx/{TX_ID}"
