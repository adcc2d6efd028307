import json

import httpx
import pytest

from sbt_rewards.models.rewards import MintFailureReason
from sbt_rewards.services.minting import (
    ContentStorageError,
    JsonRpcBlockchainClient,
    PinataClient,
    RpcError,
    classify_error,
    explorer_tx_url,
    gateway_url,
    is_retryable,
)
from sbt_rewards.services.minting.contract import MINT_SELECTOR, encode_mint_call, extract_token_id

RPC_URL = "https://rpc.test"


@pytest.mark.asyncio
async def test_json_rpc_client_hex_encodes_and_decodes() -> None:
    seen: list[dict] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        seen.append(payload)
        results = {
            "eth_gasPrice": "0x6fc23ac00",
            "eth_estimateGas": "0x186a0",
            "eth_getTransactionReceipt": {
                "transactionHash": "0xfeed",
                "status": "0x1",
                "blockNumber": "0x10",
                "gasUsed": "0x5208",
                "logs": [],
            },
        }
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": results[payload["method"]]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = JsonRpcBlockchainClient(RPC_URL, http_client=http_client)
        assert await client.gas_price() == 30_000_000_000
        assert await client.estimate_gas({"from": "0x1", "gas": 21000}) == 100_000
        receipt = await client.get_transaction_receipt("0xfeed")

    assert receipt.succeeded
    assert receipt.block_number == 16
    assert seen[1]["params"] == [{"from": "0x1", "gas": "0x5208"}]


@pytest.mark.asyncio
async def test_json_rpc_client_raises_error_objects_and_handles_pending_receipts() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if payload["method"] == "eth_call":
            error = {"code": 3, "message": "execution reverted: Soulbound", "data": "0x08c379a0"}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "error": error})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": None})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = JsonRpcBlockchainClient(RPC_URL, http_client=http_client)
        with pytest.raises(RpcError) as exc_info:
            await client.call({"to": "0x2"})
        assert await client.get_transaction_receipt("0xfeed") is None

    assert exc_info.value.code == 3
    assert classify_error(exc_info.value) == MintFailureReason.CONTRACT_REVERT


@pytest.mark.asyncio
async def test_pinata_client_pins_json_with_jwt() -> None:
    captured: dict = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"IpfsHash": "bafymeta", "PinSize": 10})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = PinataClient(base_url="https://pinata.test", jwt="secret", http_client=http_client)
        cid = await client.upload_json({"name": "Card"}, name="SBT Metadata - Card", metadata={"templateId": "t1"})

    assert cid == "bafymeta"
    assert captured["path"] == "/pinning/pinJSONToIPFS"
    assert captured["auth"] == "Bearer secret"
    assert captured["body"]["pinataContent"] == {"name": "Card"}
    assert captured["body"]["pinataMetadata"] == {"name": "SBT Metadata - Card", "keyvalues": {"templateId": "t1"}}


@pytest.mark.asyncio
async def test_pinata_client_uploads_files_with_key_pair() -> None:
    captured: dict = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["key"] = request.headers.get("pinata_api_key")
        captured["body"] = request.content
        return httpx.Response(200, json={"IpfsHash": "bafyimage"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = PinataClient(base_url="https://pinata.test", api_key="k", api_secret="s", http_client=http_client)
        cid = await client.upload_file(b"\x89PNG", name="card.png", mime_type="image/png")

    assert cid == "bafyimage"
    assert captured["path"] == "/pinning/pinFileToIPFS"
    assert captured["key"] == "k"
    assert b'filename="card.png"' in captured["body"]


@pytest.mark.asyncio
async def test_pinata_errors_become_storage_errors() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = PinataClient(jwt="secret", http_client=http_client)
        with pytest.raises(ContentStorageError):
            await client.upload_json({}, name="x")

    with pytest.raises(ContentStorageError):
        await PinataClient().upload_json({}, name="x")
    assert PinataClient().is_configured is False


def test_mint_calldata_starts_with_selector() -> None:
    calldata = encode_mint_call("0x" + "ab" * 20, 7, "ipfs://bafymeta")

    assert calldata.startswith("0x" + MINT_SELECTOR.hex())
    # selector + address + uint256 + string offset, length and padded bytes
    assert len(calldata) == 2 + 8 + 64 * 5


def test_extract_token_id_reads_transfer_topic() -> None:
    logs = [
        {"topics": ["0xdead"]},
        {"topics": ["0x" + "00" * 32, "0x0", "0x0", hex(99)]},
    ]

    assert extract_token_id(logs) == "99"
    assert extract_token_id([]) is None


def test_failure_classification_and_retryability() -> None:
    assert classify_error(RpcError(4001, "User denied transaction signature")) == MintFailureReason.USER_REJECTED
    assert classify_error(RpcError(-32603, "Internal JSON-RPC error")) == MintFailureReason.NETWORK_UNREACHABLE
    assert classify_error(RpcError(-1, "something odd")) == MintFailureReason.UNKNOWN
    assert classify_error(httpx.ReadTimeout("slow")) == MintFailureReason.NETWORK_UNREACHABLE
    assert classify_error(ValueError("boom")) == MintFailureReason.UNKNOWN

    assert is_retryable(MintFailureReason.NETWORK_UNREACHABLE)
    assert not is_retryable(MintFailureReason.CONTRACT_REVERT)


def test_explorer_links_fall_back_to_polygon() -> None:
    assert explorer_tx_url("0xabc", 11155111) == "https://sepolia.etherscan.io/tx/0xabc"
    assert explorer_tx_url("0xabc", 999999) == "https://polygonscan.com/tx/0xabc"
    assert gateway_url("ipfs://bafy", "https://gateway.test/ipfs/") == "https://gateway.test/ipfs/bafy"
