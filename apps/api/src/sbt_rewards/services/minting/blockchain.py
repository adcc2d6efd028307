"""JSON-RPC access to the chain hosting the reward contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import count
from typing import Any, Mapping, Protocol

import httpx
from loguru import logger


class RpcError(RuntimeError):
    """Error object returned by the node in a JSON-RPC response."""

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


@dataclass(slots=True)
class TransactionReceipt:
    transaction_hash: str
    status: int
    block_number: int | None = None
    gas_used: int | None = None
    logs: list[dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, payload: Mapping[str, Any]) -> "TransactionReceipt":
        return cls(
            transaction_hash=str(payload.get("transactionHash", "")),
            status=_from_hex(payload.get("status")) or 0,
            block_number=_from_hex(payload.get("blockNumber")),
            gas_used=_from_hex(payload.get("gasUsed")),
            logs=list(payload.get("logs") or []),
        )


class BlockchainClient(Protocol):
    """Subset of node interactions the minting pipeline depends on."""

    async def gas_price(self) -> int: ...

    async def estimate_gas(self, tx: Mapping[str, Any]) -> int: ...

    async def call(self, tx: Mapping[str, Any]) -> str: ...

    async def send_transaction(self, tx: Mapping[str, Any]) -> str: ...

    async def send_raw_transaction(self, raw: str) -> str: ...

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None: ...

    async def get_balance(self, address: str) -> int: ...


def _from_hex(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.startswith(("0x", "0X")) else int(text)


def to_rpc_transaction(tx: Mapping[str, Any]) -> dict[str, Any]:
    """Hex-encode integer quantities the way nodes expect them."""

    encoded: dict[str, Any] = {}
    for key, value in tx.items():
        if value is None:
            continue
        if isinstance(value, int) and not isinstance(value, bool):
            encoded[key] = hex(value)
        else:
            encoded[key] = value
    return encoded


class JsonRpcBlockchainClient:
    """Minimal Ethereum JSON-RPC client backed by ``httpx``."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not rpc_url:
            raise ValueError("RPC URL must be configured")
        self._rpc_url = rpc_url
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client
        self._ids = count(1)

    async def _request(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        if self._http_client is not None:
            response = await self._http_client.post(self._rpc_url, json=payload, timeout=self._timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(self._rpc_url, json=payload)
        response.raise_for_status()

        body = response.json()
        error = body.get("error") if isinstance(body, dict) else None
        if error:
            logger.debug("JSON-RPC error", method=method, code=error.get("code"), message=error.get("message"))
            raise RpcError(error.get("code"), str(error.get("message", "RPC error")), error.get("data"))
        if not isinstance(body, dict) or "result" not in body:
            raise RpcError(None, f"Malformed JSON-RPC response for {method}")
        return body["result"]

    async def gas_price(self) -> int:
        return _from_hex(await self._request("eth_gasPrice", [])) or 0

    async def estimate_gas(self, tx: Mapping[str, Any]) -> int:
        return _from_hex(await self._request("eth_estimateGas", [to_rpc_transaction(tx)])) or 0

    async def call(self, tx: Mapping[str, Any]) -> str:
        return str(await self._request("eth_call", [to_rpc_transaction(tx), "latest"]))

    async def send_transaction(self, tx: Mapping[str, Any]) -> str:
        return str(await self._request("eth_sendTransaction", [to_rpc_transaction(tx)]))

    async def send_raw_transaction(self, raw: str) -> str:
        return str(await self._request("eth_sendRawTransaction", [raw]))

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        result = await self._request("eth_getTransactionReceipt", [tx_hash])
        if not result:
            return None
        return TransactionReceipt.from_rpc(result)

    async def get_balance(self, address: str) -> int:
        return _from_hex(await self._request("eth_getBalance", [address, "latest"])) or 0


__all__ = [
    "BlockchainClient",
    "JsonRpcBlockchainClient",
    "RpcError",
    "TransactionReceipt",
    "to_rpc_transaction",
]
