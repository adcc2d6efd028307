"""Transaction signing seam."""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from eth_utils import is_address, to_checksum_address


class WalletSigner(Protocol):
    @property
    def address(self) -> str: ...

    @property
    def chain_id(self) -> int: ...

    async def sign_transaction(self, tx: Mapping[str, Any]) -> str | None:
        """Return the raw signed transaction, or ``None`` to let the node sign it."""


class RpcAccountSigner:
    """Delegates signing to an account unlocked on the RPC node (``eth_sendTransaction``)."""

    def __init__(self, address: str, chain_id: int) -> None:
        if not is_address(address):
            raise ValueError(f"Invalid signer address {address!r}")
        self._address = to_checksum_address(address)
        self._chain_id = chain_id

    @property
    def address(self) -> str:
        return self._address

    @property
    def chain_id(self) -> int:
        return self._chain_id

    async def sign_transaction(self, tx: Mapping[str, Any]) -> str | None:
        return None


__all__ = ["RpcAccountSigner", "WalletSigner"]
