"""ABI helpers for the soulbound reward contract."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

MINT_SIGNATURE = "mintSBT(address,uint256,string)"
MINT_SELECTOR = function_signature_to_4byte_selector(MINT_SIGNATURE)
TRANSFER_TOPIC = "0x" + keccak(text="Transfer(address,address,uint256)").hex()


def encode_mint_call(recipient: str, shop_id: int, token_uri: str) -> str:
    """Calldata for ``mintSBT(recipient, shopId, tokenURI)``."""

    arguments = encode(
        ["address", "uint256", "string"],
        [to_checksum_address(recipient), shop_id, token_uri],
    )
    return "0x" + (MINT_SELECTOR + arguments).hex()


def extract_token_id(logs: Iterable[Mapping[str, Any]]) -> str | None:
    """Token id from the ERC-721 ``Transfer`` event (topic 3) of a mint receipt."""

    fallback: str | None = None
    for entry in logs:
        topics = list(entry.get("topics") or [])
        if len(topics) < 4:
            continue
        token_id = str(int(str(topics[3]), 16))
        if str(topics[0]).lower() == TRANSFER_TOPIC:
            return token_id
        if fallback is None:
            fallback = token_id
    return fallback


__all__ = [
    "MINT_SELECTOR",
    "MINT_SIGNATURE",
    "TRANSFER_TOPIC",
    "encode_mint_call",
    "extract_token_id",
]
