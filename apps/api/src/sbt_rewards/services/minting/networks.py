"""Chains the reward contract is deployed on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping

FALLBACK_GAS_PRICE_GWEI = 35


@dataclass(frozen=True, slots=True)
class NetworkInfo:
    chain_id: int
    name: str
    currency: str
    explorer_url: str
    default_gas_price_gwei: int
    testnet: bool = False

    def transaction_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"


NETWORKS: Dict[int, NetworkInfo] = {
    1: NetworkInfo(1, "Ethereum Mainnet", "ETH", "https://etherscan.io", 25),
    11155111: NetworkInfo(11155111, "Sepolia", "ETH", "https://sepolia.etherscan.io", 25, testnet=True),
    137: NetworkInfo(137, "Polygon", "POL", "https://polygonscan.com", 35),
    80002: NetworkInfo(80002, "Polygon Amoy", "POL", "https://amoy.polygonscan.com", 35, testnet=True),
    43114: NetworkInfo(43114, "Avalanche C-Chain", "AVAX", "https://snowtrace.io", 30),
    43113: NetworkInfo(43113, "Avalanche Fuji", "AVAX", "https://subnets-test.avax.network/c-chain", 30, testnet=True),
}


def get_network(chain_id: int) -> NetworkInfo | None:
    return NETWORKS.get(chain_id)


def default_gas_price_wei(chain_id: int) -> int:
    network = NETWORKS.get(chain_id)
    gwei = network.default_gas_price_gwei if network else FALLBACK_GAS_PRICE_GWEI
    return gwei * 10**9


def explorer_tx_url(tx_hash: str, chain_id: int | None) -> str | None:
    if not tx_hash:
        return None
    network = NETWORKS.get(chain_id or 0) or NETWORKS[137]
    return network.transaction_url(tx_hash)


def resolve_contract_address(chain_id: int, addresses: Mapping[int, str]) -> str | None:
    address = addresses.get(chain_id)
    if not address:
        return None
    return address.strip()


__all__ = [
    "FALLBACK_GAS_PRICE_GWEI",
    "NETWORKS",
    "NetworkInfo",
    "default_gas_price_wei",
    "explorer_tx_url",
    "get_network",
    "resolve_contract_address",
]
