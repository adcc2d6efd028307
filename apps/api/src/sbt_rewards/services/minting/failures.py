"""Map wallet, RPC and transport errors onto mint failure reasons."""

from __future__ import annotations

import asyncio

import httpx

from sbt_rewards.core.errors import NetworkError
from sbt_rewards.models.rewards import MintFailureReason
from sbt_rewards.services.minting.blockchain import RpcError

USER_REJECTED_CODES = {4001}
REVERT_CODES = {3}
INTERNAL_RPC_CODES = {-32603, -32000, -32005}

_RETRYABLE = {MintFailureReason.NETWORK_UNREACHABLE}


def classify_error(exc: BaseException) -> MintFailureReason:
    if isinstance(exc, NetworkError):
        try:
            return MintFailureReason(exc.reason)
        except ValueError:
            return MintFailureReason.UNKNOWN

    message = str(exc).lower()
    code = getattr(exc, "code", None)

    if code in USER_REJECTED_CODES or code == "ACTION_REJECTED" or "user rejected" in message or "user denied" in message:
        return MintFailureReason.USER_REJECTED
    if code == "INSUFFICIENT_FUNDS" or "insufficient funds" in message:
        return MintFailureReason.INSUFFICIENT_FUNDS
    if isinstance(exc, RpcError):
        if code in REVERT_CODES or "execution reverted" in message or "revert" in message:
            return MintFailureReason.CONTRACT_REVERT
        if code in INTERNAL_RPC_CODES or "internal json-rpc error" in message:
            return MintFailureReason.NETWORK_UNREACHABLE
        return MintFailureReason.UNKNOWN
    if isinstance(exc, (httpx.TransportError, httpx.HTTPStatusError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return MintFailureReason.NETWORK_UNREACHABLE
    if "execution reverted" in message:
        return MintFailureReason.CONTRACT_REVERT
    return MintFailureReason.UNKNOWN


def is_retryable(reason: MintFailureReason) -> bool:
    return reason in _RETRYABLE


def describe(reason: MintFailureReason, exc: BaseException | None = None) -> str:
    summary = {
        MintFailureReason.USER_REJECTED: "Transaction was rejected by the signer",
        MintFailureReason.INSUFFICIENT_FUNDS: "Signer balance does not cover gas",
        MintFailureReason.NETWORK_UNREACHABLE: "Chain RPC is unreachable; the reward is saved locally and can be retried",
        MintFailureReason.CONTRACT_REVERT: "Contract rejected the mint",
        MintFailureReason.UNKNOWN: "Minting failed",
    }[reason]
    if exc is not None and str(exc):
        return f"{summary}: {exc}"
    return summary


__all__ = ["classify_error", "describe", "is_retryable"]
