"""Reconciliation of mints left unsettled and metadata repair."""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict

from loguru import logger

from sbt_rewards.core.errors import LedgerError
from sbt_rewards.models.rewards import MintFailureReason, MintStatus
from sbt_rewards.services.ledger import LedgerRepository
from sbt_rewards.services.minting import MintingPipeline


# meta: job: mint-reconciliation

async def reconcile_pending_mints(
    *,
    repository: LedgerRepository,
    pipeline: MintingPipeline,
    limit: int | None = None,
) -> Dict[str, Any]:
    """Settle pending rows, plus failed rows whose transaction may still have mined."""

    pending = await repository.list_issued_tokens_by_mint_status(MintStatus.PENDING)
    failed = await repository.list_issued_tokens_by_mint_status(MintStatus.FAILED)
    candidates = pending + [
        token
        for token in failed
        if token.tx_hash and token.mint_failure_reason == MintFailureReason.NETWORK_UNREACHABLE
    ]
    if limit is not None:
        candidates = candidates[:limit]

    outcomes: Counter[str] = Counter()
    for token in candidates:
        try:
            outcome = await pipeline.reconcile(token.id)
        except LedgerError as exc:
            logger.warning("Mint reconciliation skipped token", token_id=token.id, error=str(exc))
            outcome = "error"
        outcomes[outcome] += 1

    summary: Dict[str, Any] = {"checked": len(candidates)}
    for key in ("confirmed", "reverted", "waiting", "resubmitted", "error"):
        summary[key] = outcomes.get(key, 0)
    logger.bind(summary=summary).info("Mint reconciliation completed")
    return summary


async def repair_token_metadata(
    *,
    repository: LedgerRepository,
    pipeline: MintingPipeline,
) -> Dict[str, Any]:
    """Pin metadata for rows that were minted with a placeholder reference."""

    tokens = [token for token in await repository.list_issued_tokens() if token.metadata_repair_needed]
    repaired = 0
    for token in tokens:
        if await pipeline.republish_metadata(token.id):
            repaired += 1

    summary = {"candidates": len(tokens), "repaired": repaired, "remaining": len(tokens) - repaired}
    logger.bind(summary=summary).info("Token metadata repair completed")
    return summary


__all__ = ["reconcile_pending_mints", "repair_token_metadata"]
