"""Observability endpoints for issuance and minting."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from sbt_rewards.api.dependencies.security import require_merchant_api_key
from sbt_rewards.observability.rewards import get_rewards_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/minting",
    dependencies=[Depends(require_merchant_api_key)],
    summary="Issuance and minting observability snapshot",
)
async def get_minting_snapshot(request: Request) -> dict[str, object]:
    """Counters for issuance decisions, mint outcomes and store recoveries."""
    payload = get_rewards_store().snapshot().as_dict()
    repository = getattr(request.app.state, "ledger_repository", None)
    if repository is not None:
        payload["ledger"] = repository.status.as_dict()
    issuance = getattr(request.app.state, "issuance_service", None)
    if issuance is not None:
        payload["inFlightMints"] = issuance.pending_tasks
    return payload
