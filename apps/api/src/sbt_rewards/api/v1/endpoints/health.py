from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from sbt_rewards.core.settings import settings
from sbt_rewards.services.minting.networks import resolve_contract_address


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(request: Request) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    repository = getattr(request.app.state, "ledger_repository", None)
    if repository is None:
        components["ledger"] = ComponentStatus(status="starting", detail="Reward ledger not initialised")
        status = "error"
    elif repository.status.degraded:
        ledger_status = repository.status
        components["ledger"] = ComponentStatus(
            status="degraded",
            detail=f"Serving reads from the mirror: {ledger_status.last_error}",
            last_error_at=ledger_status.degraded_since.isoformat() if ledger_status.degraded_since else None,
        )
        status = "degraded"
    else:
        components["ledger"] = ComponentStatus(status="ready")

    pipeline = getattr(request.app.state, "minting_pipeline", None)
    if pipeline is None:
        components["minting"] = ComponentStatus(status="disabled", detail="Minting pipeline not configured")
    elif not resolve_contract_address(settings.chain_id, settings.sbt_contract_addresses):
        components["minting"] = ComponentStatus(
            status="degraded",
            detail=f"No reward contract configured for chain {settings.chain_id}; mints will fail pre-flight",
        )
        if status == "ready":
            status = "degraded"
    else:
        components["minting"] = ComponentStatus(status="ready")

    return ReadinessPayload(status=status, components=components)
