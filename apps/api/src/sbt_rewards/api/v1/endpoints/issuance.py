"""Qualifying events in, reward decisions out."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from sbt_rewards.api.dependencies.ledger import get_issuance_service, http_error
from sbt_rewards.api.dependencies.security import require_merchant_api_key
from sbt_rewards.core.errors import LedgerError
from sbt_rewards.schemas.ledger import IssuedTokenRecord
from sbt_rewards.services.issuance import (
    IssuanceContext,
    IssuanceService,
    RejectDecision,
)


router = APIRouter(prefix="/issuance", tags=["issuance"])


class IssuanceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    template_id: str = Field(..., alias="templateId")
    recipient_address: str = Field(..., alias="recipientAddress")
    source_payment_id: str | None = Field(None, alias="sourcePaymentId")
    occurred_at: datetime | None = Field(None, alias="occurredAt")


class IssuanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    decision: str
    reason: str | None = None
    detail: str | None = None
    progress: str | None = None
    token: IssuedTokenRecord | None = None
    mint_scheduled: bool = Field(False, alias="mintScheduled")


class ProgressResponse(BaseModel):
    current: int
    max: int
    completed: bool


@router.post("", response_model=IssuanceResponse, dependencies=[Depends(require_merchant_api_key)])
async def issue_reward(
    payload: IssuanceRequest,
    service: IssuanceService = Depends(get_issuance_service),
) -> IssuanceResponse:
    try:
        outcome = await service.evaluate_and_issue(
            payload.template_id,
            payload.recipient_address,
            IssuanceContext(source_payment_id=payload.source_payment_id, occurred_at=payload.occurred_at),
        )
    except LedgerError as exc:
        raise http_error(exc) from exc

    decision = outcome.decision
    if isinstance(decision, RejectDecision):
        return IssuanceResponse(
            decision=decision.kind,
            reason=decision.reason.value,
            detail=decision.detail,
            progress=decision.progress,
        )
    return IssuanceResponse(
        decision=decision.kind,
        token=outcome.token,
        mint_scheduled=outcome.mint_task is not None,
    )


@router.get("/progress", response_model=ProgressResponse)
async def issuance_progress(
    recipient: str = Query(..., description="Recipient wallet address"),
    template_id: str = Query(..., alias="templateId"),
    service: IssuanceService = Depends(get_issuance_service),
) -> ProgressResponse:
    try:
        progress = await service.get_issuance_progress(recipient, template_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ProgressResponse(current=progress.current, max=progress.max, completed=progress.completed)
