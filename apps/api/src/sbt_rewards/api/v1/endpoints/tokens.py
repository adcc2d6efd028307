"""Issued reward token endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field

from sbt_rewards.api.dependencies.ledger import (
    get_issuance_service,
    get_minting_pipeline,
    get_repository,
    http_error,
)
from sbt_rewards.api.dependencies.security import require_merchant_api_key
from sbt_rewards.core.errors import LedgerError, NotFoundError
from sbt_rewards.core.settings import settings
from sbt_rewards.models.rewards import MintStatus
from sbt_rewards.schemas.ledger import IssuedTokenRecord
from sbt_rewards.services.issuance import IssuanceService
from sbt_rewards.services.ledger import LedgerRepository
from sbt_rewards.services.minting import MintingPipeline, gateway_url
from sbt_rewards.services.minting.metadata import is_placeholder


router = APIRouter(prefix="/tokens", tags=["tokens"])


class TokenDetail(IssuedTokenRecord):
    explorer_url: str | None = Field(None, alias="explorerUrl")
    metadata_gateway_url: str | None = Field(None, alias="metadataGatewayUrl")


@router.get("", response_model=List[IssuedTokenRecord])
async def list_tokens(
    recipient: str | None = Query(None, description="Filter by recipient wallet address"),
    mint_status: MintStatus | None = Query(None, alias="mintStatus"),
    repository: LedgerRepository = Depends(get_repository),
) -> List[IssuedTokenRecord]:
    try:
        if recipient:
            tokens = await repository.list_issued_tokens_by_recipient(recipient)
        elif mint_status is not None:
            tokens = await repository.list_issued_tokens_by_mint_status(mint_status)
        else:
            tokens = await repository.list_issued_tokens()
    except LedgerError as exc:
        raise http_error(exc) from exc
    if recipient and mint_status is not None:
        tokens = [token for token in tokens if token.mint_status == mint_status]
    return tokens


@router.get("/{token_id}", response_model=TokenDetail)
async def get_token(
    token_id: str,
    repository: LedgerRepository = Depends(get_repository),
    pipeline: MintingPipeline = Depends(get_minting_pipeline),
) -> TokenDetail:
    try:
        token = await repository.get_issued_token(token_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    if token is None:
        raise http_error(NotFoundError("IssuedToken", token_id))
    explorer = pipeline.explorer_url(token.tx_hash, token.chain_id) if token.tx_hash else None
    metadata_link = None
    if token.metadata_uri and not is_placeholder(token.metadata_uri):
        metadata_link = gateway_url(token.metadata_uri, settings.pinata_gateway_url)
    return TokenDetail(**token.model_dump(), explorer_url=explorer, metadata_gateway_url=metadata_link)


@router.post(
    "/{token_id}/retry",
    response_model=IssuedTokenRecord,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_merchant_api_key)],
)
async def retry_token_mint(
    token_id: str,
    service: IssuanceService = Depends(get_issuance_service),
) -> IssuedTokenRecord:
    try:
        outcome = await service.schedule_retry(token_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return outcome.token
