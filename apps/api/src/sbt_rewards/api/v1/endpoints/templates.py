"""Reward template catalog endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from sbt_rewards.api.dependencies.ledger import get_repository, http_error
from sbt_rewards.api.dependencies.security import require_merchant_api_key
from sbt_rewards.core.errors import LedgerError, NotFoundError
from sbt_rewards.models.rewards import IssuePattern, TemplateStatus
from sbt_rewards.schemas.ledger import TemplateRecord, utcnow
from sbt_rewards.services.ledger import LedgerRepository


router = APIRouter(prefix="/templates", tags=["templates"])


class TemplatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shop_id: int | None = Field(None, alias="shopId", ge=1)
    name: str
    description: str | None = None
    issue_pattern: IssuePattern = Field(..., alias="issuePattern")
    max_stamps: int = Field(..., alias="maxStamps")
    threshold: int | None = None
    time_period_days: int | None = Field(None, alias="timePeriodDays")
    period_start_date: datetime | None = Field(None, alias="periodStartDate")
    period_end_date: datetime | None = Field(None, alias="periodEndDate")
    reward_description: str | None = Field(None, alias="rewardDescription")
    image_id: str | None = Field(None, alias="imageId")
    image_url: str | None = Field(None, alias="imageUrl")
    image_mime_type: str | None = Field(None, alias="imageMimeType")
    status: TemplateStatus = TemplateStatus.ACTIVE


def _build_record(payload: TemplatePayload, **overrides: object) -> TemplateRecord:
    values = payload.model_dump(exclude_none=True)
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return TemplateRecord(**values)
    except PydanticValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc


async def _next_shop_id(repository: LedgerRepository) -> int:
    templates = await repository.list_templates()
    return max((template.shop_id for template in templates), default=0) + 1


@router.get("", response_model=List[TemplateRecord])
async def list_templates(repository: LedgerRepository = Depends(get_repository)) -> List[TemplateRecord]:
    try:
        return await repository.list_templates()
    except LedgerError as exc:
        raise http_error(exc) from exc


@router.post(
    "",
    response_model=TemplateRecord,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_merchant_api_key)],
)
async def create_template(
    payload: TemplatePayload,
    repository: LedgerRepository = Depends(get_repository),
) -> TemplateRecord:
    try:
        shop_id = payload.shop_id or await _next_shop_id(repository)
        return await repository.put_template(_build_record(payload, shop_id=shop_id))
    except LedgerError as exc:
        raise http_error(exc) from exc


@router.get("/{template_id}", response_model=TemplateRecord)
async def get_template(
    template_id: str,
    repository: LedgerRepository = Depends(get_repository),
) -> TemplateRecord:
    try:
        record = await repository.get_template(template_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    if record is None:
        raise http_error(NotFoundError("Template", template_id))
    return record


@router.put(
    "/{template_id}",
    response_model=TemplateRecord,
    dependencies=[Depends(require_merchant_api_key)],
)
async def update_template(
    template_id: str,
    payload: TemplatePayload,
    repository: LedgerRepository = Depends(get_repository),
) -> TemplateRecord:
    try:
        existing = await repository.get_template(template_id)
        if existing is None:
            raise NotFoundError("Template", template_id)
        record = _build_record(
            payload,
            id=existing.id,
            shop_id=payload.shop_id or existing.shop_id,
            created_at=existing.created_at,
            updated_at=utcnow(),
        )
        return await repository.put_template(record)
    except LedgerError as exc:
        raise http_error(exc) from exc


@router.delete(
    "/{template_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_merchant_api_key)],
)
async def delete_template(
    template_id: str,
    repository: LedgerRepository = Depends(get_repository),
) -> Response:
    try:
        await repository.delete_template(template_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
