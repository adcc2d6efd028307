"""Template artwork storage."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from sbt_rewards.api.dependencies.ledger import get_repository, http_error
from sbt_rewards.api.dependencies.security import require_merchant_api_key
from sbt_rewards.core.errors import LedgerError, NotFoundError
from sbt_rewards.schemas.ledger import ImageBlobRecord
from sbt_rewards.services.ledger import LedgerRepository


router = APIRouter(prefix="/images", tags=["images"])


class ImageUpload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(..., description="Base64 encoded image bytes")
    mime_type: str = Field(..., alias="mimeType")
    name: str | None = None
    template_id: str | None = Field(None, alias="templateId")


class ImageSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    template_id: str | None = Field(None, alias="templateId")
    name: str | None = None
    mime_type: str = Field(..., alias="mimeType")
    size: int


@router.post(
    "",
    response_model=ImageSummary,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_merchant_api_key)],
)
async def upload_image(
    payload: ImageUpload,
    repository: LedgerRepository = Depends(get_repository),
) -> ImageSummary:
    try:
        record = ImageBlobRecord(
            content=payload.content,
            mime_type=payload.mime_type,
            name=payload.name,
            template_id=payload.template_id,
        )
    except (PydanticValidationError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    try:
        stored = await repository.put_image(record)
    except LedgerError as exc:
        raise http_error(exc) from exc
    return ImageSummary(
        id=stored.id,
        template_id=stored.template_id,
        name=stored.name,
        mime_type=stored.mime_type,
        size=stored.size,
    )


@router.get("/{image_id}", response_class=Response)
async def get_image(
    image_id: str,
    repository: LedgerRepository = Depends(get_repository),
) -> Response:
    try:
        record = await repository.get_image(image_id)
    except LedgerError as exc:
        raise http_error(exc) from exc
    if record is None:
        raise http_error(NotFoundError("Image", image_id))
    return Response(content=record.content, media_type=record.mime_type)
