"""Detached ledger records shared by the repository, mirror, snapshots and API."""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Annotated
from uuid import uuid4

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from sbt_rewards.models.rewards import (
    IssuePattern,
    MintFailureReason,
    MintStage,
    MintStatus,
    TemplateStatus,
    TokenStatus,
)

# meta: schema: reward-ledger

MAX_IMAGE_BYTES = 10 * 1024 * 1024
ALLOWED_IMAGE_TYPES = frozenset({"image/png", "image/jpg", "image/jpeg", "image/svg+xml"})


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


UtcDatetime = Annotated[datetime, AfterValidator(ensure_aware)]


class TemplateRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str = Field(default_factory=new_id)
    shop_id: int = Field(..., alias="shopId", ge=1)
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    issue_pattern: IssuePattern = Field(..., alias="issuePattern")
    max_stamps: int = Field(..., alias="maxStamps", ge=1)
    threshold: int | None = Field(None, ge=1)
    time_period_days: int | None = Field(None, alias="timePeriodDays", ge=1)
    period_start_date: UtcDatetime | None = Field(None, alias="periodStartDate")
    period_end_date: UtcDatetime | None = Field(None, alias="periodEndDate")
    reward_description: str | None = Field(None, alias="rewardDescription")
    image_id: str | None = Field(None, alias="imageId")
    image_url: str | None = Field(None, alias="imageUrl")
    image_mime_type: str | None = Field(None, alias="imageMimeType")
    status: TemplateStatus = TemplateStatus.ACTIVE
    created_at: UtcDatetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: UtcDatetime = Field(default_factory=utcnow, alias="updatedAt")

    @model_validator(mode="after")
    def _check_period_range(self) -> "TemplateRecord":
        if (
            self.period_start_date is not None
            and self.period_end_date is not None
            and self.period_start_date > self.period_end_date
        ):
            raise ValueError("periodStartDate must not be after periodEndDate")
        return self

    @property
    def effective_threshold(self) -> int:
        return self.threshold or self.max_stamps


class IssuedTokenRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str = Field(default_factory=new_id)
    template_id: str = Field(..., alias="templateId")
    template_name: str | None = Field(None, alias="templateName")
    shop_id: int | None = Field(None, alias="shopId")
    recipient_address: str = Field(..., alias="recipientAddress")
    current_stamps: int = Field(0, alias="currentStamps", ge=0)
    max_stamps: int = Field(..., alias="maxStamps", ge=1)
    status: TokenStatus = TokenStatus.ACTIVE
    mint_status: MintStatus = Field(MintStatus.PENDING, alias="mintStatus")
    mint_stage: MintStage = Field(MintStage.CREATED, alias="mintStage")
    mint_failure_reason: MintFailureReason | None = Field(None, alias="mintFailureReason")
    mint_message: str | None = Field(None, alias="mintMessage")
    mint_attempts: int = Field(0, alias="mintAttempts", ge=0)
    tx_hash: str | None = Field(None, alias="txHash")
    token_id: str | None = Field(None, alias="tokenId")
    chain_id: int | None = Field(None, alias="chainId")
    metadata_uri: str | None = Field(None, alias="metadataUri")
    metadata_repair_needed: bool = Field(False, alias="metadataRepairNeeded")
    source_payment_id: str | None = Field(None, alias="sourcePaymentId")
    issued_at: UtcDatetime = Field(default_factory=utcnow, alias="issuedAt")
    redeemed_at: UtcDatetime | None = Field(None, alias="redeemedAt")
    updated_at: UtcDatetime = Field(default_factory=utcnow, alias="updatedAt")

    @field_validator("recipient_address")
    @classmethod
    def _normalize_address(cls, value: str) -> str:
        return value.strip().lower()


class ImageBlobRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str = Field(default_factory=new_id)
    template_id: str | None = Field(None, alias="templateId")
    name: str | None = None
    content: bytes
    mime_type: str = Field(..., alias="mimeType")
    size: int = Field(0, ge=0)
    created_at: UtcDatetime = Field(default_factory=utcnow, alias="createdAt")

    @field_validator("content", mode="before")
    @classmethod
    def _decode_content(cls, value: object) -> object:
        if isinstance(value, str):
            return base64.b64decode(value, validate=True)
        return value

    @field_validator("mime_type")
    @classmethod
    def _check_mime_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ALLOWED_IMAGE_TYPES:
            raise ValueError(f"unsupported image type {value}")
        return normalized

    @model_validator(mode="after")
    def _check_size(self) -> "ImageBlobRecord":
        if len(self.content) > MAX_IMAGE_BYTES:
            raise ValueError("image exceeds the 10 MiB limit")
        self.size = len(self.content)
        return self

    @field_serializer("content", when_used="json")
    def _encode_content(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")


class QualifyingEventRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str = Field(default_factory=new_id)
    template_id: str = Field(..., alias="templateId")
    recipient_address: str = Field(..., alias="recipientAddress")
    source_payment_id: str | None = Field(None, alias="sourcePaymentId")
    occurred_at: UtcDatetime = Field(default_factory=utcnow, alias="occurredAt")

    @field_validator("recipient_address")
    @classmethod
    def _normalize_address(cls, value: str) -> str:
        return value.strip().lower()


__all__ = [
    "ALLOWED_IMAGE_TYPES",
    "ImageBlobRecord",
    "IssuedTokenRecord",
    "MAX_IMAGE_BYTES",
    "QualifyingEventRecord",
    "TemplateRecord",
    "ensure_aware",
    "new_id",
    "utcnow",
]
