"""Reward template, issued SBT, image and qualifying-event models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    func,
)

from sbt_rewards.db.base import Base


def _new_id() -> str:
    return str(uuid4())


class IssuePattern(str, Enum):
    """Merchant-selectable issuance rules."""

    PER_PAYMENT = "per_payment"
    AFTER_COUNT = "after_count"
    TIME_PERIOD = "time_period"
    PERIOD_RANGE = "period_range"


class TemplateStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TokenStatus(str, Enum):
    """Lifecycle of a stamp card: collecting stamps, or completed."""

    ACTIVE = "active"
    REDEEMED = "redeemed"


class MintStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class MintStage(str, Enum):
    """Minting pipeline stages persisted on the issued token row."""

    CREATED = "created"
    METADATA_PUBLISHING = "metadata_publishing"
    METADATA_PUBLISHED = "metadata_published"
    GAS_ESTIMATING = "gas_estimating"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class MintFailureReason(str, Enum):
    USER_REJECTED = "user-rejected"
    INSUFFICIENT_FUNDS = "insufficient-funds"
    NETWORK_UNREACHABLE = "network-unreachable"
    CONTRACT_REVERT = "contract-revert"
    UNKNOWN = "unknown"


class SbtTemplate(Base):
    """Merchant-authored issuance rule plus its visual representation."""

    __tablename__ = "sbt_templates"

    id = Column(String(64), primary_key=True, default=_new_id)
    shop_id = Column(Integer, nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    issue_pattern = Column(SqlEnum(IssuePattern, name="sbt_issue_pattern"), nullable=False)
    max_stamps = Column(Integer, nullable=False)
    threshold = Column(Integer, nullable=True)
    time_period_days = Column(Integer, nullable=True)
    period_start_date = Column(DateTime(timezone=True), nullable=True)
    period_end_date = Column(DateTime(timezone=True), nullable=True)
    reward_description = Column(Text, nullable=True)
    image_id = Column(String(64), nullable=True)
    image_url = Column(String, nullable=True)
    image_mime_type = Column(String(64), nullable=True)
    status = Column(
        SqlEnum(TemplateStatus, name="sbt_template_status"),
        nullable=False,
        default=TemplateStatus.ACTIVE,
        server_default=TemplateStatus.ACTIVE.name,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class IssuedSbt(Base):
    """Local record of one reward granted (or attempted) to a recipient."""

    __tablename__ = "issued_sbts"
    __table_args__ = (
        Index("ix_issued_sbts_recipient_template", "recipient_address", "template_id"),
    )

    id = Column(String(64), primary_key=True, default=_new_id)
    # Weak reference: templates may be deleted while their issuance history remains.
    template_id = Column(String(64), nullable=False, index=True)
    template_name = Column(String(100), nullable=True)
    shop_id = Column(Integer, nullable=True)
    recipient_address = Column(String(42), nullable=False, index=True)
    current_stamps = Column(Integer, nullable=False, default=0)
    max_stamps = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(TokenStatus, name="sbt_token_status"),
        nullable=False,
        default=TokenStatus.ACTIVE,
    )
    mint_status = Column(
        SqlEnum(MintStatus, name="sbt_mint_status"),
        nullable=False,
        default=MintStatus.PENDING,
        index=True,
    )
    mint_stage = Column(SqlEnum(MintStage, name="sbt_mint_stage"), nullable=False, default=MintStage.CREATED)
    mint_failure_reason = Column(SqlEnum(MintFailureReason, name="sbt_mint_failure_reason"), nullable=True)
    mint_message = Column(Text, nullable=True)
    mint_attempts = Column(Integer, nullable=False, default=0)
    tx_hash = Column(String(66), nullable=True)
    token_id = Column(String(78), nullable=True)
    chain_id = Column(Integer, nullable=True)
    metadata_uri = Column(String, nullable=True)
    metadata_repair_needed = Column(Boolean, nullable=False, default=False)
    source_payment_id = Column(String, nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class ImageBlob(Base):
    """Binary artwork uploaded while authoring a template."""

    __tablename__ = "sbt_images"

    id = Column(String(64), primary_key=True, default=_new_id)
    template_id = Column(String(64), nullable=True, index=True)
    name = Column(String, nullable=True)
    content = Column(LargeBinary, nullable=False)
    mime_type = Column(String(64), nullable=False)
    size = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class QualifyingEvent(Base):
    """Payment or manual trigger counted towards a template's issuance rule."""

    __tablename__ = "sbt_qualifying_events"
    __table_args__ = (
        UniqueConstraint("template_id", "source_payment_id", name="uq_sbt_events_template_payment"),
        Index("ix_sbt_events_recipient_template", "recipient_address", "template_id"),
    )

    id = Column(String(64), primary_key=True, default=_new_id)
    template_id = Column(String(64), nullable=False)
    recipient_address = Column(String(42), nullable=False)
    source_payment_id = Column(String, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
