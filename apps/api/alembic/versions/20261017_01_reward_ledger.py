"""Create reward template, issued token, image and qualifying event tables."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


issue_pattern = sa.Enum("PER_PAYMENT", "AFTER_COUNT", "TIME_PERIOD", "PERIOD_RANGE", name="sbt_issue_pattern")
template_status = sa.Enum("ACTIVE", "INACTIVE", name="sbt_template_status")
token_status = sa.Enum("ACTIVE", "REDEEMED", name="sbt_token_status")
mint_status = sa.Enum("PENDING", "SUCCESS", "FAILED", name="sbt_mint_status")
mint_stage = sa.Enum(
    "CREATED",
    "METADATA_PUBLISHING",
    "METADATA_PUBLISHED",
    "GAS_ESTIMATING",
    "SUBMITTING",
    "CONFIRMING",
    "CONFIRMED",
    "FAILED",
    name="sbt_mint_stage",
)
mint_failure_reason = sa.Enum(
    "USER_REJECTED",
    "INSUFFICIENT_FUNDS",
    "NETWORK_UNREACHABLE",
    "CONTRACT_REVERT",
    "UNKNOWN",
    name="sbt_mint_failure_reason",
)


def upgrade() -> None:
    op.create_table(
        "sbt_templates",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("issue_pattern", issue_pattern, nullable=False),
        sa.Column("max_stamps", sa.Integer(), nullable=False),
        sa.Column("threshold", sa.Integer(), nullable=True),
        sa.Column("time_period_days", sa.Integer(), nullable=True),
        sa.Column("period_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reward_description", sa.Text(), nullable=True),
        sa.Column("image_id", sa.String(64), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("image_mime_type", sa.String(64), nullable=True),
        sa.Column("status", template_status, nullable=False, server_default="ACTIVE"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_sbt_templates_shop_id", "sbt_templates", ["shop_id"], unique=True)

    op.create_table(
        "issued_sbts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("template_id", sa.String(64), nullable=False),
        sa.Column("template_name", sa.String(100), nullable=True),
        sa.Column("shop_id", sa.Integer(), nullable=True),
        sa.Column("recipient_address", sa.String(42), nullable=False),
        sa.Column("current_stamps", sa.Integer(), nullable=False),
        sa.Column("max_stamps", sa.Integer(), nullable=False),
        sa.Column("status", token_status, nullable=False),
        sa.Column("mint_status", mint_status, nullable=False),
        sa.Column("mint_stage", mint_stage, nullable=False),
        sa.Column("mint_failure_reason", mint_failure_reason, nullable=True),
        sa.Column("mint_message", sa.Text(), nullable=True),
        sa.Column("mint_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tx_hash", sa.String(66), nullable=True),
        sa.Column("token_id", sa.String(78), nullable=True),
        sa.Column("chain_id", sa.Integer(), nullable=True),
        sa.Column("metadata_uri", sa.String(), nullable=True),
        sa.Column("metadata_repair_needed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source_payment_id", sa.String(), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_issued_sbts_template_id", "issued_sbts", ["template_id"])
    op.create_index("ix_issued_sbts_recipient_address", "issued_sbts", ["recipient_address"])
    op.create_index("ix_issued_sbts_mint_status", "issued_sbts", ["mint_status"])
    op.create_index("ix_issued_sbts_recipient_template", "issued_sbts", ["recipient_address", "template_id"])

    op.create_table(
        "sbt_images",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("template_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("content", sa.LargeBinary(), nullable=False),
        sa.Column("mime_type", sa.String(64), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_sbt_images_template_id", "sbt_images", ["template_id"])

    op.create_table(
        "sbt_qualifying_events",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("template_id", sa.String(64), nullable=False),
        sa.Column("recipient_address", sa.String(42), nullable=False),
        sa.Column("source_payment_id", sa.String(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("template_id", "source_payment_id", name="uq_sbt_events_template_payment"),
    )
    op.create_index(
        "ix_sbt_events_recipient_template",
        "sbt_qualifying_events",
        ["recipient_address", "template_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_sbt_events_recipient_template", table_name="sbt_qualifying_events")
    op.drop_table("sbt_qualifying_events")
    op.drop_index("ix_sbt_images_template_id", table_name="sbt_images")
    op.drop_table("sbt_images")
    op.drop_index("ix_issued_sbts_recipient_template", table_name="issued_sbts")
    op.drop_index("ix_issued_sbts_mint_status", table_name="issued_sbts")
    op.drop_index("ix_issued_sbts_recipient_address", table_name="issued_sbts")
    op.drop_index("ix_issued_sbts_template_id", table_name="issued_sbts")
    op.drop_table("issued_sbts")
    op.drop_table("sbt_templates")

    bind = op.get_bind()
    for enum in (mint_failure_reason, mint_stage, mint_status, token_status, template_status, issue_pattern):
        enum.drop(bind, checkfirst=True)
