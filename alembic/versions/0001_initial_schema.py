"""initial_schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:12:40.118202

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names, matching SQLModel's default mapping
account_tier = sa.Enum("USER_FREE", "USER_PRO", "RESELLER", name="accounttier")
account_status = sa.Enum("ACTIVE", "BANNED", "DELETING", "DELETED", name="accountstatus")
source_channel = sa.Enum(
    "MOBILE_APP", "TELEGRAM_BOT", "WHATSAPP_BOT", "WEB_APP", "API", name="sourcechannel"
)
product_category = sa.Enum(
    "CLOTHING", "BEAUTY", "ACCESSORIES", "SHOES", "JEWELRY", "BAGS", name="productcategory"
)
background_style = sa.Enum(
    "STUDIO_WHITE",
    "STUDIO_GRAY",
    "GRADIENT_SOFT",
    "STUDIO_CLEAN_WHITE",
    "LUXURY_MARBLE_VELVET",
    "BOUTIQUE_CLEAN_STORE",
    name="backgroundstyle",
)
template_layout = sa.Enum("A", "B", "C", name="templatelayout")
mannequin_mode = sa.Enum(
    "NONE",
    "GHOST_MANNEQUIN",
    "CUSTOM",
    "VIRTUAL_MODEL_FEMALE",
    "VIRTUAL_MODEL_MALE",
    name="mannequinmode",
)
job_priority = sa.Enum("HIGH", "LOW", name="jobpriority")
job_status = sa.Enum("QUEUED", "PROCESSING", "COMPLETED", "FAILED", "CANCELLED", name="jobstatus")
ledger_entry_type = sa.Enum("DEBIT", "REFUND", "PURCHASE", "ADJUSTMENT", name="ledgerentrytype")
asset_type = sa.Enum("INPUT_IMAGE", "OUTPUT_IMAGE", "THUMBNAIL", name="assettype")
queue_message_status = sa.Enum(
    "PENDING", "PROCESSING", "COMPLETED", "DEAD", name="queuemessagestatus"
)
notification_kind = sa.Enum("COMPLETED", "FAILED", name="notificationkind")


def upgrade() -> None:
    """Create accounts, jobs, ledger, assets, queue, DLQ and configuration tables."""
    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tier", account_tier, nullable=False),
        sa.Column("status", account_status, nullable=False),
        sa.Column("language", sa.String(length=8), nullable=False),
        sa.Column("violation_count", sa.Integer(), nullable=False),
        sa.Column("telegram_chat_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_accounts_status", "accounts", ["status"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("correlation_id", sa.String(length=64), nullable=False),
        sa.Column("source_channel", source_channel, nullable=False),
        sa.Column("source_message_id", sa.String(length=128), nullable=True),
        sa.Column("client_request_id", sa.String(length=128), nullable=True),
        sa.Column("category", product_category, nullable=False),
        sa.Column("background_style", background_style, nullable=False),
        sa.Column("template_layout", template_layout, nullable=False),
        sa.Column("mannequin_mode", mannequin_mode, nullable=False),
        sa.Column("custom_prompt", sa.String(length=1000), nullable=True),
        sa.Column("overlays", sa.JSON(), nullable=True),
        sa.Column("input_image_key", sa.String(length=512), nullable=True),
        sa.Column("priority", job_priority, nullable=False),
        sa.Column("credits_debited", sa.Integer(), nullable=False),
        sa.Column("status", job_status, nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("last_error_code", sa.String(length=64), nullable=True),
        sa.Column("last_error_message", sa.String(length=1000), nullable=True),
        sa.Column("stage_durations", sa.JSON(), nullable=False),
        sa.Column("duration_ms_total", sa.Integer(), nullable=True),
        sa.Column("model_used", sa.String(length=128), nullable=True),
        sa.Column("provider_used", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("queued_at", sa.DateTime(), nullable=False),
        sa.Column("processing_started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_jobs_account_id", "jobs", ["account_id"])
    op.create_index("ix_jobs_idempotency_key", "jobs", ["idempotency_key"], unique=True)
    op.create_index("ix_jobs_status", "jobs", ["status"])

    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("entry_type", ledger_entry_type, nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_credit_ledger_account_id", "credit_ledger", ["account_id"])
    op.create_index("ix_credit_ledger_job_id", "credit_ledger", ["job_id"])

    op.create_table(
        "assets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("asset_type", asset_type, nullable=False),
        sa.Column("format_tag", sa.String(length=32), nullable=False),
        sa.Column("bucket", sa.String(length=128), nullable=False),
        sa.Column("key", sa.String(length=512), nullable=False),
        sa.Column("content_type", sa.String(length=64), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_assets_account_id", "assets", ["account_id"])
    op.create_index("ix_assets_job_id", "assets", ["job_id"])

    op.create_table(
        "queue_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("status", queue_message_status, nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("run_after", sa.DateTime(), nullable=False),
        sa.Column("locked_by", sa.String(length=64), nullable=True),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_queue_messages_job_id", "queue_messages", ["job_id"], unique=True)
    op.create_index("ix_queue_messages_priority", "queue_messages", ["priority"])
    op.create_index("ix_queue_messages_status", "queue_messages", ["status"])
    op.create_index("ix_queue_messages_run_after", "queue_messages", ["run_after"])

    op.create_table(
        "failed_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("correlation_id", sa.String(length=64), nullable=False),
        sa.Column("error_code", sa.String(length=64), nullable=False),
        sa.Column("error_message", sa.String(length=1000), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=False),
        sa.Column("job_snapshot", sa.JSON(), nullable=False),
        sa.Column("stack_trace", sa.Text(), nullable=True),
        sa.Column("refunded_credits", sa.Integer(), nullable=False),
        sa.Column("reviewed", sa.Boolean(), nullable=False),
        sa.Column("reviewed_by", sa.Uuid(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("review_notes", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_failed_jobs_job_id", "failed_jobs", ["job_id"], unique=True)
    op.create_index("ix_failed_jobs_account_id", "failed_jobs", ["account_id"])
    op.create_index("ix_failed_jobs_reviewed", "failed_jobs", ["reviewed"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("kind", notification_kind, nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("message", sa.String(length=1000), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_account_id", "notifications", ["account_id"])
    op.create_index("ix_notifications_job_id", "notifications", ["job_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("actor_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])

    op.create_table(
        "model_routing",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("model", sa.String(length=128), nullable=False),
        sa.Column("fallback_provider", sa.String(length=32), nullable=True),
        sa.Column("fallback_model", sa.String(length=128), nullable=True),
        sa.Column("timeout_ms", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_model_routing_category", "model_routing", ["category"])
    op.create_index("ix_model_routing_active", "model_routing", ["active"])

    op.create_table(
        "prompt_profiles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("style", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("prompt", sa.String(), nullable=False),
        sa.Column("negative_prompt", sa.String(), nullable=False),
        sa.Column("params", sa.JSON(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_prompt_profiles_style", "prompt_profiles", ["style"])


def downgrade() -> None:
    """Drop every table and enum type."""
    op.drop_table("prompt_profiles")
    op.drop_table("model_routing")
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_table("failed_jobs")
    op.drop_table("queue_messages")
    op.drop_table("assets")
    op.drop_table("credit_ledger")
    op.drop_table("jobs")
    op.drop_table("accounts")

    bind = op.get_bind()
    for enum in (
        notification_kind,
        queue_message_status,
        asset_type,
        ledger_entry_type,
        job_status,
        job_priority,
        mannequin_mode,
        template_layout,
        background_style,
        product_category,
        source_channel,
        account_status,
        account_tier,
    ):
        enum.drop(bind, checkfirst=True)
