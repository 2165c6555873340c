"""init lifecycle tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001_init_lifecycle"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "startups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_startups_user_id", "startups", ["user_id"])

    op.create_table(
        "opportunity_applications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("startup_id", sa.String(length=36), sa.ForeignKey("startups.id"), nullable=False),
        sa.Column("opportunity_id", sa.String(length=36), nullable=False),
        sa.Column("startup_name", sa.String(length=255)),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("diligence_status", sa.String(length=32), nullable=False, server_default="none"),
        sa.Column("agreement_url", sa.Text()),
        sa.Column("contract_url", sa.Text()),
        sa.Column("diligence_urls", sa.JSON()),
        *_timestamps(),
    )
    op.create_index("ix_opportunity_applications_startup_id", "opportunity_applications", ["startup_id"])
    op.create_index("ix_opportunity_applications_opportunity_id", "opportunity_applications", ["opportunity_id"])
    op.create_index("ix_opportunity_applications_status", "opportunity_applications", ["status"])

    op.create_table(
        "investment_offers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("startup_id", sa.String(length=36), sa.ForeignKey("startups.id"), nullable=False),
        sa.Column("investor_id", sa.String(length=64), nullable=False),
        sa.Column("offer_amount", sa.Float(), nullable=False),
        sa.Column("equity_percentage", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column("stage", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("startup_approval_status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("contact_details_revealed", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_investment_offers_startup_id", "investment_offers", ["startup_id"])
    op.create_index("ix_investment_offers_investor_id", "investment_offers", ["investor_id"])

    op.create_table(
        "co_investment_offers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("co_investment_opportunity_id", sa.String(length=36), nullable=False),
        sa.Column("startup_id", sa.String(length=36), sa.ForeignKey("startups.id"), nullable=False),
        sa.Column("investor_id", sa.String(length=64), nullable=False),
        sa.Column("offer_amount", sa.Float(), nullable=False),
        sa.Column("equity_percentage", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column("stage", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "status", sa.String(length=40), nullable=False, server_default="pending_lead_investor_approval"
        ),
        sa.Column(
            "investor_advisor_approval_status", sa.String(length=32), nullable=False, server_default="not_required"
        ),
        sa.Column("lead_investor_approval_status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("startup_approval_status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("contact_details_revealed", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index(
        "ix_co_investment_offers_co_investment_opportunity_id",
        "co_investment_offers",
        ["co_investment_opportunity_id"],
    )
    op.create_index("ix_co_investment_offers_startup_id", "co_investment_offers", ["startup_id"])
    op.create_index("ix_co_investment_offers_investor_id", "co_investment_offers", ["investor_id"])

    op.create_table(
        "recognition_records",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("startup_id", sa.String(length=36), sa.ForeignKey("startups.id"), nullable=False),
        sa.Column("facilitator_code", sa.String(length=64), nullable=False),
        sa.Column("program_name", sa.String(length=255)),
        sa.Column("fee_type", sa.String(length=16), nullable=False, server_default="Free"),
        sa.Column("fee_amount", sa.Float()),
        sa.Column("equity_allocated", sa.Float()),
        sa.Column("shares", sa.Float()),
        sa.Column("price_per_share", sa.Float()),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        *_timestamps(),
    )
    op.create_index("ix_recognition_records_startup_id", "recognition_records", ["startup_id"])
    op.create_index("ix_recognition_records_facilitator_code", "recognition_records", ["facilitator_code"])

    op.create_table(
        "startup_invitations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("facilitator_id", sa.String(length=64), nullable=False),
        sa.Column("startup_name", sa.String(length=255), nullable=False),
        sa.Column("contact_email", sa.String(length=255)),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("invitation_sent_at", sa.DateTime(timezone=True)),
        sa.Column("response_received_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_startup_invitations_facilitator_id", "startup_invitations", ["facilitator_id"])

    op.create_table(
        "incubation_messages",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "application_id",
            sa.String(length=36),
            sa.ForeignKey("opportunity_applications.id"),
            nullable=False,
        ),
        sa.Column("sender_id", sa.String(length=64), nullable=False),
        sa.Column("receiver_id", sa.String(length=64), nullable=False),
        sa.Column("message", sa.Text(), nullable=False, server_default=""),
        sa.Column("message_type", sa.String(length=16), nullable=False, server_default="text"),
        sa.Column("attachment_url", sa.Text()),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_incubation_messages_application_id", "incubation_messages", ["application_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("entity", sa.String(length=64), nullable=True),
        sa.Column("record_id", sa.String(length=36), nullable=True),
        sa.Column("payload_json", sa.Text()),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("ip", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=256), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_record_id", "audit_logs", ["record_id"])
    op.create_index("ix_audit_logs_request_id", "audit_logs", ["request_id"])
    op.create_index("ix_audit_logs_idempotency_key", "audit_logs", ["idempotency_key"], unique=True)


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("incubation_messages")
    op.drop_table("startup_invitations")
    op.drop_table("recognition_records")
    op.drop_table("co_investment_offers")
    op.drop_table("investment_offers")
    op.drop_table("opportunity_applications")
    op.drop_table("startups")
