"""application owning facilitator

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0002_application_facilitator"
down_revision = "20261019_0001_init_lifecycle"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "opportunity_applications",
        sa.Column("facilitator_id", sa.String(length=64), nullable=True),
    )
    op.create_index(
        "ix_opportunity_applications_facilitator_id",
        "opportunity_applications",
        ["facilitator_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_opportunity_applications_facilitator_id", table_name="opportunity_applications")
    op.drop_column("opportunity_applications", "facilitator_id")
