"""Add ghost application id registry.

Revision ID: 0002_ghost_application_ids
Revises: 0001_portal_schema
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002_ghost_application_ids"
down_revision = "0001_portal_schema"
branch_labels = None
depends_on = None

ACTIVITY_TYPES = ("FRA", "EAA", "SEM", "EMIS", "CR")


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        activity_type = postgresql.ENUM(*ACTIVITY_TYPES, name="activity_type", create_type=False)
    else:
        activity_type = sa.Enum(*ACTIVITY_TYPES, name="activity_type")

    # No foreign keys: entries outlive a permanent delete of their company or facility.
    op.create_table(
        "ghost_application_ids",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.String(length=50), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        sa.Column("activity_type", activity_type, nullable=False),
        sa.Column("original_title", sa.String(length=255)),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("application_id", name="uq_ghost_application_ids_application_id"),
    )
    op.create_index("ix_ghost_application_ids_company_id", "ghost_application_ids", ["company_id"])
    op.create_index("ix_ghost_application_ids_deleted_at", "ghost_application_ids", ["deleted_at"])


def downgrade() -> None:
    op.drop_index("ix_ghost_application_ids_deleted_at", table_name="ghost_application_ids")
    op.drop_index("ix_ghost_application_ids_company_id", table_name="ghost_application_ids")
    op.drop_table("ghost_application_ids")
