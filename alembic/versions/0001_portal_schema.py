"""Create companies, facilities, applications, users and application dependents.

Revision ID: 0001_portal_schema
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_portal_schema"
down_revision = None
branch_labels = None
depends_on = None

ACTIVITY_TYPES = ("FRA", "EAA", "SEM", "EMIS", "CR")
APPLICATION_STATUSES = ("draft", "submitted", "under_review", "approved", "rejected")


def _archive_columns() -> list:
    return [
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        sa.Column("archived_by", sa.String(length=255)),
        sa.Column("archive_reason", sa.Text()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON

    if is_postgres:
        postgresql.ENUM(*ACTIVITY_TYPES, name="activity_type").create(bind, checkfirst=True)
        postgresql.ENUM(*APPLICATION_STATUSES, name="application_status").create(bind, checkfirst=True)
        activity_type = postgresql.ENUM(*ACTIVITY_TYPES, name="activity_type", create_type=False)
        status_type = postgresql.ENUM(*APPLICATION_STATUSES, name="application_status", create_type=False)
    else:
        activity_type = sa.Enum(*ACTIVITY_TYPES, name="activity_type")
        status_type = sa.Enum(*APPLICATION_STATUSES, name="application_status")

    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("short_name", sa.String(length=6), nullable=False),
        sa.Column("facility_code_counter", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        *_archive_columns(),
        sa.UniqueConstraint("short_name", name="uq_companies_short_name"),
    )
    op.create_index("ix_companies_is_archived", "companies", ["is_archived"])

    op.create_table(
        "facilities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=3)),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        *_archive_columns(),
        sa.UniqueConstraint("company_id", "code", name="uq_facilities_company_code"),
    )
    op.create_index("ix_facilities_company_id", "facilities", ["company_id"])
    op.create_index("ix_facilities_is_archived", "facilities", ["is_archived"])

    op.create_table(
        "applications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.String(length=50), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("facility_id", sa.Integer(), sa.ForeignKey("facilities.id"), nullable=False),
        sa.Column("activity_type", activity_type, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("description", sa.Text()),
        sa.Column("status", status_type, nullable=False, server_default="draft"),
        sa.Column("created_by", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        *_archive_columns(),
    )
    op.create_index("ix_applications_application_id", "applications", ["application_id"])
    op.create_index("ix_applications_company_id", "applications", ["company_id"])
    op.create_index("ix_applications_facility_id", "applications", ["facility_id"])
    op.create_index("ix_applications_is_archived", "applications", ["is_archived"])
    op.create_index(
        "uq_applications_live_application_id",
        "applications",
        ["application_id"],
        unique=True,
        postgresql_where=sa.text("is_archived = false"),
        sqlite_where=sa.text("is_archived = 0"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="team_member"),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_company_id", "users", ["company_id"])

    op.create_table(
        "application_documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.Integer(), sa.ForeignKey("applications.id"), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("storage_key", sa.String(length=500)),
        sa.Column("uploaded_by", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_application_documents_application_id", "application_documents", ["application_id"])

    op.create_table(
        "application_submissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.Integer(), sa.ForeignKey("applications.id"), nullable=False),
        sa.Column("phase", sa.String(length=50)),
        sa.Column("data", json_type),
        sa.Column("submitted_by", sa.String(length=255)),
        sa.Column("submitted_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_application_submissions_application_id", "application_submissions", ["application_id"])

    op.create_table(
        "application_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.Integer(), sa.ForeignKey("applications.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assigned_by", sa.String(length=255)),
        sa.Column("assigned_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("application_id", "user_id", name="uq_application_assignments_user"),
    )
    op.create_index("ix_application_assignments_application_id", "application_assignments", ["application_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.Integer(), sa.ForeignKey("applications.id"), nullable=True),
        sa.Column("subject", sa.String(length=255)),
        sa.Column("body", sa.Text()),
        sa.Column("from_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_messages_application_id", "messages", ["application_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.Integer(), sa.ForeignKey("applications.id"), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("kind", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=255)),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_notifications_application_id", "notifications", ["application_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_application_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_messages_application_id", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_application_assignments_application_id", table_name="application_assignments")
    op.drop_table("application_assignments")
    op.drop_index("ix_application_submissions_application_id", table_name="application_submissions")
    op.drop_table("application_submissions")
    op.drop_index("ix_application_documents_application_id", table_name="application_documents")
    op.drop_table("application_documents")
    op.drop_index("ix_users_company_id", table_name="users")
    op.drop_table("users")
    op.drop_index("uq_applications_live_application_id", table_name="applications")
    op.drop_index("ix_applications_is_archived", table_name="applications")
    op.drop_index("ix_applications_facility_id", table_name="applications")
    op.drop_index("ix_applications_company_id", table_name="applications")
    op.drop_index("ix_applications_application_id", table_name="applications")
    op.drop_table("applications")
    op.drop_index("ix_facilities_is_archived", table_name="facilities")
    op.drop_index("ix_facilities_company_id", table_name="facilities")
    op.drop_table("facilities")
    op.drop_index("ix_companies_is_archived", table_name="companies")
    op.drop_table("companies")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        postgresql.ENUM(name="application_status").drop(bind, checkfirst=True)
        postgresql.ENUM(name="activity_type").drop(bind, checkfirst=True)
