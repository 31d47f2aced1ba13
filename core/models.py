"""
GrantGate Database Models
Companies, facilities, applications and the ghost identifier registry
"""

from datetime import datetime
from enum import Enum as PyEnum
import uuid
from sqlalchemy import (
    Column, Integer, String, Text, Boolean,
    DateTime, ForeignKey, CheckConstraint, Index, UniqueConstraint, Enum, JSON
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship, declarative_base

import core.config as config

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON
UUID_TYPE = UUID(as_uuid=True) if DB_BACKEND_EFFECTIVE == "postgres" else String(36)


def _uuid_default() -> str | uuid.UUID:
    value = uuid.uuid4()
    return value if DB_BACKEND_EFFECTIVE == "postgres" else str(value)

Base = declarative_base()

# =============================================================================
# Enums
# =============================================================================

class ActivityType(str, PyEnum):
    FRA = "FRA"
    EAA = "EAA"
    SEM = "SEM"
    EMIS = "EMIS"
    CR = "CR"


# Fixed bijection used in application identifiers; never reorder.
ACTIVITY_DIGITS = {
    ActivityType.FRA: "1",
    ActivityType.EAA: "2",
    ActivityType.SEM: "3",
    ActivityType.EMIS: "4",
    ActivityType.CR: "5",
}


class ApplicationStatus(str, PyEnum):
    draft = "draft"
    submitted = "submitted"
    under_review = "under_review"
    approved = "approved"
    rejected = "rejected"


class EntityType(str, PyEnum):
    company = "company"
    facility = "facility"
    application = "application"


# =============================================================================
# Companies
# =============================================================================

class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    short_name = Column(String(6), nullable=False)
    facility_code_counter = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    # Archive state
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime(timezone=True))
    archived_by = Column(String(255))
    archive_reason = Column(Text)

    # Relationships
    facilities = relationship("Facility", back_populates="company", order_by="Facility.id")
    applications = relationship("Application", back_populates="company", order_by="Application.id")
    users = relationship("User", back_populates="company")

    __table_args__ = (
        UniqueConstraint("short_name", name="uq_companies_short_name"),
        Index("ix_companies_is_archived", "is_archived"),
    )


# =============================================================================
# Facilities
# =============================================================================

class Facility(Base):
    __tablename__ = "facilities"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    name = Column(String(255), nullable=False)
    code = Column(String(3))  # assigned once at creation, never recomputed
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    # Archive state
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime(timezone=True))
    archived_by = Column(String(255))
    archive_reason = Column(Text)

    # Relationships
    company = relationship("Company", back_populates="facilities")
    applications = relationship("Application", back_populates="facility", order_by="Application.id")

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_facilities_company_code"),
        Index("ix_facilities_company_id", "company_id"),
        Index("ix_facilities_is_archived", "is_archived"),
    )


# =============================================================================
# Applications
# =============================================================================

class Application(Base):
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True)
    application_id = Column(String(50), nullable=False)  # ACME-001-102
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    facility_id = Column(Integer, ForeignKey("facilities.id"), nullable=False)
    activity_type = Column(Enum(ActivityType, name="activity_type"), nullable=False)
    title = Column(String(255), nullable=False, default="")
    description = Column(Text)
    status = Column(
        Enum(ApplicationStatus, name="application_status"),
        default=ApplicationStatus.draft,
        nullable=False,
    )
    created_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    # Archive state
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime(timezone=True))
    archived_by = Column(String(255))
    archive_reason = Column(Text)

    # Relationships
    company = relationship("Company", back_populates="applications")
    facility = relationship("Facility", back_populates="applications")

    __table_args__ = (
        Index("ix_applications_application_id", "application_id"),
        Index("ix_applications_company_id", "company_id"),
        Index("ix_applications_facility_id", "facility_id"),
        Index("ix_applications_is_archived", "is_archived"),
    )


# Live identifiers are unique; an archived row may share its identifier with a
# live row only after an admin cleared the ghost entry and it was reissued.
Index(
    "uq_applications_live_application_id",
    Application.application_id,
    unique=True,
    postgresql_where=Application.is_archived.is_(False),
    sqlite_where=Application.is_archived.is_(False),
)


# =============================================================================
# Ghost Application IDs
# =============================================================================

class GhostApplicationId(Base):
    __tablename__ = "ghost_application_ids"

    id = Column(Integer, primary_key=True)
    application_id = Column(String(50), nullable=False)
    # Plain integers (no FKs): entries must outlive a permanent delete.
    company_id = Column(Integer, nullable=False)
    facility_id = Column(Integer, nullable=False)
    activity_type = Column(Enum(ActivityType, name="activity_type"), nullable=False)
    original_title = Column(String(255))
    deleted_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("application_id", name="uq_ghost_application_ids_application_id"),
        Index("ix_ghost_application_ids_company_id", "company_id"),
        Index("ix_ghost_application_ids_deleted_at", "deleted_at"),
    )


# =============================================================================
# Users
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default="team_member")
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    company = relationship("Company", back_populates="users")

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        Index("ix_users_company_id", "company_id"),
    )


# =============================================================================
# Application dependents (cleaned up before a permanent delete)
# =============================================================================

class ApplicationDocument(Base):
    __tablename__ = "application_documents"

    id = Column(Integer, primary_key=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False)
    filename = Column(String(255), nullable=False)
    storage_key = Column(String(500))
    uploaded_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index("ix_application_documents_application_id", "application_id"),
    )


class ApplicationSubmission(Base):
    __tablename__ = "application_submissions"

    id = Column(Integer, primary_key=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False)
    phase = Column(String(50))
    data = Column(JSON_TYPE, default=dict)
    submitted_by = Column(String(255))
    submitted_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index("ix_application_submissions_application_id", "application_id"),
    )


class ApplicationAssignment(Base):
    __tablename__ = "application_assignments"

    id = Column(Integer, primary_key=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    assigned_by = Column(String(255))
    assigned_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("application_id", "user_id", name="uq_application_assignments_user"),
        Index("ix_application_assignments_application_id", "application_id"),
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=True)
    subject = Column(String(255))
    body = Column(Text)
    from_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index("ix_messages_application_id", "application_id"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    kind = Column(String(50), nullable=False)
    title = Column(String(255))
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index("ix_notifications_application_id", "application_id"),
    )


# =============================================================================
# Audit Events
# =============================================================================

class AuditEvent(Base):
    __tablename__ = "audit_events"

    event_id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    event_type = Column(String(100), nullable=False)
    event_version = Column(Integer, default=1, nullable=False)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(255))
    user_id = Column(String(255))
    target_type = Column(String(50), nullable=False)
    target_ids = Column(JSON_TYPE, nullable=False)
    count_affected = Column(Integer)
    reason = Column(Text)
    request_id = Column(String(255))
    metadata_ = Column("metadata", JSON_TYPE)

    __table_args__ = (
        CheckConstraint("event_type != ''", name="ck_audit_events_event_type"),
        Index("ix_audit_events_created_at", "created_at"),
        Index("ix_audit_events_event_type", "event_type"),
        Index("ix_audit_events_user_id", "user_id"),
    )


# =============================================================================
# Entity model registry
# =============================================================================

ENTITY_MODELS = {
    EntityType.company.value: Company,
    EntityType.facility.value: Facility,
    EntityType.application.value: Application,
}

# Rows that reference applications.id and block a hard delete.
APPLICATION_DEPENDENT_MODELS = (
    ApplicationDocument,
    ApplicationSubmission,
    ApplicationAssignment,
    Message,
    Notification,
)

__all__ = [
    "Base",
    "ActivityType",
    "ACTIVITY_DIGITS",
    "ApplicationStatus",
    "EntityType",
    "Company",
    "Facility",
    "Application",
    "GhostApplicationId",
    "User",
    "ApplicationDocument",
    "ApplicationSubmission",
    "ApplicationAssignment",
    "Message",
    "Notification",
    "AuditEvent",
    "ENTITY_MODELS",
    "APPLICATION_DEPENDENT_MODELS",
]
