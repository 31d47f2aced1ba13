"""
Ghost application ID registry.

Every identifier that was archived stays here until an admin clears it, so the
allocator never hands it out again.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from core.audit_constants import EVENT_GHOST_ID_CLEARED
from core.context import RequestContext
from core.db import DB
from core.errors import EntityNotFound, ValidationIssue
from core.models import Application, Company, Facility, GhostApplicationId
from core.services.portal_shared import (
    GHOST_CLEAR_BATCH_MAX,
    GHOST_LIST_LIMIT_DEFAULT,
    GHOST_LIST_LIMIT_MAX,
    _enum_value,
    _log_audit_event,
    _serialize_datetime,
    logger,
    service_tool,
)
from core.validators import (
    validate_limit as _validate_limit,
    validate_positive_id as _validate_positive_id,
    validate_string_list as _validate_string_list,
)

MAX_IDENTIFIER_LENGTH = 50


def upsert_ghost_id(db, application: Application, deleted_at: Optional[datetime] = None) -> GhostApplicationId:
    """Record the application's identifier; refresh the entry if it already exists."""
    deleted_at = deleted_at or datetime.utcnow()
    ghost = (
        db.query(GhostApplicationId)
        .filter(GhostApplicationId.application_id == application.application_id)
        .first()
    )
    if ghost is None:
        ghost = GhostApplicationId(
            application_id=application.application_id,
            company_id=application.company_id,
            facility_id=application.facility_id,
            activity_type=application.activity_type,
            original_title=application.title,
            deleted_at=deleted_at,
        )
        db.add(ghost)
    else:
        ghost.company_id = application.company_id
        ghost.facility_id = application.facility_id
        ghost.activity_type = application.activity_type
        ghost.original_title = application.title
        ghost.deleted_at = deleted_at
    return ghost


def _serialize_ghost(ghost: GhostApplicationId, company: Optional[Company], facility: Optional[Facility]) -> dict:
    return {
        "id": ghost.id,
        "application_id": ghost.application_id,
        "company_id": ghost.company_id,
        "company_short_name": company.short_name if company else None,
        "company_name": company.name if company else None,
        "facility_id": ghost.facility_id,
        "facility_name": facility.name if facility else None,
        "activity_type": _enum_value(ghost.activity_type),
        "original_title": ghost.original_title,
        "deleted_at": _serialize_datetime(ghost.deleted_at),
    }


@service_tool
def list_ghost_ids(
    company_id: Optional[int] = None,
    limit: int = GHOST_LIST_LIMIT_DEFAULT,
) -> dict:
    """
    List ghost identifiers, newest first, with the company and facility they
    belonged to when those rows still exist.
    """
    if company_id is not None:
        _validate_positive_id(company_id, "company_id")
    _validate_limit(limit, "limit", GHOST_LIST_LIMIT_MAX)

    db = DB.SessionLocal()
    try:
        query = (
            db.query(GhostApplicationId, Company, Facility)
            .outerjoin(Company, Company.id == GhostApplicationId.company_id)
            .outerjoin(Facility, Facility.id == GhostApplicationId.facility_id)
        )
        if company_id is not None:
            query = query.filter(GhostApplicationId.company_id == company_id)
        rows = (
            query.order_by(GhostApplicationId.deleted_at.desc(), GhostApplicationId.id.desc())
            .limit(limit)
            .all()
        )
        return {
            "status": "ok",
            "count": len(rows),
            "ghost_ids": [_serialize_ghost(ghost, company, facility) for ghost, company, facility in rows],
        }
    finally:
        db.close()


@service_tool
def clear_ghost_ids(
    application_ids: List[str],
    actor: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Remove identifiers from the registry so the allocator may reissue them.
    """
    _validate_string_list(application_ids, "application_ids", GHOST_CLEAR_BATCH_MAX, MAX_IDENTIFIER_LENGTH)
    requested = sorted({value.strip() for value in application_ids if value.strip()})
    if not requested:
        raise ValidationIssue(
            "application_ids must contain at least one identifier",
            field="application_ids",
            error_type="required",
        )

    db = DB.SessionLocal()
    try:
        rows = (
            db.query(GhostApplicationId)
            .filter(GhostApplicationId.application_id.in_(requested))
            .all()
        )
        cleared = sorted(row.application_id for row in rows)
        for row in rows:
            db.delete(row)
        not_found = [value for value in requested if value not in set(cleared)]

        _log_audit_event(
            db,
            event_type=EVENT_GHOST_ID_CLEARED,
            target_type="ghost_id",
            target_ids=cleared,
            count_affected=len(cleared),
            reason=None,
            actor_label=actor,
            context=context,
            metadata={"scope": "selected"},
        )
        db.commit()
        logger.info(
            "ghost_ids_cleared",
            extra={"cleared_count": len(cleared), "not_found_count": len(not_found)},
        )
        return {
            "status": "cleared",
            "cleared_count": len(cleared),
            "cleared_ids": cleared,
            "not_found_ids": not_found,
        }
    finally:
        db.close()


@service_tool
def clear_all_ghost_ids(
    actor: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    db = DB.SessionLocal()
    try:
        cleared_count = db.query(GhostApplicationId).delete(synchronize_session=False)
        _log_audit_event(
            db,
            event_type=EVENT_GHOST_ID_CLEARED,
            target_type="ghost_id",
            target_ids=["*"],
            count_affected=cleared_count,
            reason=None,
            actor_label=actor,
            context=context,
            metadata={"scope": "all"},
        )
        db.commit()
        logger.warning("ghost_ids_cleared_all", extra={"cleared_count": cleared_count})
        return {"status": "cleared", "cleared_count": cleared_count}
    finally:
        db.close()


@service_tool
def delete_ghost_id(
    ghost_id: int,
    actor: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Remove one registry row by its row id."""
    _validate_positive_id(ghost_id, "ghost_id")

    db = DB.SessionLocal()
    try:
        ghost = db.get(GhostApplicationId, ghost_id)
        if ghost is None:
            raise EntityNotFound("ghost_id", ghost_id)
        identifier = ghost.application_id
        db.delete(ghost)
        _log_audit_event(
            db,
            event_type=EVENT_GHOST_ID_CLEARED,
            target_type="ghost_id",
            target_ids=[identifier],
            count_affected=1,
            reason=None,
            actor_label=actor,
            context=context,
            metadata={"scope": "single"},
        )
        db.commit()
        logger.info("ghost_id_cleared", extra={"application_id": identifier})
        return {"status": "cleared", "cleared_count": 1, "application_id": identifier}
    finally:
        db.close()
