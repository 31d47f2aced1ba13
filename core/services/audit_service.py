"""
Read access to the lifecycle audit trail.
"""

from __future__ import annotations

from typing import Optional

from core.audit import list_audit_events
from core.audit_constants import AUDIT_EVENT_TYPES
from core.db import DB
from core.errors import ValidationIssue
from core.services.portal_shared import (
    AUDIT_LIST_LIMIT_DEFAULT,
    AUDIT_LIST_LIMIT_MAX,
    MAX_ACTOR_LENGTH,
    _parse_entity_ref,
    _serialize_entity_ref,
    service_tool,
)
from core.validators import (
    validate_limit as _validate_limit,
    validate_optional_text as _validate_optional_text,
)


@service_tool
def list_audit_trail(
    entity_ref: Optional[str] = None,
    event_type: Optional[str] = None,
    actor_id: Optional[str] = None,
    limit: int = AUDIT_LIST_LIMIT_DEFAULT,
    cursor: Optional[str] = None,
) -> dict:
    """
    Audit events newest first, optionally narrowed to one entity, one event
    type or one actor.

    ``entity_ref`` matches events that name the entity itself: archiving a
    company is listed under ``company:12``, not under its applications.
    """
    target_ref = None
    if entity_ref is not None:
        entity_type, entity_id = _parse_entity_ref(entity_ref, field="entity_ref")
        target_ref = _serialize_entity_ref(entity_type, entity_id)
    if event_type is not None and event_type not in AUDIT_EVENT_TYPES:
        raise ValidationIssue(
            f"event_type must be one of: {', '.join(sorted(AUDIT_EVENT_TYPES))}",
            field="event_type",
            error_type="invalid_choice",
        )
    _validate_optional_text(actor_id, "actor_id", MAX_ACTOR_LENGTH)
    _validate_limit(limit, "limit", AUDIT_LIST_LIMIT_MAX)

    db = DB.SessionLocal()
    try:
        try:
            return list_audit_events(
                db,
                event_type=event_type,
                target_ref=target_ref,
                actor_id=actor_id,
                limit=limit,
                cursor=cursor,
            )
        except ValueError as exc:
            raise ValidationIssue(str(exc), field="cursor", error_type="invalid_cursor") from exc
    finally:
        db.close()
