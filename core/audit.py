"""
Audit trail for lifecycle operations.

Rows record who touched which entities and how many rows moved. They never
carry application content: metadata is checked against a key deny-list and a
length cap before anything is written.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import String, and_, cast, or_

from core.models import DB_BACKEND_EFFECTIVE, AuditEvent

ALLOWED_ACTOR_TYPES = {"user", "system_admin", "system", "integration"}
ALLOWED_TARGET_TYPES = {"company", "facility", "application", "ghost_id"}

# Matched as substrings of the normalized key, so "title_body" is refused too.
FORBIDDEN_METADATA_KEYS = (
    "content",
    "description",
    "body",
    "document_body",
    "raw_text",
    "password",
)
MAX_METADATA_STRING_LENGTH = 500
MAX_TARGET_ID_LENGTH = 200


def _forbidden_key(key: str) -> bool:
    normalized = key.strip().lower().replace("-", "_")
    return any(token in normalized for token in FORBIDDEN_METADATA_KEYS)


def _check_metadata(value: Any, path: str = "metadata") -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path} keys must be strings")
            if _forbidden_key(key):
                raise ValueError(f"{path}.{key} is not allowed in audit metadata")
            _check_metadata(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for item in value:
            _check_metadata(item, path)
    elif isinstance(value, str) and len(value) > MAX_METADATA_STRING_LENGTH:
        raise ValueError(f"{path} exceeds {MAX_METADATA_STRING_LENGTH} characters")


def _check_target_ids(target_ids: Any) -> list[str]:
    """Targets are entity refs ("company:12") or application identifiers."""
    if not isinstance(target_ids, (list, tuple)) or not target_ids:
        raise ValueError("target_ids must be a non-empty list")
    checked = []
    for item in target_ids:
        if not isinstance(item, str) or not item:
            raise ValueError("target_ids must contain non-empty strings")
        if len(item) > MAX_TARGET_ID_LENGTH:
            raise ValueError(f"target id exceeds {MAX_TARGET_ID_LENGTH} characters")
        checked.append(item)
    return checked


def log_event(
    db,
    *,
    event_type: str,
    actor_type: str,
    actor_id: Optional[str] = None,
    user_id: Optional[str] = None,
    target_type: str,
    target_ids: list[str],
    count_affected: Optional[int] = None,
    reason: Optional[str] = None,
    request_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> AuditEvent:
    """
    Add an audit row to the caller's session.

    The row commits or rolls back with the operation it describes.
    """
    if not isinstance(event_type, str) or not event_type:
        raise ValueError("event_type must be a non-empty string")
    if actor_type not in ALLOWED_ACTOR_TYPES:
        raise ValueError(f"actor_type must be one of {sorted(ALLOWED_ACTOR_TYPES)}")
    if target_type not in ALLOWED_TARGET_TYPES:
        raise ValueError(f"target_type must be one of {sorted(ALLOWED_TARGET_TYPES)}")
    targets = _check_target_ids(target_ids)
    if metadata is not None:
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be a dict")
        _check_metadata(metadata)

    event = AuditEvent(
        created_at=datetime.utcnow(),
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        user_id=user_id,
        target_type=target_type,
        target_ids=targets,
        count_affected=count_affected,
        reason=reason,
        request_id=request_id,
        metadata_=metadata,
    )
    db.add(event)
    return event


def _event_key(value: str):
    parsed = uuid.UUID(value)
    return parsed if DB_BACKEND_EFFECTIVE == "postgres" else str(parsed)


def _serialize_event(row: AuditEvent) -> dict:
    return {
        "event_id": str(row.event_id),
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "event_type": row.event_type,
        "actor_type": row.actor_type,
        "actor_id": row.actor_id,
        "target_type": row.target_type,
        "target_ids": row.target_ids,
        "count_affected": row.count_affected,
        "reason": row.reason,
        "request_id": row.request_id,
        "metadata": row.metadata_,
    }


def list_audit_events(
    db,
    *,
    event_type: Optional[str] = None,
    target_type: Optional[str] = None,
    target_ref: Optional[str] = None,
    actor_id: Optional[str] = None,
    limit: int = 100,
    cursor: Optional[str] = None,
) -> dict:
    """
    Page through the trail, newest first.

    ``target_ref`` keeps events whose target list names that ref. ``cursor`` is
    the ``event_id`` of the last row of the previous page; an unknown cursor
    raises ValueError.
    """
    query = db.query(AuditEvent)
    if event_type:
        query = query.filter(AuditEvent.event_type == event_type)
    if target_type:
        query = query.filter(AuditEvent.target_type == target_type)
    if actor_id:
        query = query.filter(AuditEvent.actor_id == actor_id)
    if target_ref:
        # JSON text of the target list; the quotes keep "company:1" from matching "company:12".
        query = query.filter(cast(AuditEvent.target_ids, String).like(f'%"{target_ref}"%'))

    if cursor:
        try:
            anchor = db.get(AuditEvent, _event_key(cursor))
        except ValueError as exc:
            raise ValueError("cursor is not a valid event id") from exc
        if anchor is None:
            raise ValueError("cursor does not match any audit event")
        query = query.filter(
            or_(
                AuditEvent.created_at < anchor.created_at,
                and_(
                    AuditEvent.created_at == anchor.created_at,
                    AuditEvent.event_id < anchor.event_id,
                ),
            )
        )

    rows = (
        query.order_by(AuditEvent.created_at.desc(), AuditEvent.event_id.desc())
        .limit(limit)
        .all()
    )
    return {
        "status": "ok",
        "count": len(rows),
        "events": [_serialize_event(row) for row in rows],
        "next_cursor": str(rows[-1].event_id) if len(rows) == limit else None,
    }


__all__ = [
    "ALLOWED_ACTOR_TYPES",
    "ALLOWED_TARGET_TYPES",
    "log_event",
    "list_audit_events",
]
