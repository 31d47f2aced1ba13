"""
Canonical audit event type strings.
"""

EVENT_ENTITY_ARCHIVED = "entity.archived"
EVENT_ENTITY_RESTORED = "entity.restored"
EVENT_ENTITY_PURGED = "entity.purged"
EVENT_APPLICATION_CREATED = "application.created"
EVENT_APPLICATION_IDS_REWRITTEN = "application.ids_rewritten"
EVENT_GHOST_ID_CLEARED = "ghost_id.cleared"
EVENT_FACILITY_CODES_BACKFILLED = "facility.codes_backfilled"

AUDIT_EVENT_TYPES = frozenset({
    EVENT_ENTITY_ARCHIVED,
    EVENT_ENTITY_RESTORED,
    EVENT_ENTITY_PURGED,
    EVENT_APPLICATION_CREATED,
    EVENT_APPLICATION_IDS_REWRITTEN,
    EVENT_GHOST_ID_CLEARED,
    EVENT_FACILITY_CODES_BACKFILLED,
})

__all__ = [
    "AUDIT_EVENT_TYPES",
    "EVENT_ENTITY_ARCHIVED",
    "EVENT_ENTITY_RESTORED",
    "EVENT_ENTITY_PURGED",
    "EVENT_APPLICATION_CREATED",
    "EVENT_APPLICATION_IDS_REWRITTEN",
    "EVENT_GHOST_ID_CLEARED",
    "EVENT_FACILITY_CODES_BACKFILLED",
]
