"""
Shared helpers for portal services: error wrapping, entity refs, locks, audit.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

import core.config as config
from core.audit import ALLOWED_ACTOR_TYPES, log_event
from core.context import RequestContext, get_current_request_context, resolve_actor
from core.errors import (
    AllocatorExhausted,
    ConstraintViolation,
    EntityNotFound,
    PersistenceFailure,
    ValidationIssue,
)
from core.models import ENTITY_MODELS

# =============================================================================
# Configuration
# =============================================================================

logger = config.logger

ARCHIVE_BATCH_MAX = config.ARCHIVE_BATCH_MAX
GHOST_CLEAR_BATCH_MAX = config.GHOST_CLEAR_BATCH_MAX
GHOST_LIST_LIMIT_DEFAULT = config.GHOST_LIST_LIMIT_DEFAULT
GHOST_LIST_LIMIT_MAX = config.GHOST_LIST_LIMIT_MAX
AUDIT_LIST_LIMIT_DEFAULT = config.AUDIT_LIST_LIMIT_DEFAULT
AUDIT_LIST_LIMIT_MAX = config.AUDIT_LIST_LIMIT_MAX
MAX_NAME_LENGTH = config.MAX_NAME_LENGTH
MAX_TITLE_LENGTH = config.MAX_TITLE_LENGTH
MAX_REASON_LENGTH = config.MAX_REASON_LENGTH
MAX_ACTOR_LENGTH = config.MAX_ACTOR_LENGTH
DEFAULT_ARCHIVE_ACTOR = config.DEFAULT_ARCHIVE_ACTOR
DEFAULT_ARCHIVE_REASON = config.DEFAULT_ARCHIVE_REASON

ERROR_TYPE_VALIDATION = "validation_error"
ERROR_TYPE_NOT_FOUND = "not_found"
ERROR_TYPE_CAPACITY = "capacity_exceeded"
ERROR_TYPE_CONSTRAINT = "constraint_violation"
ERROR_TYPE_PERSISTENCE = "persistence_failure"


# =============================================================================
# Error handling
# =============================================================================

def _tool_error_payload(tool_name: str, exc: ValidationIssue) -> dict:
    return {
        "status": "error",
        "error_type": ERROR_TYPE_VALIDATION,
        "tool": tool_name,
        "field": exc.field,
        "message": str(exc),
    }


def _error_payload(tool_name: str, error_type: str, exc: Exception, **extra) -> dict:
    payload = {
        "status": "error",
        "error_type": error_type,
        "tool": tool_name,
        "message": str(exc),
    }
    payload.update({key: value for key, value in extra.items() if value is not None})
    return payload


def _log_validation_issue(tool_name: str, exc: ValidationIssue, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    if warn:
        logger.warning("tool_validation_error", extra=payload)
    else:
        logger.info("tool_validation_error", extra=payload)


def _tool_error_handler(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            _log_validation_issue(fn.__name__, exc, warn=False)
            return _tool_error_payload(fn.__name__, exc)
        except ValueError as exc:
            issue = ValidationIssue(str(exc), field="unknown", error_type="value_error")
            _log_validation_issue(fn.__name__, issue, warn=True)
            return _tool_error_payload(fn.__name__, issue)
        except EntityNotFound as exc:
            logger.info(
                "tool_not_found",
                extra={"tool": fn.__name__, "entity_type": exc.entity_type, "entity_id": exc.entity_id},
            )
            return _error_payload(
                fn.__name__,
                ERROR_TYPE_NOT_FOUND,
                exc,
                entity_type=exc.entity_type,
                entity_id=exc.entity_id,
            )
        except AllocatorExhausted as exc:
            logger.warning("allocator_exhausted", extra={"tool": fn.__name__, "prefix": exc.prefix})
            return _error_payload(fn.__name__, ERROR_TYPE_CAPACITY, exc, prefix=exc.prefix)
        except ConstraintViolation as exc:
            logger.info(
                "tool_constraint_violation",
                extra={"tool": fn.__name__, "ref": exc.ref, "reason": exc.reason},
            )
            return _error_payload(fn.__name__, ERROR_TYPE_CONSTRAINT, exc, ref=exc.ref, reason=exc.reason)
        except PersistenceFailure as exc:
            logger.error("tool_persistence_failure", extra={"tool": fn.__name__, "detail": str(exc)})
            return _error_payload(fn.__name__, ERROR_TYPE_PERSISTENCE, exc)
        except SQLAlchemyError as exc:
            logger.exception("tool_database_error", extra={"tool": fn.__name__})
            return _error_payload(
                fn.__name__,
                ERROR_TYPE_PERSISTENCE,
                PersistenceFailure("database operation failed"),
            )
    return wrapper


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    return _tool_error_handler(fn)


def _per_id_error(ref: str, exc: Exception) -> dict:
    """Describe one failed id inside a bulk result."""
    if isinstance(exc, ConstraintViolation):
        return {"ref": ref, "error_type": ERROR_TYPE_CONSTRAINT, "reason": exc.reason, "message": str(exc)}
    if isinstance(exc, EntityNotFound):
        return {"ref": ref, "error_type": ERROR_TYPE_NOT_FOUND, "message": str(exc)}
    if isinstance(exc, SQLAlchemyError):
        return {"ref": ref, "error_type": ERROR_TYPE_PERSISTENCE, "message": "database operation failed"}
    return {"ref": ref, "error_type": ERROR_TYPE_PERSISTENCE, "message": str(exc)}


def _bulk_status(done_status: str, succeeded: int, errors: list) -> str:
    """Overall status of a bulk call: done, partial or failed."""
    if not errors:
        return done_status
    return "partial" if succeeded else "failed"


# =============================================================================
# Entity refs
# =============================================================================

def _serialize_entity_ref(entity_type: str, entity_id: int) -> str:
    return f"{entity_type}:{entity_id}"


def _parse_entity_ref(raw, field: str = "entity_refs") -> tuple[str, int]:
    if not isinstance(raw, str):
        raise ValidationIssue(
            f"{field} must contain 'type:id' strings",
            field=field,
            error_type="invalid_type",
        )
    value = raw.strip()
    if ":" not in value:
        raise ValidationIssue(
            f"{field} entries must look like 'company:12'",
            field=field,
            error_type="invalid_format",
        )
    entity_type, entity_id = value.split(":", 1)
    entity_type = entity_type.strip().lower()
    if entity_type not in ENTITY_MODELS:
        raise ValidationIssue(
            f"Unknown entity type: {entity_type}",
            field=field,
            error_type="invalid_type",
        )
    try:
        parsed_id = int(entity_id)
    except ValueError as exc:
        raise ValidationIssue(
            f"{field} must include a numeric id",
            field=field,
            error_type="invalid_id",
        ) from exc
    if parsed_id <= 0:
        raise ValidationIssue(f"{field} must include a positive id", field=field, error_type="invalid_id")
    return entity_type, parsed_id


def _parse_entity_refs(raw_refs, field: str = "entity_refs") -> list[tuple[str, int]]:
    if not isinstance(raw_refs, (list, tuple)) or not raw_refs:
        raise ValidationIssue(f"{field} must be a non-empty list", field=field, error_type="required")
    if len(raw_refs) > ARCHIVE_BATCH_MAX:
        raise ValidationIssue(f"{field} exceeds max items {ARCHIVE_BATCH_MAX}", field=field, error_type="max_items")
    refs: list[tuple[str, int]] = []
    seen = set()
    for raw in raw_refs:
        ref = _parse_entity_ref(raw, field)
        if ref in seen:
            continue
        seen.add(ref)
        refs.append(ref)
    return refs


def _owning_company_id(entity_type: str, record) -> int:
    if entity_type == "company":
        return record.id
    return record.company_id


# =============================================================================
# Per-company locks
# =============================================================================

_company_locks: dict[int, threading.RLock] = {}
_company_locks_guard = threading.Lock()


def _get_company_lock(company_id: int) -> threading.RLock:
    with _company_locks_guard:
        lock = _company_locks.get(company_id)
        if lock is None:
            lock = threading.RLock()
            _company_locks[company_id] = lock
        return lock


@contextmanager
def company_lock(company_id: int):
    """Serialize allocation and cascading writes for one company in this process."""
    lock = _get_company_lock(company_id)
    with lock:
        yield


# =============================================================================
# Audit
# =============================================================================

def _resolve_audit_actor(
    context: Optional[RequestContext],
    actor_label: Optional[str],
) -> tuple[str, Optional[str], Optional[str], Optional[str]]:
    if context is None:
        context = get_current_request_context()
    actor_value = (actor_label or resolve_actor(context) or "").strip()
    normalized = actor_value.lower() if actor_value else ""
    if normalized in ALLOWED_ACTOR_TYPES:
        actor_type = normalized
        actor_id = None
    else:
        actor_type = "user" if actor_value else "system"
        actor_id = actor_value or None
    user_id = None
    request_id = None
    if context:
        if context.auth and context.auth.user_id is not None:
            user_id = str(context.auth.user_id)
        request_id = context.request_id
    return actor_type, actor_id, user_id, request_id


def _log_audit_event(
    db,
    *,
    event_type: str,
    target_type: str,
    target_ids: list,
    count_affected: int,
    reason: Optional[str],
    actor_label: Optional[str],
    context: Optional[RequestContext] = None,
    metadata: Optional[dict] = None,
) -> None:
    if not target_ids:
        return
    actor_type, actor_id, user_id, request_id = _resolve_audit_actor(context, actor_label)
    log_event(
        db,
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        user_id=user_id,
        target_type=target_type,
        target_ids=target_ids,
        count_affected=count_affected,
        reason=reason,
        request_id=request_id,
        metadata=metadata,
    )


def _serialize_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _enum_value(value):
    return getattr(value, "value", value)
