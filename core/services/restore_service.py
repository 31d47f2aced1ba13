"""
Restore engine: clear archive flags on exactly the given entities.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.audit_constants import EVENT_ENTITY_RESTORED
from core.context import RequestContext, resolve_actor
from core.db import DB
from core.errors import ConstraintViolation
from core.models import ENTITY_MODELS, Application
from core.services.portal_shared import (
    DEFAULT_ARCHIVE_ACTOR,
    MAX_ACTOR_LENGTH,
    _bulk_status,
    _log_audit_event,
    _owning_company_id,
    _parse_entity_refs,
    _per_id_error,
    _serialize_entity_ref,
    company_lock,
    logger,
    service_tool,
)
from core.validators import validate_optional_text as _validate_optional_text


def _clear_archive_state(record) -> None:
    record.is_archived = False
    record.archived_at = None
    record.archived_by = None
    record.archive_reason = None


def _ensure_identifier_free(db, application: Application, ref: str) -> None:
    holder = (
        db.query(Application.id)
        .filter(
            Application.application_id == application.application_id,
            Application.is_archived.is_(False),
            Application.id != application.id,
        )
        .first()
    )
    if holder is not None:
        raise ConstraintViolation(
            f"{application.application_id} was reissued to application:{holder[0]}",
            ref=ref,
            reason="identifier_in_use",
        )


@service_tool
def restore_entities(
    entity_refs: List[str],
    actor: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Restore archived entities.

    Restore does not cascade: a restored company keeps its facilities and
    applications archived until each is restored on its own. Ghost entries are
    never touched, so a restored application's identifier stays in the
    registry.
    """
    refs = _parse_entity_refs(entity_refs)
    _validate_optional_text(actor, "actor", MAX_ACTOR_LENGTH)
    actor_name = actor or resolve_actor(context, DEFAULT_ARCHIVE_ACTOR)

    restored_ids: list[str] = []
    skipped_ids: list[str] = []
    errors: list[dict] = []

    for entity_type, entity_id in refs:
        ref = _serialize_entity_ref(entity_type, entity_id)
        model = ENTITY_MODELS[entity_type]
        db = DB.SessionLocal()
        try:
            record = db.get(model, entity_id)
            if record is None:
                logger.info("restore_skipped", extra={"ref": ref, "reason": "not_found"})
                skipped_ids.append(ref)
                continue
            with company_lock(_owning_company_id(entity_type, record)):
                db.refresh(record)
                if not record.is_archived:
                    logger.info("restore_skipped", extra={"ref": ref, "reason": "not_archived"})
                    skipped_ids.append(ref)
                    continue
                if entity_type == "application":
                    _ensure_identifier_free(db, record, ref)
                _clear_archive_state(record)
                _log_audit_event(
                    db,
                    event_type=EVENT_ENTITY_RESTORED,
                    target_type=entity_type,
                    target_ids=[ref],
                    count_affected=1,
                    reason=None,
                    actor_label=actor_name,
                    context=context,
                    metadata={"cascade": False},
                )
                db.commit()
        except ConstraintViolation as exc:
            db.rollback()
            logger.info("restore_rejected", extra={"ref": ref, "reason": exc.reason})
            errors.append(_per_id_error(ref, exc))
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("restore_failed", extra={"ref": ref, "detail": str(exc)})
            errors.append(_per_id_error(ref, exc))
            continue
        finally:
            db.close()

        restored_ids.append(ref)
        logger.info("entity_restored", extra={"ref": ref})

    return {
        "status": _bulk_status("restored", len(restored_ids), errors),
        "restored_count": len(restored_ids),
        "restored_ids": restored_ids,
        "skipped_count": len(skipped_ids),
        "skipped_ids": skipped_ids,
        "error_count": len(errors),
        "errors": errors,
    }
