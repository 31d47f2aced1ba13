"""
Application creation: allocate an identifier and persist the row together.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import IntegrityError

import core.config as config
from core.audit_constants import EVENT_APPLICATION_CREATED
from core.context import RequestContext, resolve_actor
from core.db import DB
from core.errors import PersistenceFailure
from core.models import Application, ApplicationStatus
from core.services.application_ids import allocate_application_id
from core.services.portal_shared import (
    MAX_ACTOR_LENGTH,
    MAX_TITLE_LENGTH,
    _enum_value,
    _log_audit_event,
    _serialize_datetime,
    _serialize_entity_ref,
    company_lock,
    logger,
    service_tool,
)
from core.validators import (
    validate_activity_type as _validate_activity_type,
    validate_optional_text as _validate_optional_text,
    validate_positive_id as _validate_positive_id,
)

ALLOCATOR_RETRY_MAX = config.ALLOCATOR_RETRY_MAX


def _serialize_application(application: Application) -> dict:
    return {
        "id": application.id,
        "application_id": application.application_id,
        "company_id": application.company_id,
        "facility_id": application.facility_id,
        "activity_type": _enum_value(application.activity_type),
        "title": application.title,
        "status": _enum_value(application.status),
        "created_by": application.created_by,
        "is_archived": application.is_archived,
        "created_at": _serialize_datetime(application.created_at),
    }


@service_tool
def create_application(
    company_id: int,
    facility_id: int,
    activity_type: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    created_by: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Create an application with a freshly allocated identifier.

    Allocation and insert share one transaction under the company lock. If
    another process inserts the same identifier first, the live-identifier
    unique index rejects ours and allocation is retried.
    """
    _validate_positive_id(company_id, "company_id")
    _validate_positive_id(facility_id, "facility_id")
    activity = _validate_activity_type(activity_type)
    _validate_optional_text(title, "title", MAX_TITLE_LENGTH)
    _validate_optional_text(created_by, "created_by", MAX_ACTOR_LENGTH)
    creator = created_by or resolve_actor(context)

    with company_lock(company_id):
        for attempt in range(1, ALLOCATOR_RETRY_MAX + 1):
            db = DB.SessionLocal()
            try:
                identifier = allocate_application_id(db, company_id, facility_id, activity)
                application = Application(
                    application_id=identifier,
                    company_id=company_id,
                    facility_id=facility_id,
                    activity_type=activity,
                    title=(title or "").strip(),
                    description=description,
                    status=ApplicationStatus.draft,
                    created_by=creator,
                )
                db.add(application)
                db.flush()
                _log_audit_event(
                    db,
                    event_type=EVENT_APPLICATION_CREATED,
                    target_type="application",
                    target_ids=[_serialize_entity_ref("application", application.id)],
                    count_affected=1,
                    reason=None,
                    actor_label=creator,
                    context=context,
                    metadata={"application_id": identifier, "activity_type": activity.value},
                )
                db.commit()
                logger.info(
                    "application_created",
                    extra={"application_id": identifier, "company_id": company_id, "attempt": attempt},
                )
                return {"status": "created", "application": _serialize_application(application)}
            except IntegrityError:
                db.rollback()
                logger.warning(
                    "application_id_conflict",
                    extra={"company_id": company_id, "facility_id": facility_id, "attempt": attempt},
                )
            finally:
                db.close()

    raise PersistenceFailure(
        f"could not persist a unique application identifier after {ALLOCATOR_RETRY_MAX} attempts"
    )
