"""
Archive engine: cascading soft delete, permanent delete, archived listings.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.audit_constants import EVENT_ENTITY_ARCHIVED, EVENT_ENTITY_PURGED
from core.context import RequestContext, resolve_actor
from core.db import DB
from core.errors import ConstraintViolation, EntityNotFound, ValidationIssue
from core.models import (
    APPLICATION_DEPENDENT_MODELS,
    ENTITY_MODELS,
    Application,
    Company,
    Facility,
    GhostApplicationId,
    User,
)
from core.services.ghost_ids import upsert_ghost_id
from core.services.portal_shared import (
    ARCHIVE_BATCH_MAX,
    DEFAULT_ARCHIVE_ACTOR,
    DEFAULT_ARCHIVE_REASON,
    MAX_ACTOR_LENGTH,
    MAX_REASON_LENGTH,
    _bulk_status,
    _enum_value,
    _log_audit_event,
    _owning_company_id,
    _parse_entity_ref,
    _parse_entity_refs,
    _per_id_error,
    _serialize_datetime,
    _serialize_entity_ref,
    company_lock,
    logger,
    service_tool,
)
from core.validators import (
    validate_entity_type as _validate_entity_type,
    validate_id_list as _validate_id_list,
    validate_optional_text as _validate_optional_text,
)


# =============================================================================
# Archive
# =============================================================================

def _mark_archived(record, reason: str, actor: str, now: datetime) -> None:
    record.is_archived = True
    record.archived_at = now
    record.archived_by = actor
    record.archive_reason = reason


def _archive_applications(db, applications, reason: str, actor: str, now: datetime) -> tuple[int, list[str]]:
    """
    Archive the live rows among ``applications`` and ghost every identifier.

    Rows that were already archived keep their archive fields, but their ghost
    entry is written again so a cleared entry cannot leave the identifier free.
    Ghost entries commit with the archive flags.
    """
    newly_archived = 0
    ghosted = []
    for application in applications:
        if not application.is_archived:
            _mark_archived(application, reason, actor, now)
            newly_archived += 1
        upsert_ghost_id(db, application, deleted_at=now)
        if application.application_id not in ghosted:
            ghosted.append(application.application_id)
    return newly_archived, ghosted


def _archive_one_application(db, application, reason, actor, now, cascade) -> dict:
    _, ghosted = _archive_applications(db, [application], reason, actor, now)
    return {"applications": 0, "facilities": 0, "users_detached": 0, "ghost_ids": ghosted}


def _archive_one_facility(db, facility, reason, actor, now, cascade) -> dict:
    newly_archived, ghosted = 0, []
    if cascade:
        applications = (
            db.query(Application)
            .filter(Application.facility_id == facility.id)
            .order_by(Application.id.asc())
            .all()
        )
        newly_archived, ghosted = _archive_applications(db, applications, reason, actor, now)
    _mark_archived(facility, reason, actor, now)
    return {"applications": newly_archived, "facilities": 0, "users_detached": 0, "ghost_ids": ghosted}


def _archive_one_company(db, company, reason, actor, now, cascade) -> dict:
    newly_archived, ghosted = 0, []
    facility_count = 0
    if cascade:
        applications = (
            db.query(Application)
            .filter(Application.company_id == company.id)
            .order_by(Application.id.asc())
            .all()
        )
        newly_archived, ghosted = _archive_applications(db, applications, reason, actor, now)
        live_facilities = (
            db.query(Facility)
            .filter(Facility.company_id == company.id, Facility.is_archived.is_(False))
            .all()
        )
        for facility in live_facilities:
            _mark_archived(facility, reason, actor, now)
        facility_count = len(live_facilities)
    _mark_archived(company, reason, actor, now)
    # User accounts outlive the company; only the association is dropped.
    users_detached = (
        db.query(User)
        .filter(User.company_id == company.id)
        .update({User.company_id: None}, synchronize_session=False)
    )
    return {
        "applications": newly_archived,
        "facilities": facility_count,
        "users_detached": users_detached,
        "ghost_ids": ghosted,
    }


_ARCHIVERS = {
    "application": _archive_one_application,
    "facility": _archive_one_facility,
    "company": _archive_one_company,
}


@service_tool
def archive_entities(
    entity_type: str,
    entity_ids: List[int],
    reason: Optional[str] = None,
    actor: Optional[str] = None,
    cascade: bool = True,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Archive companies, facilities or applications.

    Each id runs in its own transaction under its company's lock: the archive
    flags and ghost entries for one id commit together, and a failure on one
    id leaves earlier ids committed. Missing or already archived ids are
    skipped.
    """
    entity_type = _validate_entity_type(entity_type).value
    _validate_id_list(entity_ids, "entity_ids", ARCHIVE_BATCH_MAX)
    if not entity_ids:
        raise ValidationIssue("entity_ids must not be empty", field="entity_ids", error_type="required")
    _validate_optional_text(reason, "reason", MAX_REASON_LENGTH)
    _validate_optional_text(actor, "actor", MAX_ACTOR_LENGTH)

    reason_text = reason.strip() if reason and reason.strip() else DEFAULT_ARCHIVE_REASON
    actor_name = actor or resolve_actor(context, DEFAULT_ARCHIVE_ACTOR)
    model = ENTITY_MODELS[entity_type]
    archiver = _ARCHIVERS[entity_type]

    archived_ids: list[str] = []
    skipped_ids: list[str] = []
    errors: list[dict] = []
    ghost_ids: list[str] = []
    cascaded = {"facilities": 0, "applications": 0}
    users_detached = 0

    for entity_id in dict.fromkeys(entity_ids):
        ref = _serialize_entity_ref(entity_type, entity_id)
        db = DB.SessionLocal()
        try:
            record = db.get(model, entity_id)
            if record is None:
                logger.info("archive_skipped", extra={"ref": ref, "reason": "not_found"})
                skipped_ids.append(ref)
                continue
            with company_lock(_owning_company_id(entity_type, record)):
                db.refresh(record)
                if record.is_archived:
                    logger.info("archive_skipped", extra={"ref": ref, "reason": "already_archived"})
                    skipped_ids.append(ref)
                    continue
                now = datetime.utcnow()
                outcome = archiver(db, record, reason_text, actor_name, now, cascade)
                _log_audit_event(
                    db,
                    event_type=EVENT_ENTITY_ARCHIVED,
                    target_type=entity_type,
                    target_ids=[ref],
                    count_affected=1 + outcome["applications"] + outcome["facilities"],
                    reason=reason_text,
                    actor_label=actor_name,
                    context=context,
                    metadata={
                        "cascade": cascade,
                        "applications": outcome["applications"],
                        "facilities": outcome["facilities"],
                        "ghost_ids_written": len(outcome["ghost_ids"]),
                    },
                )
                db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("archive_failed", extra={"ref": ref, "detail": str(exc)})
            errors.append(_per_id_error(ref, exc))
            continue
        finally:
            db.close()

        archived_ids.append(ref)
        ghost_ids.extend(outcome["ghost_ids"])
        cascaded["applications"] += outcome["applications"]
        cascaded["facilities"] += outcome["facilities"]
        users_detached += outcome["users_detached"]
        logger.info(
            "entity_archived",
            extra={"ref": ref, "cascade": cascade, "ghost_ids_written": len(outcome["ghost_ids"])},
        )

    return {
        "status": _bulk_status("archived", len(archived_ids), errors),
        "archived_count": len(archived_ids),
        "archived_ids": archived_ids,
        "cascaded": cascaded,
        "ghost_ids_written": len(ghost_ids),
        "ghost_ids": ghost_ids,
        "users_detached": users_detached,
        "skipped_count": len(skipped_ids),
        "skipped_ids": skipped_ids,
        "error_count": len(errors),
        "errors": errors,
    }


# =============================================================================
# Permanent delete
# =============================================================================

def _delete_closure(db, entity_type: str, record) -> tuple[list, list, list]:
    """Return (companies, facilities, applications) removed with this entity."""
    if entity_type == "application":
        return [], [], [record]
    if entity_type == "facility":
        applications = db.query(Application).filter(Application.facility_id == record.id).all()
        return [], [record], applications
    facilities = db.query(Facility).filter(Facility.company_id == record.id).all()
    applications = db.query(Application).filter(Application.company_id == record.id).all()
    return [record], facilities, applications


def _purge_closure(db, companies: list, facilities: list, applications: list) -> dict:
    application_pks = [application.id for application in applications]
    facility_pks = [facility.id for facility in facilities]
    company_pks = [company.id for company in companies]

    dependents = 0
    if application_pks:
        for model in APPLICATION_DEPENDENT_MODELS:
            dependents += (
                db.query(model)
                .filter(model.application_id.in_(application_pks))
                .delete(synchronize_session=False)
            )
        db.query(Application).filter(Application.id.in_(application_pks)).delete(synchronize_session=False)
    if facility_pks:
        db.query(Facility).filter(Facility.id.in_(facility_pks)).delete(synchronize_session=False)
    if company_pks:
        db.query(User).filter(User.company_id.in_(company_pks)).update(
            {User.company_id: None},
            synchronize_session=False,
        )
        db.query(Company).filter(Company.id.in_(company_pks)).delete(synchronize_session=False)
    return {
        "dependents": dependents,
        "applications": len(application_pks),
        "facilities": len(facility_pks),
        "companies": len(company_pks),
    }


@service_tool
def permanently_delete_entities(
    entity_refs: List[str],
    actor: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Hard delete archived entities, children before parents.

    Refs are typed (``"company:12"``). A ref is rejected unless it and its
    whole subtree are archived. Ghost entries are left in place.
    """
    refs = _parse_entity_refs(entity_refs)
    _validate_optional_text(actor, "actor", MAX_ACTOR_LENGTH)
    actor_name = actor or resolve_actor(context, DEFAULT_ARCHIVE_ACTOR)

    deleted_ids: list[str] = []
    errors: list[dict] = []
    totals = {"dependents": 0, "applications": 0, "facilities": 0, "companies": 0}

    for entity_type, entity_id in refs:
        ref = _serialize_entity_ref(entity_type, entity_id)
        model = ENTITY_MODELS[entity_type]
        db = DB.SessionLocal()
        try:
            record = db.get(model, entity_id)
            if record is None:
                raise ConstraintViolation(f"{ref} does not exist", ref=ref, reason="not_found")
            with company_lock(_owning_company_id(entity_type, record)):
                db.refresh(record)
                if not record.is_archived:
                    raise ConstraintViolation(f"{ref} is not archived", ref=ref, reason="not_archived")
                companies, facilities, applications = _delete_closure(db, entity_type, record)
                live = [
                    _serialize_entity_ref(kind, row.id)
                    for kind, rows in (("facility", facilities), ("application", applications))
                    for row in rows
                    if not row.is_archived
                ]
                if live:
                    raise ConstraintViolation(
                        f"{ref} has live descendants: {', '.join(live)}",
                        ref=ref,
                        reason="live_descendants",
                    )
                identifiers = [application.application_id for application in applications]
                counts = _purge_closure(db, companies, facilities, applications)
                _log_audit_event(
                    db,
                    event_type=EVENT_ENTITY_PURGED,
                    target_type=entity_type,
                    target_ids=[ref],
                    count_affected=counts["applications"] + counts["facilities"] + counts["companies"],
                    reason=None,
                    actor_label=actor_name,
                    context=context,
                    metadata={**counts, "application_ids": identifiers},
                )
                db.commit()
        except ConstraintViolation as exc:
            db.rollback()
            logger.info("permanent_delete_rejected", extra={"ref": ref, "reason": exc.reason})
            errors.append(_per_id_error(ref, exc))
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("permanent_delete_failed", extra={"ref": ref, "detail": str(exc)})
            errors.append(_per_id_error(ref, exc))
            continue
        finally:
            db.close()

        deleted_ids.append(ref)
        for key, value in counts.items():
            totals[key] += value
        logger.info("entity_purged", extra={"ref": ref, **counts})

    return {
        "status": _bulk_status("deleted", len(deleted_ids), errors),
        "deleted_count": len(deleted_ids),
        "deleted_ids": deleted_ids,
        "rows_deleted": totals,
        "error_count": len(errors),
        "errors": errors,
    }


# =============================================================================
# Listings
# =============================================================================

def _archive_fields(record) -> dict:
    return {
        "archived_at": _serialize_datetime(record.archived_at),
        "archived_by": record.archived_by,
        "archive_reason": record.archive_reason,
    }


def _serialize_archived_company(company: Company) -> dict:
    return {
        "ref": _serialize_entity_ref("company", company.id),
        "id": company.id,
        "name": company.name,
        "short_name": company.short_name,
        **_archive_fields(company),
    }


def _serialize_archived_facility(facility: Facility) -> dict:
    return {
        "ref": _serialize_entity_ref("facility", facility.id),
        "id": facility.id,
        "company_id": facility.company_id,
        "name": facility.name,
        "code": facility.code,
        **_archive_fields(facility),
    }


def _serialize_archived_application(application: Application) -> dict:
    return {
        "ref": _serialize_entity_ref("application", application.id),
        "id": application.id,
        "application_id": application.application_id,
        "company_id": application.company_id,
        "facility_id": application.facility_id,
        "activity_type": _enum_value(application.activity_type),
        "title": application.title,
        "status": _enum_value(application.status),
        **_archive_fields(application),
    }


@service_tool
def list_archived_entities() -> dict:
    """
    Archived entities grouped for display.

    Archived companies carry their archived facilities (each with its archived
    applications). Archived rows whose parent is still live are listed at the
    top level as orphans.
    """
    db = DB.SessionLocal()
    try:
        companies = (
            db.query(Company)
            .filter(Company.is_archived.is_(True))
            .order_by(Company.archived_at.desc(), Company.id.desc())
            .all()
        )
        facilities = (
            db.query(Facility)
            .filter(Facility.is_archived.is_(True))
            .order_by(Facility.archived_at.desc(), Facility.id.desc())
            .all()
        )
        applications = (
            db.query(Application)
            .filter(Application.is_archived.is_(True))
            .order_by(Application.archived_at.desc(), Application.id.desc())
            .all()
        )

        archived_company_ids = {company.id for company in companies}
        archived_facility_ids = {facility.id for facility in facilities}

        apps_by_facility: dict[int, list[dict]] = defaultdict(list)
        loose_apps_by_company: dict[int, list[dict]] = defaultdict(list)
        orphan_applications = []
        for application in applications:
            payload = _serialize_archived_application(application)
            if application.facility_id in archived_facility_ids:
                apps_by_facility[application.facility_id].append(payload)
            elif application.company_id in archived_company_ids:
                loose_apps_by_company[application.company_id].append(payload)
            else:
                orphan_applications.append(payload)

        facilities_by_company: dict[int, list[dict]] = defaultdict(list)
        orphan_facilities = []
        for facility in facilities:
            payload = _serialize_archived_facility(facility)
            payload["applications"] = apps_by_facility.get(facility.id, [])
            if facility.company_id in archived_company_ids:
                facilities_by_company[facility.company_id].append(payload)
            else:
                orphan_facilities.append(payload)

        company_payloads = []
        for company in companies:
            payload = _serialize_archived_company(company)
            payload["facilities"] = facilities_by_company.get(company.id, [])
            payload["applications"] = loose_apps_by_company.get(company.id, [])
            company_payloads.append(payload)

        return {
            "status": "ok",
            "companies": company_payloads,
            "facilities": orphan_facilities,
            "applications": orphan_applications,
            "counts": {
                "companies": len(companies),
                "facilities": len(facilities),
                "applications": len(applications),
            },
        }
    finally:
        db.close()


@service_tool
def get_archived_entity_details(entity_ref: str) -> dict:
    entity_type, entity_id = _parse_entity_ref(entity_ref, field="entity_ref")
    ref = _serialize_entity_ref(entity_type, entity_id)
    model = ENTITY_MODELS[entity_type]

    db = DB.SessionLocal()
    try:
        record = db.get(model, entity_id)
        if record is None or not record.is_archived:
            raise EntityNotFound(entity_type, entity_id, f"archived {ref} not found")

        if entity_type == "application":
            payload = _serialize_archived_application(record)
            ghost = (
                db.query(GhostApplicationId.id)
                .filter(GhostApplicationId.application_id == record.application_id)
                .first()
            )
            payload["ghost_id_present"] = ghost is not None
            return {"status": "ok", "entity_type": entity_type, "entity": payload}

        query = db.query(Application).filter(Application.is_archived.is_(True))
        if entity_type == "facility":
            payload = _serialize_archived_facility(record)
            query = query.filter(Application.facility_id == record.id)
        else:
            payload = _serialize_archived_company(record)
            payload["facilities"] = [
                _serialize_archived_facility(facility)
                for facility in db.query(Facility)
                .filter(Facility.company_id == record.id, Facility.is_archived.is_(True))
                .order_by(Facility.id.asc())
                .all()
            ]
            query = query.filter(Application.company_id == record.id)
        payload["applications"] = [
            _serialize_archived_application(application)
            for application in query.order_by(Application.id.asc()).all()
        ]
        return {"status": "ok", "entity_type": entity_type, "entity": payload}
    finally:
        db.close()


@service_tool
def get_archive_statistics() -> dict:
    db = DB.SessionLocal()
    try:
        companies = db.query(Company).filter(Company.is_archived.is_(True)).count()
        facilities = db.query(Facility).filter(Facility.is_archived.is_(True)).count()
        applications = db.query(Application).filter(Application.is_archived.is_(True)).count()
        ghost_ids = db.query(GhostApplicationId).count()
        return {
            "status": "ok",
            "archived_companies": companies,
            "archived_facilities": facilities,
            "archived_applications": applications,
            "total_archived": companies + facilities + applications,
            "ghost_ids": ghost_ids,
        }
    finally:
        db.close()
