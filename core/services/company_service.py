"""
Company and facility lifecycle: short names, facility codes, short-name renames.
"""

from __future__ import annotations

import re
import time
from collections import defaultdict
from typing import Optional

from sqlalchemy.exc import IntegrityError

import core.config as config
from core.audit_constants import (
    EVENT_APPLICATION_IDS_REWRITTEN,
    EVENT_FACILITY_CODES_BACKFILLED,
)
from core.context import RequestContext
from core.db import DB
from core.errors import ConstraintViolation, EntityNotFound, PersistenceFailure, ValidationIssue
from core.models import Application, Company, Facility, GhostApplicationId
from core.services.application_ids import (
    assign_missing_facility_code,
    format_facility_code,
    rewrite_prefix,
)
from core.services.ghost_ids import upsert_ghost_id
from core.services.portal_shared import (
    MAX_NAME_LENGTH,
    _log_audit_event,
    _serialize_datetime,
    _serialize_entity_ref,
    company_lock,
    logger,
    service_tool,
)
from core.validators import (
    validate_positive_id as _validate_positive_id,
    validate_required_text as _validate_required_text,
    validate_short_name as _validate_short_name,
)

FACILITY_CODE_MAX = config.FACILITY_CODE_MAX
SHORT_NAME_COUNTER_MAX = config.SHORT_NAME_COUNTER_MAX


def _serialize_company(company: Company) -> dict:
    return {
        "id": company.id,
        "name": company.name,
        "short_name": company.short_name,
        "facility_code_counter": company.facility_code_counter,
        "is_archived": company.is_archived,
        "created_at": _serialize_datetime(company.created_at),
    }


def _serialize_facility(facility: Facility) -> dict:
    return {
        "id": facility.id,
        "company_id": facility.company_id,
        "name": facility.name,
        "code": facility.code,
        "is_archived": facility.is_archived,
        "created_at": _serialize_datetime(facility.created_at),
    }


# =============================================================================
# Short names
# =============================================================================

def base_short_name(company_name: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9\s]", "", company_name or "").strip().upper()
    words = cleaned.split()
    if not words:
        return ""
    if len(words) == 1:
        return words[0][:6]
    if len(words) == 2:
        return words[0][:3] + words[1][:3]
    return "".join(word[:2] for word in words[:3])


def _short_name_taken(db, short_name: str, exclude_company_id: Optional[int] = None) -> bool:
    # Archived companies keep their short name reserved.
    query = db.query(Company.id).filter(Company.short_name == short_name)
    if exclude_company_id is not None:
        query = query.filter(Company.id != exclude_company_id)
    return query.first() is not None


def generate_short_name(db, company_name: str) -> str:
    base = base_short_name(company_name)
    if not base:
        raise ValidationIssue(
            "name must contain at least one letter or digit",
            field="name",
            error_type="invalid_format",
        )
    if not _short_name_taken(db, base):
        return base

    for counter in range(2, SHORT_NAME_COUNTER_MAX + 1):
        if counter <= 9:
            candidate = f"{base[:5]}{counter}"
        else:
            candidate = f"{base[:4]}{counter}"
        if not _short_name_taken(db, candidate):
            return candidate

    fallback = f"{base[:4]}{str(int(time.time() * 1000))[-2:]}"
    logger.warning("short_name_timestamp_fallback", extra={"base": base, "short_name": fallback})
    return fallback


@service_tool
def create_company(
    name: str,
    short_name: Optional[str] = None,
    actor: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Create a company, generating its short name when none is given.
    """
    _validate_required_text(name, "name", MAX_NAME_LENGTH)
    if short_name is not None:
        _validate_short_name(short_name)

    db = DB.SessionLocal()
    try:
        if short_name is not None:
            if _short_name_taken(db, short_name):
                raise ConstraintViolation(
                    f"short name {short_name} is already in use",
                    reason="short_name_taken",
                )
            final_short_name = short_name
        else:
            final_short_name = generate_short_name(db, name)

        company = Company(name=name.strip(), short_name=final_short_name, facility_code_counter=0)
        db.add(company)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConstraintViolation(
                f"short name {final_short_name} is already in use",
                reason="short_name_taken",
            ) from exc
        logger.info("company_created", extra={"company_id": company.id, "short_name": final_short_name})
        return {"status": "created", "company": _serialize_company(company)}
    finally:
        db.close()


# =============================================================================
# Facilities
# =============================================================================

@service_tool
def create_facility(
    company_id: int,
    name: str,
    actor: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Create a facility and give it the company's next facility code.

    Codes come from the company counter and are never reused or recomputed.
    """
    _validate_positive_id(company_id, "company_id")
    _validate_required_text(name, "name", MAX_NAME_LENGTH)

    with company_lock(company_id):
        db = DB.SessionLocal()
        try:
            company = db.get(Company, company_id)
            if company is None:
                raise EntityNotFound("company", company_id)
            if company.is_archived:
                raise ConstraintViolation(
                    f"company {company_id} is archived",
                    ref=_serialize_entity_ref("company", company_id),
                    reason="company_archived",
                )

            taken = {
                row[0]
                for row in db.query(Facility.code)
                .filter(Facility.company_id == company_id, Facility.code.isnot(None))
                .all()
            }
            number = (company.facility_code_counter or 0) + 1
            while number <= FACILITY_CODE_MAX and f"{number:03d}" in taken:
                number += 1
            if number > FACILITY_CODE_MAX:
                raise ConstraintViolation(
                    f"company {company_id} has no facility codes left",
                    ref=_serialize_entity_ref("company", company_id),
                    reason="facility_code_limit",
                )

            facility = Facility(company_id=company_id, name=name.strip(), code=format_facility_code(number))
            company.facility_code_counter = number
            db.add(facility)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise PersistenceFailure(f"could not store facility code for company {company_id}") from exc
            logger.info(
                "facility_created",
                extra={"facility_id": facility.id, "company_id": company_id, "code": facility.code},
            )
            return {"status": "created", "facility": _serialize_facility(facility)}
        finally:
            db.close()


@service_tool
def backfill_facility_codes(
    company_id: Optional[int] = None,
    actor: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Store codes on facilities created before codes were persisted."""
    if company_id is not None:
        _validate_positive_id(company_id, "company_id")

    db = DB.SessionLocal()
    try:
        query = db.query(Facility.company_id, Facility.id).filter(Facility.code.is_(None))
        if company_id is not None:
            query = query.filter(Facility.company_id == company_id)
        pending: dict[int, list[int]] = defaultdict(list)
        for owner_id, facility_id in query.order_by(Facility.company_id, Facility.id).all():
            pending[owner_id].append(facility_id)
    finally:
        db.close()

    assigned = []
    for owner_id, facility_ids in pending.items():
        with company_lock(owner_id):
            db = DB.SessionLocal()
            try:
                company = db.get(Company, owner_id)
                facilities = (
                    db.query(Facility)
                    .filter(Facility.id.in_(facility_ids))
                    .order_by(Facility.name.asc(), Facility.id.asc())
                    .all()
                )
                company_assigned = []
                for facility in facilities:
                    if facility.code:
                        continue
                    code = assign_missing_facility_code(db, facility, company)
                    db.flush()
                    company_assigned.append({"facility_id": facility.id, "company_id": owner_id, "code": code})
                _log_audit_event(
                    db,
                    event_type=EVENT_FACILITY_CODES_BACKFILLED,
                    target_type="facility",
                    target_ids=[
                        _serialize_entity_ref("facility", item["facility_id"]) for item in company_assigned
                    ],
                    count_affected=len(company_assigned),
                    reason=None,
                    actor_label=actor,
                    context=context,
                )
                db.commit()
                assigned.extend(company_assigned)
            finally:
                db.close()

    return {"status": "backfilled", "backfilled_count": len(assigned), "facilities": assigned}


# =============================================================================
# Short-name rename
# =============================================================================

@service_tool
def update_company_short_name(
    company_id: int,
    new_short_name: str,
    actor: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Rename a company's short name and rewrite the prefix of every one of its
    application identifiers.

    Rejected for an archived company, and when a rewritten identifier is
    already held by a live application of another company or by the ghost
    registry. Existing ghost entries keep their old identifiers; archived
    applications get a second entry under their rewritten identifier.
    """
    _validate_positive_id(company_id, "company_id")
    _validate_short_name(new_short_name)

    with company_lock(company_id):
        db = DB.SessionLocal()
        try:
            company = db.get(Company, company_id)
            if company is None:
                raise EntityNotFound("company", company_id)
            ref = _serialize_entity_ref("company", company_id)
            if company.is_archived:
                raise ConstraintViolation(f"company {company_id} is archived", ref=ref, reason="company_archived")
            old_short_name = company.short_name
            if new_short_name == old_short_name:
                return {
                    "status": "unchanged",
                    "short_name": old_short_name,
                    "rewritten_count": 0,
                    "rewritten": [],
                }
            if _short_name_taken(db, new_short_name, exclude_company_id=company_id):
                raise ConstraintViolation(
                    f"short name {new_short_name} is already in use",
                    ref=ref,
                    reason="short_name_taken",
                )

            applications = (
                db.query(Application)
                .filter(Application.company_id == company_id)
                .order_by(Application.id.asc())
                .all()
            )
            rewrites = [
                (application, rewrite_prefix(application.application_id, new_short_name))
                for application in applications
            ]
            new_ids = sorted({new_id for _, new_id in rewrites})

            collisions: set[str] = set()
            if new_ids:
                live = (
                    db.query(Application.application_id)
                    .filter(
                        Application.application_id.in_(new_ids),
                        Application.is_archived.is_(False),
                        Application.company_id != company_id,
                    )
                    .all()
                )
                ghosts = (
                    db.query(GhostApplicationId.application_id)
                    .filter(GhostApplicationId.application_id.in_(new_ids))
                    .all()
                )
                collisions = {row[0] for row in live} | {row[0] for row in ghosts}
            if collisions:
                raise ConstraintViolation(
                    f"rewritten identifiers already in use: {', '.join(sorted(collisions))}",
                    ref=ref,
                    reason="identifier_collision",
                )

            rewritten = []
            ghosted = 0
            for application, new_id in rewrites:
                rewritten.append({"from": application.application_id, "to": new_id})
                application.application_id = new_id
                if application.is_archived:
                    # Both the issued and the rewritten identifier stay reserved.
                    upsert_ghost_id(db, application, deleted_at=application.archived_at)
                    ghosted += 1
            company.short_name = new_short_name

            _log_audit_event(
                db,
                event_type=EVENT_APPLICATION_IDS_REWRITTEN,
                target_type="company",
                target_ids=[ref],
                count_affected=len(rewritten),
                reason=None,
                actor_label=actor,
                context=context,
                metadata={
                    "old_short_name": old_short_name,
                    "new_short_name": new_short_name,
                    "ghost_ids_written": ghosted,
                },
            )
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise ConstraintViolation(
                    f"short name {new_short_name} conflicts with existing identifiers",
                    ref=ref,
                    reason="identifier_collision",
                ) from exc
            logger.info(
                "company_short_name_changed",
                extra={
                    "company_id": company_id,
                    "old_short_name": old_short_name,
                    "new_short_name": new_short_name,
                    "rewritten_count": len(rewritten),
                },
            )
            return {
                "status": "updated",
                "old_short_name": old_short_name,
                "short_name": new_short_name,
                "rewritten_count": len(rewritten),
                "rewritten": rewritten,
                "ghost_ids_written": ghosted,
            }
        finally:
            db.close()
