"""
Application identifier allocation.

Identifiers look like ``ACME-001-102``: the company short name, the facility's
3-digit code, the activity digit and a 2-digit sequence number. The allocator
picks the lowest sequence in the (facility, activity) bucket that is neither
held by a live application nor recorded in the ghost registry.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from sqlalchemy import or_

import core.config as config
from core.errors import AllocatorExhausted, ConstraintViolation, EntityNotFound, ValidationIssue
from core.models import (
    ACTIVITY_DIGITS,
    ActivityType,
    Application,
    Company,
    Facility,
    GhostApplicationId,
)
from core.validators import validate_activity_type

logger = config.logger

APPLICATION_SEQUENCE_MAX = config.APPLICATION_SEQUENCE_MAX
FACILITY_CODE_MAX = config.FACILITY_CODE_MAX

IDENTIFIER_PATTERN = re.compile(r"^([A-Z0-9]{1,6})-(\d{3})-(\d)(\d{2})$")
DIGIT_ACTIVITIES = {digit: activity for activity, digit in ACTIVITY_DIGITS.items()}


def activity_digit(activity_type) -> str:
    activity = validate_activity_type(activity_type)
    return ACTIVITY_DIGITS[activity]


def format_facility_code(number: int) -> str:
    if number < 1 or number > FACILITY_CODE_MAX:
        raise ValidationIssue(
            f"facility code must be between 1 and {FACILITY_CODE_MAX}",
            field="facility_code",
            error_type="out_of_range",
        )
    return f"{number:03d}"


def format_application_id(short_name: str, facility_code: str, activity_type, sequence: int) -> str:
    if sequence < 1 or sequence > APPLICATION_SEQUENCE_MAX:
        raise ValidationIssue(
            f"sequence must be between 1 and {APPLICATION_SEQUENCE_MAX}",
            field="sequence",
            error_type="out_of_range",
        )
    return f"{short_name}-{facility_code}-{activity_digit(activity_type)}{sequence:02d}"


def parse_application_id(identifier: str) -> dict:
    """Split an identifier into its parts; raises ValidationIssue when malformed."""
    if not isinstance(identifier, str):
        raise ValidationIssue("application_id must be a string", field="application_id", error_type="invalid_type")
    match = IDENTIFIER_PATTERN.match(identifier)
    if not match:
        raise ValidationIssue(
            f"malformed application identifier: {identifier}",
            field="application_id",
            error_type="invalid_format",
        )
    short_name, facility_code, digit, sequence = match.groups()
    activity = DIGIT_ACTIVITIES.get(digit)
    if activity is None:
        raise ValidationIssue(
            f"unknown activity digit {digit} in {identifier}",
            field="application_id",
            error_type="invalid_format",
        )
    return {
        "short_name": short_name,
        "facility_code": facility_code,
        "activity_digit": digit,
        "activity_type": activity,
        "sequence": int(sequence),
    }


def rewrite_prefix(identifier: str, new_short_name: str) -> str:
    _, sep, rest = identifier.partition("-")
    if not sep:
        raise ValidationIssue(
            f"malformed application identifier: {identifier}",
            field="application_id",
            error_type="invalid_format",
        )
    return f"{new_short_name}-{rest}"


def bucket_candidates(short_name: str, facility_code: str, activity_type: ActivityType) -> list[str]:
    digit = ACTIVITY_DIGITS[activity_type]
    prefix = f"{short_name}-{facility_code}-{digit}"
    return [f"{prefix}{seq:02d}" for seq in range(1, APPLICATION_SEQUENCE_MAX + 1)]


def forbidden_identifiers(db, candidates: Iterable[str]) -> set[str]:
    """Return the candidates held by a live application or by the ghost registry."""
    values = list(candidates)
    if not values:
        return set()
    live = (
        db.query(Application.application_id)
        .filter(
            Application.application_id.in_(values),
            Application.is_archived.is_(False),
        )
        .all()
    )
    ghosts = (
        db.query(GhostApplicationId.application_id)
        .filter(GhostApplicationId.application_id.in_(values))
        .all()
    )
    return {row[0] for row in live} | {row[0] for row in ghosts}


def is_identifier_available(db, identifier: str) -> bool:
    return not forbidden_identifiers(db, [identifier])


# =============================================================================
# Facility codes
# =============================================================================

def ordinal_facility_code(db, facility: Facility) -> str:
    """
    Legacy facility code: 1-based position among the company's non-archived
    facilities ordered by name. Only used to backfill rows without a stored code.
    """
    rows = (
        db.query(Facility.id)
        .filter(
            Facility.company_id == facility.company_id,
            or_(Facility.is_archived.is_(False), Facility.id == facility.id),
        )
        .order_by(Facility.name.asc(), Facility.id.asc())
        .all()
    )
    ordered_ids = [row[0] for row in rows]
    return format_facility_code(ordered_ids.index(facility.id) + 1)


def assign_missing_facility_code(db, facility: Facility, company: Optional[Company] = None) -> str:
    """Store a code on a legacy facility and keep the company counter ahead of it."""
    if facility.code:
        return facility.code
    if company is None:
        company = db.get(Company, facility.company_id)
    taken = {
        row[0]
        for row in db.query(Facility.code)
        .filter(Facility.company_id == facility.company_id, Facility.code.isnot(None))
        .all()
    }
    code = ordinal_facility_code(db, facility)
    if code in taken:
        number = max([company.facility_code_counter or 0] + [int(value) for value in taken]) + 1
        if number > FACILITY_CODE_MAX:
            raise ConstraintViolation(
                f"company {company.id} has no facility codes left",
                ref=f"company:{company.id}",
                reason="facility_code_limit",
            )
        code = format_facility_code(number)
    facility.code = code
    company.facility_code_counter = max(company.facility_code_counter or 0, int(code))
    logger.info(
        "facility_code_backfilled",
        extra={"facility_id": facility.id, "company_id": company.id, "code": code},
    )
    return code


# =============================================================================
# Allocation
# =============================================================================

def allocate_application_id(db, company_id: int, facility_id: int, activity_type) -> str:
    """
    Compute the next free identifier for (company, facility, activity type).

    Reads only, apart from storing a code on a legacy facility that has none.
    The caller persists the application in the same session.
    """
    activity = validate_activity_type(activity_type)

    company = db.get(Company, company_id)
    if company is None:
        raise EntityNotFound("company", company_id)
    if company.is_archived:
        raise EntityNotFound("company", company_id, f"company {company_id} is archived")
    facility = db.get(Facility, facility_id)
    if facility is None or facility.company_id != company.id:
        raise EntityNotFound("facility", facility_id)
    if facility.is_archived:
        raise EntityNotFound("facility", facility_id, f"facility {facility_id} is archived")

    facility_code = facility.code or assign_missing_facility_code(db, facility, company)
    candidates = bucket_candidates(company.short_name, facility_code, activity)
    forbidden = forbidden_identifiers(db, candidates)
    for candidate in candidates:
        if candidate not in forbidden:
            logger.debug(
                "application_id_allocated",
                extra={"application_id": candidate, "forbidden_in_bucket": len(forbidden)},
            )
            return candidate

    prefix = f"{company.short_name}-{facility_code}-{ACTIVITY_DIGITS[activity]}"
    raise AllocatorExhausted(prefix, APPLICATION_SEQUENCE_MAX)
