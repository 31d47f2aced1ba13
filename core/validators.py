"""
Shared validation helpers for GrantGate services.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence

from core.config import SHORT_NAME_MAX_LENGTH
from core.errors import ValidationIssue
from core.models import ActivityType, EntityType

SHORT_NAME_PATTERN = re.compile(r"^[A-Z0-9]{1,%d}$" % SHORT_NAME_MAX_LENGTH)


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_limit(value: int, field: str, max_value: int) -> None:
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_positive_id(value, field: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationIssue(f"{field} must be a positive integer", field=field, error_type="invalid_id")


def validate_id_list(values: Optional[Sequence[int]], field: str, max_items: int) -> None:
    if values is None or not isinstance(values, (list, tuple)):
        raise ValidationIssue(f"{field} must be a list of IDs", field=field, error_type="invalid_type")
    if len(values) > max_items:
        raise ValidationIssue(f"{field} exceeds max items {max_items}", field=field, error_type="max_items")
    invalid = [value for value in values if isinstance(value, bool) or not isinstance(value, int) or value <= 0]
    if invalid:
        raise ValidationIssue(
            f"{field} must contain positive integer IDs: {invalid}",
            field=field,
            error_type="invalid_id",
        )


def validate_string_list(
    values: Optional[Sequence[str]],
    field: str,
    max_items: int,
    max_item_length: int,
) -> None:
    if values is None or not isinstance(values, (list, tuple)):
        raise ValidationIssue(f"{field} must be a list", field=field, error_type="invalid_type")
    if len(values) > max_items:
        raise ValidationIssue(f"{field} exceeds max items {max_items}", field=field, error_type="max_items")
    for item in values:
        if not isinstance(item, str):
            raise ValidationIssue(f"{field} must contain only strings", field=field, error_type="invalid_type")
        if len(item) > max_item_length:
            raise ValidationIssue(
                f"{field} item exceeds max length {max_item_length}",
                field=field,
                error_type="max_length",
            )


def validate_short_name(value: str, field: str = "short_name") -> str:
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if not SHORT_NAME_PATTERN.match(value):
        raise ValidationIssue(
            f"{field} must be 1-{SHORT_NAME_MAX_LENGTH} uppercase letters or digits",
            field=field,
            error_type="invalid_format",
        )
    return value


def validate_activity_type(value, field: str = "activity_type") -> ActivityType:
    if isinstance(value, ActivityType):
        return value
    try:
        return ActivityType(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in ActivityType)
        raise ValidationIssue(
            f"{field} must be one of: {allowed}",
            field=field,
            error_type="invalid_choice",
        ) from exc


def validate_entity_type(value, field: str = "entity_type") -> EntityType:
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(value)
    except ValueError as exc:
        raise ValidationIssue(
            f"{field} must be one of: company, facility, application",
            field=field,
            error_type="invalid_choice",
        ) from exc
