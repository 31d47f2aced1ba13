import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.audit import list_audit_events, log_event
from core.audit_constants import EVENT_ENTITY_ARCHIVED
from core.models import AuditEvent
from core.services import audit_service


def test_audit_rejects_content_metadata(db_session):
    before = db_session.query(AuditEvent).count()
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_ENTITY_ARCHIVED,
            actor_type="system",
            target_type="application",
            target_ids=["application:1"],
            metadata={"description": "should_not_log"},
        )
    db_session.rollback()
    after = db_session.query(AuditEvent).count()
    assert after == before


def test_audit_rejects_long_strings(db_session):
    before = db_session.query(AuditEvent).count()
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_ENTITY_ARCHIVED,
            actor_type="system",
            target_type="application",
            target_ids=["application:1"],
            metadata={"note": "x" * 600},
        )
    db_session.rollback()
    after = db_session.query(AuditEvent).count()
    assert after == before


def test_audit_rejects_unknown_target_type_and_bare_ids(db_session):
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_ENTITY_ARCHIVED,
            actor_type="system",
            target_type="invoice",
            target_ids=["invoice:1"],
        )
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_ENTITY_ARCHIVED,
            actor_type="system",
            target_type="application",
            target_ids=[1],
        )


def test_audit_events_are_listed_newest_first(db_session):
    for index in range(3):
        log_event(
            db_session,
            event_type=EVENT_ENTITY_ARCHIVED,
            actor_type="user",
            actor_id="admin@portal",
            target_type="company",
            target_ids=[f"company:{index + 1}"],
            count_affected=1,
            metadata={"cascade": True},
        )
    db_session.commit()

    page = list_audit_events(db_session, target_type="company", limit=2)
    assert page["count"] == 2
    assert page["events"][0]["actor_id"] == "admin@portal"

    rest = list_audit_events(db_session, target_type="company", limit=2, cursor=page["next_cursor"])
    assert rest["count"] == 1
    assert rest["next_cursor"] is None


def test_trail_filters_by_exact_entity_ref(db_session):
    for ref in ("company:1", "company:12", "company:1"):
        log_event(
            db_session,
            event_type=EVENT_ENTITY_ARCHIVED,
            actor_type="system",
            target_type="company",
            target_ids=[ref],
            count_affected=1,
        )
    db_session.commit()

    trail = audit_service.list_audit_trail(entity_ref="company:1")
    assert trail["count"] == 2
    assert all(event["target_ids"] == ["company:1"] for event in trail["events"])
    assert audit_service.list_audit_trail(entity_ref="company:12")["count"] == 1


def test_trail_rejects_bad_filters(server_db):
    assert audit_service.list_audit_trail(event_type="invoice.paid")["error_type"] == "validation_error"
    assert audit_service.list_audit_trail(entity_ref="12")["error_type"] == "validation_error"

    result = audit_service.list_audit_trail(cursor="not-an-event")
    assert result["error_type"] == "validation_error"
    assert result["field"] == "cursor"
