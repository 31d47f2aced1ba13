import os

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.audit_constants import EVENT_ENTITY_PURGED
from core.models import (
    Application,
    ApplicationAssignment,
    ApplicationDocument,
    ApplicationSubmission,
    AuditEvent,
    Company,
    Facility,
    GhostApplicationId,
    Message,
    Notification,
    User,
)
from core.services import application_service, archive_service, company_service, restore_service


def _create(company_id, facility_id, activity_type="FRA"):
    result = application_service.create_application(company_id, facility_id, activity_type, title="Audit")
    assert result["status"] == "created", result
    return result["application"]


def test_live_entity_is_rejected_and_untouched(acme, db_session):
    app = _create(acme["company_id"], acme["facility_id"])

    result = archive_service.permanently_delete_entities([f"application:{app['id']}"])
    assert result["status"] == "failed"
    assert result["deleted_count"] == 0
    assert result["errors"][0]["reason"] == "not_archived"
    assert result["errors"][0]["error_type"] == "constraint_violation"

    db_session.expire_all()
    assert db_session.get(Application, app["id"]) is not None


def test_missing_ref_is_reported(server_db):
    result = archive_service.permanently_delete_entities(["company:77"])
    assert result["errors"][0]["reason"] == "not_found"


def test_refs_must_be_typed(server_db):
    result = archive_service.permanently_delete_entities(["12"])
    assert result["status"] == "error"
    assert result["error_type"] == "validation_error"


def test_company_purge_removes_dependents_and_keeps_ghosts(acme, db_session):
    app = _create(acme["company_id"], acme["facility_id"])
    user = User(email="consultant@acme.test", company_id=acme["company_id"])
    db_session.add(user)
    db_session.flush()
    db_session.add_all([
        ApplicationDocument(application_id=app["id"], filename="plan.pdf"),
        ApplicationSubmission(application_id=app["id"], phase="pre", data={"answers": 3}),
        ApplicationAssignment(application_id=app["id"], user_id=user.id),
        Message(application_id=app["id"], subject="Question"),
        Notification(application_id=app["id"], kind="status"),
    ])
    db_session.commit()

    archive_service.archive_entities("company", [acme["company_id"]])
    result = archive_service.permanently_delete_entities([f"company:{acme['company_id']}"])
    assert result["status"] == "deleted"
    assert result["deleted_ids"] == [f"company:{acme['company_id']}"]
    assert result["rows_deleted"] == {"dependents": 5, "applications": 1, "facilities": 1, "companies": 1}

    db_session.expire_all()
    assert db_session.get(Company, acme["company_id"]) is None
    assert db_session.get(Facility, acme["facility_id"]) is None
    assert db_session.get(Application, app["id"]) is None
    for model in (ApplicationDocument, ApplicationSubmission, ApplicationAssignment, Message, Notification):
        assert db_session.query(model).count() == 0
    assert db_session.query(User).count() == 1

    ghost = db_session.query(GhostApplicationId).one()
    assert ghost.application_id == "ACME-001-101"
    assert ghost.company_id == acme["company_id"]

    event = db_session.query(AuditEvent).filter(AuditEvent.event_type == EVENT_ENTITY_PURGED).one()
    assert event.metadata_["application_ids"] == ["ACME-001-101"]


def test_live_descendant_blocks_parent_purge(acme, db_session):
    _create(acme["company_id"], acme["facility_id"])
    archive_service.archive_entities("company", [acme["company_id"]])
    restore_service.restore_entities([f"facility:{acme['facility_id']}"])

    result = archive_service.permanently_delete_entities([f"company:{acme['company_id']}"])
    assert result["deleted_count"] == 0
    assert result["errors"][0]["reason"] == "live_descendants"

    db_session.expire_all()
    assert db_session.get(Company, acme["company_id"]) is not None


def test_bulk_delete_is_best_effort_per_ref(acme):
    archived = _create(acme["company_id"], acme["facility_id"])
    live = _create(acme["company_id"], acme["facility_id"])
    archive_service.archive_entities("application", [archived["id"]])

    result = archive_service.permanently_delete_entities([
        f"application:{live['id']}",
        f"application:{archived['id']}",
    ])
    assert result["status"] == "partial"
    assert result["deleted_ids"] == [f"application:{archived['id']}"]
    assert [error["ref"] for error in result["errors"]] == [f"application:{live['id']}"]


def test_purged_identifier_is_never_reissued(acme):
    issued = set()
    for _ in range(4):
        app = _create(acme["company_id"], acme["facility_id"])
        assert app["application_id"] not in issued
        issued.add(app["application_id"])
        archive_service.archive_entities("application", [app["id"]])
        archive_service.permanently_delete_entities([f"application:{app['id']}"])

    assert sorted(issued) == ["ACME-001-101", "ACME-001-102", "ACME-001-103", "ACME-001-104"]


def test_facility_codes_survive_purge(acme):
    second = company_service.create_facility(acme["company_id"], "Warehouse")["facility"]
    assert second["code"] == "002"

    archive_service.archive_entities("facility", [acme["facility_id"]])
    archive_service.permanently_delete_entities([f"facility:{acme['facility_id']}"])

    app = _create(acme["company_id"], second["id"])
    assert app["application_id"] == "ACME-002-101"

    third = company_service.create_facility(acme["company_id"], "Yard")["facility"]
    assert third["code"] == "003"
