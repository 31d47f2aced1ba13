import os

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.audit_constants import EVENT_ENTITY_ARCHIVED
from core.models import Application, AuditEvent, Company, Facility, GhostApplicationId, User
from core.services import application_service, archive_service, company_service, ghost_ids


def _create(company_id, facility_id, activity_type="FRA"):
    result = application_service.create_application(company_id, facility_id, activity_type, title="Retrofit")
    assert result["status"] == "created", result
    return result["application"]


def test_acme_scenario(acme):
    first = _create(acme["company_id"], acme["facility_id"])
    assert first["application_id"] == "ACME-001-101"

    archived = archive_service.archive_entities("application", [first["id"]], reason="duplicate")
    assert archived["archived_count"] == 1
    assert archived["ghost_ids"] == ["ACME-001-101"]

    listing = ghost_ids.list_ghost_ids()
    assert [row["application_id"] for row in listing["ghost_ids"]] == ["ACME-001-101"]

    second = _create(acme["company_id"], acme["facility_id"])
    assert second["application_id"] == "ACME-001-102"

    cleared = ghost_ids.clear_ghost_ids(["ACME-001-101"])
    assert cleared["cleared_ids"] == ["ACME-001-101"]

    third = _create(acme["company_id"], acme["facility_id"])
    assert third["application_id"] == "ACME-001-101"


def test_company_cascade_archives_everything(server_db, db_session):
    company = company_service.create_company("Northwind Mills", short_name="NWM")["company"]
    facility_ids = [
        company_service.create_facility(company["id"], name)["facility"]["id"]
        for name in ("North", "South")
    ]
    apps = [
        _create(company["id"], facility_ids[0], "FRA"),
        _create(company["id"], facility_ids[0], "SEM"),
        _create(company["id"], facility_ids[1], "CR"),
    ]
    db_session.add_all([
        User(email="owner@northwind.test", company_id=company["id"]),
        User(email="staff@northwind.test", company_id=company["id"]),
    ])
    db_session.commit()

    result = archive_service.archive_entities("company", [company["id"]], reason="closed", actor="admin@portal")
    assert result["status"] == "archived"
    assert result["archived_ids"] == [f"company:{company['id']}"]
    assert result["cascaded"] == {"facilities": 2, "applications": 3}
    assert result["ghost_ids_written"] == 3
    assert result["users_detached"] == 2

    db_session.expire_all()
    assert db_session.get(Company, company["id"]).is_archived
    assert all(db_session.get(Facility, fid).is_archived for fid in facility_ids)
    stored = db_session.query(Application).filter(Application.company_id == company["id"]).all()
    assert all(app.is_archived for app in stored)
    assert all(app.archived_by == "admin@portal" for app in stored)
    ghosts = {row.application_id for row in db_session.query(GhostApplicationId).all()}
    assert ghosts == {app["application_id"] for app in apps}
    users = db_session.query(User).all()
    assert len(users) == 2
    assert all(user.company_id is None for user in users)

    events = db_session.query(AuditEvent).filter(AuditEvent.event_type == EVENT_ENTITY_ARCHIVED).all()
    assert len(events) == 1
    assert events[0].target_ids == [f"company:{company['id']}"]
    assert events[0].actor_id == "admin@portal"


def test_cascade_ghosts_every_child_but_counts_only_new_archives(acme, db_session):
    apps = [_create(acme["company_id"], acme["facility_id"]) for _ in range(3)]
    archive_service.archive_entities("application", [apps[0]["id"]], reason="first")

    result = archive_service.archive_entities("facility", [acme["facility_id"]])
    assert result["cascaded"]["applications"] == 2
    assert result["ghost_ids_written"] == 3
    assert sorted(result["ghost_ids"]) == ["ACME-001-101", "ACME-001-102", "ACME-001-103"]

    db_session.expire_all()
    assert db_session.query(GhostApplicationId).count() == 3
    # Already archived children keep their original archive fields.
    assert db_session.get(Application, apps[0]["id"]).archive_reason == "first"


def test_company_cascade_reghosts_cleared_identifier(acme, db_session):
    app = _create(acme["company_id"], acme["facility_id"])
    archive_service.archive_entities("application", [app["id"]])
    ghost_ids.clear_ghost_ids(["ACME-001-101"])

    result = archive_service.archive_entities("company", [acme["company_id"]])
    assert result["cascaded"]["applications"] == 0
    assert result["ghost_ids"] == ["ACME-001-101"]

    db_session.expire_all()
    ghosts = [row.application_id for row in db_session.query(GhostApplicationId).all()]
    assert ghosts == ["ACME-001-101"]


def test_archive_is_idempotent_per_id(acme):
    app = _create(acme["company_id"], acme["facility_id"])
    first = archive_service.archive_entities("application", [app["id"]])
    assert first["archived_count"] == 1

    again = archive_service.archive_entities("application", [app["id"], 4242])
    assert again["status"] == "archived"
    assert again["archived_count"] == 0
    assert again["skipped_ids"] == [f"application:{app['id']}", "application:4242"]
    assert again["errors"] == []


def test_archive_without_cascade_leaves_children(acme, db_session):
    app = _create(acme["company_id"], acme["facility_id"])
    result = archive_service.archive_entities("facility", [acme["facility_id"]], cascade=False)
    assert result["archived_count"] == 1
    assert result["ghost_ids_written"] == 0

    db_session.expire_all()
    assert db_session.get(Facility, acme["facility_id"]).is_archived
    assert not db_session.get(Application, app["id"]).is_archived


def test_archive_validates_input(server_db):
    result = archive_service.archive_entities("invoice", [1])
    assert result["status"] == "error"
    assert result["error_type"] == "validation_error"

    result = archive_service.archive_entities("company", [])
    assert result["error_type"] == "validation_error"

    result = archive_service.archive_entities("company", [0, -3])
    assert result["error_type"] == "validation_error"


def test_archived_listing_groups_by_parent(acme):
    kept = company_service.create_company("Kept Co", short_name="KEPT")["company"]
    kept_facility = company_service.create_facility(kept["id"], "Depot")["facility"]
    orphan_app = _create(kept["id"], kept_facility["id"])
    archive_service.archive_entities("application", [orphan_app["id"]])

    _create(acme["company_id"], acme["facility_id"])
    archive_service.archive_entities("company", [acme["company_id"]])

    listing = archive_service.list_archived_entities()
    assert listing["counts"] == {"companies": 1, "facilities": 1, "applications": 2}
    assert [item["short_name"] for item in listing["companies"]] == ["ACME"]
    nested_facility = listing["companies"][0]["facilities"][0]
    assert nested_facility["code"] == "001"
    assert [app["application_id"] for app in nested_facility["applications"]] == ["ACME-001-101"]
    assert [app["application_id"] for app in listing["applications"]] == ["KEPT-001-101"]
    assert listing["facilities"] == []

    details = archive_service.get_archived_entity_details(f"company:{acme['company_id']}")
    assert details["entity"]["short_name"] == "ACME"
    assert len(details["entity"]["applications"]) == 1

    app_details = archive_service.get_archived_entity_details(f"application:{orphan_app['id']}")
    assert app_details["entity"]["ghost_id_present"] is True

    missing = archive_service.get_archived_entity_details(f"facility:{kept_facility['id']}")
    assert missing["error_type"] == "not_found"

    stats = archive_service.get_archive_statistics()
    assert stats["archived_companies"] == 1
    assert stats["archived_applications"] == 2
    assert stats["ghost_ids"] == 2
