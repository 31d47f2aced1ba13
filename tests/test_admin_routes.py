import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from fastapi.testclient import TestClient

from app.main import app
from core.audit_constants import EVENT_ENTITY_ARCHIVED
from core.models import Application, AuditEvent


@pytest.fixture
def client(server_db):
    # Not used as a context manager so the lifespan hook (migrations) is skipped.
    return TestClient(app)


def _seed(client) -> dict:
    company = client.post("/admin/companies", json={"name": "Acme Corp", "short_name": "ACME"})
    assert company.status_code == 201
    company_id = company.json()["company"]["id"]
    facility = client.post(f"/admin/companies/{company_id}/facilities", json={"name": "Main Plant"})
    assert facility.status_code == 201
    return {"company_id": company_id, "facility_id": facility.json()["facility"]["id"]}


def test_create_application_over_http(client):
    ids = _seed(client)
    response = client.post(
        "/admin/applications",
        json={**ids, "activity_type": "CR", "title": "Compressed air"},
    )
    assert response.status_code == 201
    assert response.json()["application"]["application_id"] == "ACME-001-501"


def test_error_types_map_to_status_codes(client):
    ids = _seed(client)

    bad_activity = client.post("/admin/applications", json={**ids, "activity_type": "SOLAR"})
    assert bad_activity.status_code == 400
    assert bad_activity.json()["detail"]["error_type"] == "validation_error"

    missing = client.post(
        "/admin/applications",
        json={"company_id": ids["company_id"], "facility_id": 999, "activity_type": "FRA"},
    )
    assert missing.status_code == 404

    duplicate = client.post("/admin/companies", json={"name": "Acme Again", "short_name": "ACME"})
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["reason"] == "short_name_taken"

    not_archived = client.get(f"/admin/archive/entities/company:{ids['company_id']}")
    assert not_archived.status_code == 404


def test_archive_restore_and_delete_flow(client, db_session):
    ids = _seed(client)
    created = client.post("/admin/applications", json={**ids, "activity_type": "FRA"}).json()["application"]

    archived = client.post(
        "/admin/archive",
        json={"entity_type": "application", "entity_ids": [created["id"]], "reason": "duplicate"},
        headers={"X-Actor": "ops@portal", "X-Request-ID": "req-123"},
    )
    assert archived.status_code == 200
    assert archived.json()["ghost_ids"] == ["ACME-001-101"]

    db_session.expire_all()
    assert db_session.get(Application, created["id"]).archived_by == "ops@portal"
    event = db_session.query(AuditEvent).filter(AuditEvent.event_type == EVENT_ENTITY_ARCHIVED).one()
    assert event.actor_type == "user"
    assert event.actor_id == "ops@portal"
    assert event.request_id == "req-123"

    ghosts = client.get("/admin/ghost-ids").json()
    assert ghosts["count"] == 1

    stats = client.get("/admin/archive/stats").json()
    assert stats["archived_applications"] == 1

    listing = client.get("/admin/archive/entities").json()
    assert listing["counts"]["applications"] == 1

    restored = client.post("/admin/archive/restore", json={"entity_refs": [f"application:{created['id']}"]})
    assert restored.json()["status"] == "restored"

    live_delete = client.post("/admin/archive/delete", json={"entity_refs": [f"application:{created['id']}"]})
    assert live_delete.status_code == 200
    assert live_delete.json()["status"] == "failed"

    client.post("/admin/archive", json={"entity_type": "application", "entity_ids": [created["id"]]})
    deleted = client.post("/admin/archive/delete", json={"entity_refs": [f"application:{created['id']}"]})
    assert deleted.json()["deleted_ids"] == [f"application:{created['id']}"]

    cleared = client.post("/admin/ghost-ids/clear", json={"application_ids": ["ACME-001-101"]})
    assert cleared.json()["cleared_count"] == 1

    reissued = client.post("/admin/applications", json={**ids, "activity_type": "FRA"})
    assert reissued.json()["application"]["application_id"] == "ACME-001-101"


def test_short_name_rename_over_http(client):
    ids = _seed(client)
    client.post("/admin/applications", json={**ids, "activity_type": "SEM"})

    renamed = client.patch(f"/admin/companies/{ids['company_id']}/short-name", json={"short_name": "ACMX"})
    assert renamed.status_code == 200
    assert renamed.json()["rewritten"] == [{"from": "ACME-001-301", "to": "ACMX-001-301"}]

    invalid = client.patch(f"/admin/companies/{ids['company_id']}/short-name", json={"short_name": "acm-x"})
    assert invalid.status_code == 400


def test_ghost_id_delete_routes(client):
    assert client.delete("/admin/ghost-ids/42").status_code == 404
    cleared = client.delete("/admin/ghost-ids")
    assert cleared.status_code == 200
    assert cleared.json()["cleared_count"] == 0


def test_audit_trail_over_http(client):
    ids = _seed(client)
    created = client.post("/admin/applications", json={**ids, "activity_type": "FRA"}).json()["application"]
    ref = f"application:{created['id']}"
    client.post(
        "/admin/archive",
        json={"entity_type": "application", "entity_ids": [created["id"]]},
        headers={"X-Actor": "ops@portal"},
    )
    client.post("/admin/archive/restore", json={"entity_refs": [ref]}, headers={"X-Actor": "ops@portal"})

    trail = client.get("/admin/audit", params={"entity_ref": ref})
    assert trail.status_code == 200
    assert [event["event_type"] for event in trail.json()["events"]] == [
        "entity.restored",
        "entity.archived",
        "application.created",
    ]

    by_actor = client.get("/admin/audit", params={"actor_id": "ops@portal", "event_type": "entity.restored"})
    assert by_actor.json()["count"] == 1

    assert client.get("/admin/audit", params={"limit": 0}).status_code == 400
