import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from core.models import Application, Company, Facility, GhostApplicationId
from core.services import application_service, archive_service, company_service, ghost_ids
from core.services.company_service import base_short_name


@pytest.mark.parametrize(
    "name,expected",
    [
        ("Acme", "ACME"),
        ("Globex", "GLOBEX"),
        ("Initech Systems", "INISYS"),
        ("Acme Corp", "ACMCOR"),
        ("Blue Ridge Energy Partners", "BLRIEN"),
        ("O'Neil & Sons, Ltd.", "ONSOLT"),
    ],
)
def test_base_short_name(name, expected):
    assert base_short_name(name) == expected


def test_generated_short_names_avoid_collisions(server_db):
    names = [company_service.create_company("Globex")["company"]["short_name"] for _ in range(3)]
    assert names == ["GLOBEX", "GLOBE2", "GLOBE3"]


def test_archived_company_keeps_short_name_reserved(server_db):
    first = company_service.create_company("Globex")["company"]
    archive_service.archive_entities("company", [first["id"]])

    second = company_service.create_company("Globex")["company"]
    assert second["short_name"] == "GLOBE2"

    explicit = company_service.create_company("Globex Again", short_name="GLOBEX")
    assert explicit["status"] == "error"
    assert explicit["error_type"] == "constraint_violation"


def test_purge_frees_short_name(server_db):
    first = company_service.create_company("Globex")["company"]
    archive_service.archive_entities("company", [first["id"]])
    archive_service.permanently_delete_entities([f"company:{first['id']}"])

    assert company_service.create_company("Globex")["company"]["short_name"] == "GLOBEX"


def test_explicit_short_name_is_validated(server_db):
    result = company_service.create_company("Acme Corp", short_name="acme")
    assert result["error_type"] == "validation_error"
    result = company_service.create_company("Acme Corp", short_name="TOOLONG")
    assert result["error_type"] == "validation_error"
    result = company_service.create_company("!!!")
    assert result["error_type"] == "validation_error"


def test_facility_codes_come_from_counter(acme, db_session):
    codes = [
        company_service.create_facility(acme["company_id"], name)["facility"]["code"]
        for name in ("Alpha", "Beta")
    ]
    assert codes == ["002", "003"]

    archive_service.archive_entities("facility", [acme["facility_id"]])
    fourth = company_service.create_facility(acme["company_id"], "Gamma")["facility"]
    assert fourth["code"] == "004"

    db_session.expire_all()
    assert db_session.get(Company, acme["company_id"]).facility_code_counter == 4


def test_archived_company_rejects_new_facility(acme):
    archive_service.archive_entities("company", [acme["company_id"]])
    result = company_service.create_facility(acme["company_id"], "Late Addition")
    assert result["error_type"] == "constraint_violation"
    assert result["reason"] == "company_archived"


def test_facility_code_limit(acme, db_session):
    company = db_session.get(Company, acme["company_id"])
    company.facility_code_counter = 999
    db_session.commit()

    result = company_service.create_facility(acme["company_id"], "Overflow")
    assert result["error_type"] == "constraint_violation"
    assert result["reason"] == "facility_code_limit"


def test_short_name_rename_rewrites_prefixes(acme, db_session):
    live = application_service.create_application(acme["company_id"], acme["facility_id"], "FRA")["application"]
    archived = application_service.create_application(acme["company_id"], acme["facility_id"], "EAA")["application"]
    archive_service.archive_entities("application", [archived["id"]])

    result = company_service.update_company_short_name(acme["company_id"], "ACMX")
    assert result["status"] == "updated"
    assert result["rewritten_count"] == 2
    assert {"from": "ACME-001-101", "to": "ACMX-001-101"} in result["rewritten"]

    db_session.expire_all()
    assert db_session.get(Company, acme["company_id"]).short_name == "ACMX"
    assert db_session.get(Application, live["id"]).application_id == "ACMX-001-101"
    assert db_session.get(Application, archived["id"]).application_id == "ACMX-001-201"
    # The issued identifier keeps its entry and the rewritten one gains its own.
    ghosts = sorted(row.application_id for row in db_session.query(GhostApplicationId).all())
    assert ghosts == ["ACME-001-201", "ACMX-001-201"]
    assert result["ghost_ids_written"] == 1

    nxt = application_service.create_application(acme["company_id"], acme["facility_id"], "FRA")["application"]
    assert nxt["application_id"] == "ACMX-001-102"


def test_short_name_rename_rejects_collisions(acme, db_session):
    application_service.create_application(acme["company_id"], acme["facility_id"], "FRA")

    taken = company_service.create_company("Other", short_name="OTHER")["company"]
    result = company_service.update_company_short_name(acme["company_id"], "OTHER")
    assert result["reason"] == "short_name_taken"

    old = company_service.create_company("Old Timer", short_name="OLDT")["company"]
    old_facility = company_service.create_facility(old["id"], "Plant")["facility"]
    old_app = application_service.create_application(old["id"], old_facility["id"], "FRA")["application"]
    assert old_app["application_id"] == "OLDT-001-101"
    archive_service.archive_entities("company", [old["id"]])
    archive_service.permanently_delete_entities([f"company:{old['id']}"])

    # OLDT is free again, but its purged identifier is still ghosted.
    result = company_service.update_company_short_name(acme["company_id"], "OLDT")
    assert result["status"] == "error"
    assert result["reason"] == "identifier_collision"

    db_session.expire_all()
    assert db_session.get(Company, acme["company_id"]).short_name == "ACME"
    assert taken["short_name"] == "OTHER"

    ghost_ids.clear_ghost_ids(["OLDT-001-101"])
    result = company_service.update_company_short_name(acme["company_id"], "OLDT")
    assert result["status"] == "updated"


def test_backfill_assigns_ordinal_codes(server_db, db_session):
    company = company_service.create_company("Legacy Works", short_name="LEGACY")["company"]
    db_session.add_all([
        Facility(company_id=company["id"], name="Zeta"),
        Facility(company_id=company["id"], name="Alpha"),
    ])
    db_session.commit()

    result = company_service.backfill_facility_codes(company_id=company["id"])
    assert result["backfilled_count"] == 2

    db_session.expire_all()
    codes = {
        facility.name: facility.code
        for facility in db_session.query(Facility).filter(Facility.company_id == company["id"]).all()
    }
    assert codes == {"Alpha": "001", "Zeta": "002"}
    assert db_session.get(Company, company["id"]).facility_code_counter == 2

    again = company_service.backfill_facility_codes()
    assert again["backfilled_count"] == 0


def test_rename_keeps_archived_identifiers_out_of_circulation(acme, db_session):
    archived = application_service.create_application(acme["company_id"], acme["facility_id"], "FRA")["application"]
    archive_service.archive_entities("application", [archived["id"]])

    result = company_service.update_company_short_name(acme["company_id"], "NEWCO")
    assert result["status"] == "updated"

    created = application_service.create_application(acme["company_id"], acme["facility_id"], "FRA")["application"]
    assert created["application_id"] == "NEWCO-001-102"

    db_session.expire_all()
    rows = sorted(
        (row.application_id, row.is_archived)
        for row in db_session.query(Application).filter(Application.company_id == acme["company_id"]).all()
    )
    assert rows == [("NEWCO-001-101", True), ("NEWCO-001-102", False)]


def test_archived_company_cannot_be_renamed(acme, db_session):
    archive_service.archive_entities("company", [acme["company_id"]])

    result = company_service.update_company_short_name(acme["company_id"], "ACMX")
    assert result["error_type"] == "constraint_violation"
    assert result["reason"] == "company_archived"

    db_session.expire_all()
    assert db_session.get(Company, acme["company_id"]).short_name == "ACME"
