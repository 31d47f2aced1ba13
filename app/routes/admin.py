"""
Admin endpoints: companies, applications, archive, restore, ghost ids, audit trail.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

import core.config as config
from core.context import RequestContext
from core.services import (
    application_service,
    archive_service,
    audit_service,
    company_service,
    ghost_ids,
    restore_service,
)
from app.deps import get_request_context


router = APIRouter(prefix="/admin", tags=["admin"])

ERROR_STATUS_CODES = {
    "validation_error": 400,
    "not_found": 404,
    "capacity_exceeded": 409,
    "constraint_violation": 409,
    "persistence_failure": 503,
}


def _respond(result: dict) -> dict:
    if result.get("status") == "error":
        status_code = ERROR_STATUS_CODES.get(result.get("error_type"), 400)
        raise HTTPException(status_code=status_code, detail=result)
    return result


class CompanyCreateRequest(BaseModel):
    name: str
    short_name: Optional[str] = None


class ShortNameUpdateRequest(BaseModel):
    short_name: str


class FacilityCreateRequest(BaseModel):
    name: str


class ApplicationCreateRequest(BaseModel):
    company_id: int
    facility_id: int
    activity_type: str
    title: Optional[str] = None
    description: Optional[str] = None


class ArchiveRequest(BaseModel):
    entity_type: str
    entity_ids: List[int]
    reason: Optional[str] = None
    cascade: bool = True


class EntityRefsRequest(BaseModel):
    entity_refs: List[str]


class GhostClearRequest(BaseModel):
    application_ids: List[str]


# =============================================================================
# Companies, facilities, applications
# =============================================================================

@router.post("/companies", status_code=201)
def create_company(
    body: CompanyCreateRequest,
    context: RequestContext = Depends(get_request_context),
):
    return _respond(
        company_service.create_company(body.name, short_name=body.short_name, context=context)
    )


@router.patch("/companies/{company_id}/short-name")
def update_company_short_name(
    company_id: int,
    body: ShortNameUpdateRequest,
    context: RequestContext = Depends(get_request_context),
):
    return _respond(
        company_service.update_company_short_name(company_id, body.short_name, context=context)
    )


@router.post("/companies/{company_id}/facilities", status_code=201)
def create_facility(
    company_id: int,
    body: FacilityCreateRequest,
    context: RequestContext = Depends(get_request_context),
):
    return _respond(company_service.create_facility(company_id, body.name, context=context))


@router.post("/facilities/backfill-codes")
def backfill_facility_codes(
    company_id: Optional[int] = Query(default=None),
    context: RequestContext = Depends(get_request_context),
):
    return _respond(company_service.backfill_facility_codes(company_id=company_id, context=context))


@router.post("/applications", status_code=201)
def create_application(
    body: ApplicationCreateRequest,
    context: RequestContext = Depends(get_request_context),
):
    return _respond(
        application_service.create_application(
            body.company_id,
            body.facility_id,
            body.activity_type,
            title=body.title,
            description=body.description,
            context=context,
        )
    )


# =============================================================================
# Archive, restore, permanent delete
# =============================================================================

@router.post("/archive")
def archive_entities(
    body: ArchiveRequest,
    context: RequestContext = Depends(get_request_context),
):
    return _respond(
        archive_service.archive_entities(
            body.entity_type,
            body.entity_ids,
            reason=body.reason,
            cascade=body.cascade,
            context=context,
        )
    )


@router.post("/archive/restore")
def restore_entities(
    body: EntityRefsRequest,
    context: RequestContext = Depends(get_request_context),
):
    return _respond(restore_service.restore_entities(body.entity_refs, context=context))


@router.post("/archive/delete")
def permanently_delete_entities(
    body: EntityRefsRequest,
    context: RequestContext = Depends(get_request_context),
):
    return _respond(archive_service.permanently_delete_entities(body.entity_refs, context=context))


@router.get("/archive/entities")
def list_archived_entities():
    return _respond(archive_service.list_archived_entities())


@router.get("/archive/entities/{entity_ref}")
def get_archived_entity_details(entity_ref: str):
    return _respond(archive_service.get_archived_entity_details(entity_ref))


@router.get("/archive/stats")
def get_archive_statistics():
    return _respond(archive_service.get_archive_statistics())


# =============================================================================
# Ghost ids
# =============================================================================

@router.get("/ghost-ids")
def list_ghost_ids(
    company_id: Optional[int] = Query(default=None),
    limit: int = Query(default=config.GHOST_LIST_LIMIT_DEFAULT),
):
    return _respond(ghost_ids.list_ghost_ids(company_id=company_id, limit=limit))


@router.post("/ghost-ids/clear")
def clear_ghost_ids(
    body: GhostClearRequest,
    context: RequestContext = Depends(get_request_context),
):
    return _respond(ghost_ids.clear_ghost_ids(body.application_ids, context=context))


@router.delete("/ghost-ids")
def clear_all_ghost_ids(context: RequestContext = Depends(get_request_context)):
    return _respond(ghost_ids.clear_all_ghost_ids(context=context))


@router.delete("/ghost-ids/{ghost_id}")
def delete_ghost_id(
    ghost_id: int,
    context: RequestContext = Depends(get_request_context),
):
    return _respond(ghost_ids.delete_ghost_id(ghost_id, context=context))


# =============================================================================
# Audit trail
# =============================================================================

@router.get("/audit")
def list_audit_trail(
    entity_ref: Optional[str] = Query(default=None),
    event_type: Optional[str] = Query(default=None),
    actor_id: Optional[str] = Query(default=None),
    limit: int = Query(default=config.AUDIT_LIST_LIMIT_DEFAULT),
    cursor: Optional[str] = Query(default=None),
):
    return _respond(
        audit_service.list_audit_trail(
            entity_ref=entity_ref,
            event_type=event_type,
            actor_id=actor_id,
            limit=limit,
            cursor=cursor,
        )
    )
