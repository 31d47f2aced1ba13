"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import core.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "GrantGate",
        "version": "0.1.0",
        "description": "Application identifier allocation and archive engine",
        "db_backend": config.DB_BACKEND_EFFECTIVE,
        "endpoints": {
            "health": "/health",
            "companies": "/admin/companies",
            "applications": "/admin/applications",
            "archive": {
                "archive": "/admin/archive",
                "restore": "/admin/archive/restore",
                "delete": "/admin/archive/delete",
                "entities": "/admin/archive/entities",
                "stats": "/admin/archive/stats",
            },
            "ghost_ids": "/admin/ghost-ids",
        },
    }
