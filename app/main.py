"""
Standalone FastAPI app wiring for GrantGate.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.db import dispose_db, init_db
from app.middleware import configure_middleware
from app.routes.admin import router as admin_router
from app.routes.health import router as health_router
from app.routes.root import router as root_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    init_db()
    try:
        yield
    finally:
        dispose_db()


app = FastAPI(title="GrantGate", redirect_slashes=False, lifespan=lifespan)
configure_middleware(app)

# Health and root endpoints
app.include_router(health_router)
app.include_router(root_router)

# Admin archive, ghost-id and identifier endpoints
app.include_router(admin_router)
