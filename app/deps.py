"""
Dependency helpers for the standalone FastAPI app.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Depends, Header

from core.context import AuthContext, RequestContext


async def get_auth_context(
    x_actor: Optional[str] = Header(default=None),
) -> AuthContext:
    # Authentication lives in front of this service; the header only labels audit rows.
    if x_actor and x_actor.strip():
        return AuthContext(actor=x_actor.strip())
    return AuthContext()


async def get_request_context(
    auth: AuthContext = Depends(get_auth_context),
    x_request_id: Optional[str] = Header(default=None),
) -> RequestContext:
    request_id = x_request_id or str(uuid.uuid4())
    return RequestContext(auth=auth, request_id=request_id, source="http")
