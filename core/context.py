"""
Request-scoped context objects for core services.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import contextvars


@dataclass(frozen=True)
class AuthContext:
    user_id: Optional[str] = None
    company_id: Optional[int] = None
    actor: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    auth: AuthContext
    request_id: Optional[str] = None
    source: Optional[str] = None


_CURRENT_REQUEST_CONTEXT: contextvars.ContextVar[Optional["RequestContext"]] = contextvars.ContextVar(
    "grantgate_request_context",
    default=None,
)


def get_current_request_context() -> Optional["RequestContext"]:
    return _CURRENT_REQUEST_CONTEXT.get()


def set_current_request_context(context: Optional["RequestContext"]) -> contextvars.Token:
    return _CURRENT_REQUEST_CONTEXT.set(context)


def reset_current_request_context(token: contextvars.Token) -> None:
    _CURRENT_REQUEST_CONTEXT.reset(token)


def resolve_actor(context: Optional["RequestContext"], fallback: Optional[str] = None) -> Optional[str]:
    """Pick the label recorded in archived_by / audit rows for this request."""
    if context is None:
        context = get_current_request_context()
    if context is not None and context.auth is not None:
        if context.auth.actor:
            return context.auth.actor
        if context.auth.user_id is not None:
            return str(context.auth.user_id)
    return fallback


__all__ = [
    "AuthContext",
    "RequestContext",
    "get_current_request_context",
    "set_current_request_context",
    "reset_current_request_context",
    "resolve_actor",
]
