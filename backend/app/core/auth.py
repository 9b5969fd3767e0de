"""Actor identification for API routes.

The API never authorizes operations; it only resolves who is acting so the
delivery history can name them.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings
from app.core.logging import logger


security = HTTPBearer(auto_error=False)


@dataclass
class ActorContext:
    actor: str
    authenticated: bool


def _parse_actor_tokens(raw: str) -> Dict[str, str]:
    """Parse `token:actor` comma-separated values from env."""
    mapping: Dict[str, str] = {}
    if not raw.strip():
        return mapping

    for segment in raw.split(","):
        item = segment.strip()
        if not item:
            continue
        if ":" not in item:
            logger.warning("Ignoring malformed actor token mapping entry", entry=item)
            continue
        token, actor = item.split(":", 1)
        token = token.strip()
        actor = actor.strip()
        if token and actor:
            mapping[token] = actor
    return mapping


def get_actor_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_actor: str | None = Header(default=None, alias="X-Actor"),
) -> ActorContext:
    """Resolve the acting user from a bearer token or the X-Actor header."""
    settings = get_settings()

    if not settings.auth_enabled:
        actor = (x_actor or settings.default_actor or "api").strip() or "api"
        return ActorContext(actor=actor, authenticated=False)

    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token required",
        )

    token_map = _parse_actor_tokens(settings.actor_tokens)
    actor = token_map.get(credentials.credentials.strip())
    if not actor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid bearer token",
        )

    return ActorContext(actor=actor, authenticated=True)
