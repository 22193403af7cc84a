from __future__ import annotations

import hmac
from typing import Iterable, Literal

from fastapi import Header, HTTPException
from pydantic import BaseModel

from storefront.core.config import Settings, get_settings

ActorType = Literal["storefront", "admin", "system"]


class Actor(BaseModel):
    type: ActorType
    id: str


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _presented_key(authorization: str | None, x_api_key: str | None) -> str | None:
    # Bearer header wins over X-API-Key when both are sent.
    if authorization is not None:
        scheme, _, credential = authorization.strip().partition(" ")
        credential = credential.strip()
        if scheme.lower() != "bearer" or not credential:
            raise _unauthorized("malformed authorization header")
        return credential
    key = (x_api_key or "").strip()
    return key or None


def _role_keys(settings: Settings) -> list[tuple[str, Actor]]:
    return [
        (settings.storefront_api_key, Actor(type="storefront", id=settings.storefront_actor_id)),
        (settings.admin_api_key, Actor(type="admin", id=settings.admin_actor_id)),
        (settings.system_api_key, Actor(type="system", id=settings.system_actor_id)),
    ]


def actor_for_key(api_key: str, settings: Settings | None = None) -> Actor | None:
    presented = api_key.encode("utf-8")
    for configured, actor in _role_keys(settings or get_settings()):
        if configured and hmac.compare_digest(presented, configured.encode("utf-8")):
            return actor
    return None


def get_actor(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
) -> Actor:
    settings = get_settings()
    if not settings.auth_enabled:
        return Actor(type="admin", id=settings.admin_actor_id)

    api_key = _presented_key(authorization, x_api_key)
    if api_key is None:
        raise _unauthorized("api key required")
    actor = actor_for_key(api_key, settings)
    if actor is None:
        raise _unauthorized("unknown api key")
    return actor


def require_roles(actor: Actor, allowed: Iterable[str], detail: str | None = None) -> None:
    allowed = set(allowed)
    if actor.type not in allowed:
        raise HTTPException(
            status_code=403,
            detail=detail or f"role {actor.type} not allowed; needs one of {', '.join(sorted(allowed))}",
        )
