"""Auth dependencies — JWT validation, RBAC enforcement.

Identity is resolved upstream; this service only trusts a signed bearer token
carrying ``sub`` (employee UUID) and ``role``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt

from leave_ledger.auth.policy import normalize_role
from leave_ledger.common.constants import UserRole
from leave_ledger.common.exceptions import ForbiddenException
from leave_ledger.config import settings

# Each role implicitly includes the roles below it
_ROLE_HIERARCHY: dict[UserRole, set[UserRole]] = {
    UserRole.hr: {UserRole.hr, UserRole.manager, UserRole.employee},
    UserRole.manager: {UserRole.manager, UserRole.employee},
    UserRole.employee: {UserRole.employee},
}


@dataclass(frozen=True)
class Actor:
    """The authenticated caller."""

    id: uuid.UUID
    role: UserRole


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_actor(request: Request) -> Actor:
    """Validate the JWT and return the caller's id and normalized role."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type", "access") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    try:
        actor_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    return Actor(id=actor_id, role=normalize_role(payload.get("role")))


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership.

    Respects hierarchy — e.g. hr can access manager endpoints.
    """

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        effective_roles = _ROLE_HIERARCHY.get(actor.role, {actor.role})
        if not effective_roles.intersection(set(allowed_roles)):
            raise ForbiddenException(
                detail=f"Role '{actor.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return actor

    return _check
