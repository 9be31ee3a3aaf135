"""Role normalization and the access-policy seam consulted by the ledger.

``normalize_role`` is the only place loosely-cased role strings coming from
tokens or upstream services are turned into a ``UserRole``. Everything past
that boundary compares enum members.
"""

from __future__ import annotations

import enum
import logging
import uuid
from typing import Collection, Mapping, Optional, Protocol, Union

from leave_ledger.common.constants import APPROVER_ROLES, UserRole

logger = logging.getLogger(__name__)

_ROLE_ALIASES: dict[str, UserRole] = {
    "employee": UserRole.employee,
    "manager": UserRole.manager,
    "hr": UserRole.hr,
    "hr_admin": UserRole.hr,
    "admin": UserRole.hr,
}


def normalize_role(raw: Optional[Union[str, UserRole]]) -> UserRole:
    """Map ``"HR"``, ``"hr"``, ``"admin"``, ``"Manager"``… onto ``UserRole``.

    Unknown or empty values fall back to the least privileged role.
    """
    if isinstance(raw, UserRole):
        return raw
    key = (raw or "").strip().lower()
    role = _ROLE_ALIASES.get(key)
    if role is None:
        logger.warning("Unrecognised role %r, treating as employee", raw)
        return UserRole.employee
    return role


class PolicyDecision(str, enum.Enum):
    allow = "allow"
    deny = "deny"


class AccessPolicy(Protocol):
    """Decides what an actor may review and whose leave an actor may read."""

    def can_act_on_leave(
        self,
        actor_role: UserRole,
        actor_id: uuid.UUID,
        leave_owner_id: uuid.UUID,
    ) -> PolicyDecision:
        ...

    def visible_owners(
        self,
        actor_role: UserRole,
        actor_id: uuid.UUID,
    ) -> Optional[frozenset[uuid.UUID]]:
        """Employees whose requests the actor may list; ``None`` means all."""
        ...

    def can_view_leave(
        self,
        actor_role: UserRole,
        actor_id: uuid.UUID,
        leave_owner_id: uuid.UUID,
    ) -> PolicyDecision:
        ...


class DefaultAccessPolicy:
    """Any manager or HR actor may review; reading follows reporting lines.

    HR sees every request, a manager sees their direct reports' requests and
    everyone sees their own.
    """

    def __init__(
        self,
        reporting_lines: Optional[Mapping[uuid.UUID, Collection[uuid.UUID]]] = None,
    ) -> None:
        self._reports = {
            manager: frozenset(reports)
            for manager, reports in (reporting_lines or {}).items()
        }

    def can_act_on_leave(
        self,
        actor_role: UserRole,
        actor_id: uuid.UUID,
        leave_owner_id: uuid.UUID,
    ) -> PolicyDecision:
        if actor_role in APPROVER_ROLES:
            return PolicyDecision.allow
        return PolicyDecision.deny

    def visible_owners(
        self,
        actor_role: UserRole,
        actor_id: uuid.UUID,
    ) -> Optional[frozenset[uuid.UUID]]:
        if actor_role == UserRole.hr:
            return None
        if actor_role == UserRole.manager:
            return self._reports.get(actor_id, frozenset())
        return frozenset({actor_id})

    def can_view_leave(
        self,
        actor_role: UserRole,
        actor_id: uuid.UUID,
        leave_owner_id: uuid.UUID,
    ) -> PolicyDecision:
        if leave_owner_id == actor_id:
            return PolicyDecision.allow
        owners = self.visible_owners(actor_role, actor_id)
        if owners is None or leave_owner_id in owners:
            return PolicyDecision.allow
        return PolicyDecision.deny
