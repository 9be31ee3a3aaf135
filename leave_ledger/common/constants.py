"""Enums and constants for the leave ledger."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr = "hr"


# Roles allowed to approve or reject someone's leave
APPROVER_ROLES: frozenset[UserRole] = frozenset({UserRole.manager, UserRole.hr})


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    withdrawn = "withdrawn"


TERMINAL_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.withdrawn}
)


# ── Misc constants ──────────────────────────────────────────────────

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
