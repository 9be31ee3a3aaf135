"""Shared FastAPI dependencies."""

from typing import Optional

from leave_ledger.auth.policy import DefaultAccessPolicy
from leave_ledger.config import settings
from leave_ledger.database import async_session_factory
from leave_ledger.leave.service import LeaveLedger, local_today
from leave_ledger.leave.stores import DefaultAllocations, sql_unit_of_work_factory

_ledger: Optional[LeaveLedger] = None


def build_ledger() -> LeaveLedger:
    """Ledger over the application database, configured from settings."""
    return LeaveLedger(
        sql_unit_of_work_factory(
            async_session_factory,
            DefaultAllocations(settings.default_allocations_map),
        ),
        access_policy=DefaultAccessPolicy(settings.reporting_lines_map),
        clock=local_today(settings.LEAVE_TIMEZONE),
    )


def get_ledger() -> LeaveLedger:
    """Process-wide ledger; its per-key locks must be shared by all requests."""
    global _ledger
    if _ledger is None:
        _ledger = build_ledger()
    return _ledger
