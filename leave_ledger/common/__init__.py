"""Common module — shared utilities for the leave ledger."""

from leave_ledger.common.audit import AuditTrail, create_audit_entry
from leave_ledger.common.constants import (
    APPROVER_ROLES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    TERMINAL_STATUSES,
    LeaveStatus,
    UserRole,
)
from leave_ledger.common.exceptions import (
    AppException,
    ForbiddenException,
    InsufficientBalanceError,
    InvertedRangeError,
    LedgerCommitError,
    NoWorkingDaysError,
    NotFoundException,
    NotFoundOrNotPending,
    OnlyPendingWithdrawable,
    PastDateError,
    SelfApprovalForbidden,
    ValidationException,
    register_exception_handlers,
)
from leave_ledger.common.locks import KeyedLock
from leave_ledger.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "APPROVER_ROLES",
    "LeaveStatus",
    "TERMINAL_STATUSES",
    "UserRole",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ForbiddenException",
    "InsufficientBalanceError",
    "InvertedRangeError",
    "LedgerCommitError",
    "NoWorkingDaysError",
    "NotFoundException",
    "NotFoundOrNotPending",
    "OnlyPendingWithdrawable",
    "PastDateError",
    "SelfApprovalForbidden",
    "ValidationException",
    "register_exception_handlers",
    # Locks
    "KeyedLock",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
