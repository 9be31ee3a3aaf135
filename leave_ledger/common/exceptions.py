"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://leave-ledger.local/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
        extensions: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        self.extensions = extensions or {}
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


# ── Leave input validation ──────────────────────────────────────────

class PastDateError(ValidationException):
    """start_date or end_date lies before today."""

    def __init__(self, today: date) -> None:
        super().__init__(
            {"dates": [f"Cannot request leave in the past (today is {today.isoformat()})."]}
        )


class InvertedRangeError(ValidationException):
    """end_date is before start_date."""

    def __init__(self, start: date, end: date) -> None:
        super().__init__(
            {"end_date": [
                f"end_date {end.isoformat()} cannot be before start_date {start.isoformat()}."
            ]}
        )


class NoWorkingDaysError(ValidationException):
    """The requested range contains only weekend days."""

    def __init__(self) -> None:
        super().__init__({"dates": ["No working days in the selected range."]})


# ── Leave business rules ────────────────────────────────────────────

class InsufficientBalanceError(AppException):
    """422 — the allocation pool cannot cover the requested days."""

    def __init__(self, *, remaining: int, requested: int, leave_type: str) -> None:
        self.remaining = remaining
        self.requested = requested
        self.leave_type = leave_type
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=(
                f"Insufficient {leave_type} balance. "
                f"Remaining: {remaining}, Requested: {requested}."
            ),
            extensions={
                "remaining": remaining,
                "requested": requested,
                "leave_type": leave_type,
            },
        )


class SelfApprovalForbidden(ForbiddenException):
    """A manager tried to approve or reject their own leave."""

    def __init__(self) -> None:
        super().__init__(
            "Managers cannot approve or reject their own leave; HR must handle it."
        )
        self.error_type = "self-approval-forbidden"


class NotFoundOrNotPending(AppException):
    """404 when the request is missing, 409 when it already left ``pending``."""

    def __init__(self, request_id: Any, status: Optional[str] = None) -> None:
        self.current_status = status
        if status is None:
            super().__init__(
                status_code=404,
                error_type="not-found-or-not-pending",
                title="Leave Request Not Found",
                detail=f"LeaveRequest with id '{request_id}' does not exist.",
            )
        else:
            super().__init__(
                status_code=409,
                error_type="not-found-or-not-pending",
                title="Leave Request Not Pending",
                detail=f"Leave request is already {status}.",
                extensions={"current_status": status},
            )


class OnlyPendingWithdrawable(AppException):
    """409 — only pending requests can be withdrawn."""

    def __init__(self, status: str) -> None:
        self.current_status = status
        super().__init__(
            status_code=409,
            error_type="only-pending-withdrawable",
            title="Cannot Withdraw",
            detail=f"Only pending leaves can be withdrawn; this one is {status}.",
            extensions={"current_status": status},
        )


# ── Consistency ─────────────────────────────────────────────────────

class LedgerCommitError(AppException):
    """503 — the unit of work failed to commit and was rolled back."""

    def __init__(self) -> None:
        super().__init__(
            status_code=503,
            error_type="commit-failed",
            title="Transaction Failed",
            detail="The operation was not applied; it is safe to retry.",
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    for key, value in exc.extensions.items():
        body.setdefault(key, value)
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
