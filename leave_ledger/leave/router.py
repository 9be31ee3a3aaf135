"""Leave router — apply, balances, approve/reject, withdraw, listings.

All endpoints require authentication. Manager/HR-specific endpoints enforce role checks.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from leave_ledger.auth.dependencies import Actor, get_current_actor, require_role
from leave_ledger.common.constants import LeaveStatus, UserRole
from leave_ledger.common.pagination import PaginatedResponse, PaginationParams
from leave_ledger.dependencies import get_ledger
from leave_ledger.leave.schemas import (
    LeaveApplyRequest,
    LeaveBalanceOut,
    LeaveRequestOut,
    LeaveReviewRequest,
)
from leave_ledger.leave.service import LeaveLedger

router = APIRouter(prefix="", tags=["leave"])


# ── POST /apply ─────────────────────────────────────────────────────

@router.post("/apply", response_model=LeaveRequestOut, status_code=201)
async def apply_leave(
    body: LeaveApplyRequest,
    actor: Actor = Depends(get_current_actor),
    ledger: LeaveLedger = Depends(get_ledger),
):
    """Apply for leave. Debits the balance and creates a pending request."""
    return await ledger.apply(
        actor.id,
        start_date=body.start_date,
        end_date=body.end_date,
        leave_type=body.leave_type,
        reason=body.reason,
    )


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=list[LeaveBalanceOut])
async def get_balances(
    year: Optional[int] = Query(None, ge=1900, le=9999),
    actor: Actor = Depends(get_current_actor),
    ledger: LeaveLedger = Depends(get_ledger),
):
    """Balances for the authenticated employee (defaults to the current year)."""
    return await ledger.get_balances(actor.id, year)


# ── GET /my-leaves ──────────────────────────────────────────────────

@router.get("/my-leaves", response_model=PaginatedResponse[LeaveRequestOut])
async def my_leaves(
    status: Optional[LeaveStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    ledger: LeaveLedger = Depends(get_ledger),
):
    """The authenticated user's leave requests, newest first."""
    return await ledger.list_requests(
        employee_id=actor.id,
        status=status,
        page=pagination.page,
        page_size=pagination.page_size,
    )


# ── GET /team-leaves ────────────────────────────────────────────────

@router.get("/team-leaves", response_model=PaginatedResponse[LeaveRequestOut])
async def team_leaves(
    status: Optional[LeaveStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(require_role(UserRole.manager)),
    ledger: LeaveLedger = Depends(get_ledger),
):
    """Leave requests of the caller's reports (manager) or of everyone (HR)."""
    return await ledger.list_team_requests(
        actor.id, actor.role,
        employee_id=employee_id,
        status=status,
        page=pagination.page,
        page_size=pagination.page_size,
    )


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{request_id}", response_model=LeaveRequestOut)
async def get_leave(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    ledger: LeaveLedger = Depends(get_ledger),
):
    """One leave request, visible to its owner, their manager and HR."""
    return await ledger.get_request(request_id, actor.id, actor.role)


# ── PUT /{id}/approve ───────────────────────────────────────────────

@router.put("/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave(
    request_id: uuid.UUID,
    body: Optional[LeaveReviewRequest] = Body(None),
    actor: Actor = Depends(require_role(UserRole.manager)),
    ledger: LeaveLedger = Depends(get_ledger),
):
    """Approve a pending leave request (manager / HR)."""
    return await ledger.approve(
        request_id, actor.id, actor.role,
        remarks=body.remarks if body else None,
    )


# ── PUT /{id}/reject ────────────────────────────────────────────────

@router.put("/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    request_id: uuid.UUID,
    body: Optional[LeaveReviewRequest] = Body(None),
    actor: Actor = Depends(require_role(UserRole.manager)),
    ledger: LeaveLedger = Depends(get_ledger),
):
    """Reject a pending leave request and restore the balance (manager / HR)."""
    return await ledger.reject(
        request_id, actor.id, actor.role,
        remarks=body.remarks if body else None,
    )


# ── PUT /{id}/withdraw ──────────────────────────────────────────────

@router.put("/{request_id}/withdraw", response_model=LeaveRequestOut)
async def withdraw_leave(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    ledger: LeaveLedger = Depends(get_ledger),
):
    """Withdraw one of your own pending requests and restore the balance."""
    return await ledger.withdraw(request_id, actor.id)
