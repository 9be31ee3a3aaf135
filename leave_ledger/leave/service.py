"""Leave ledger — the request state machine and its allocation bookkeeping.

Business logic:
  - Apply debits the allocation pool up front, so a pending request is a
    binding hold against the balance
  - Approve leaves the pool untouched; reject and withdraw credit it back
    through one shared restoration step
  - Every mutation of a request and its pool commits as one unit of work
  - Per-key locks serialise concurrent operations on the same pool or request
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Callable, Collection, Hashable, Optional, Union
from zoneinfo import ZoneInfo

from leave_ledger.auth.policy import (
    AccessPolicy,
    DefaultAccessPolicy,
    PolicyDecision,
    normalize_role,
)
from leave_ledger.common.constants import APPROVER_ROLES, LeaveStatus, UserRole
from leave_ledger.common.exceptions import (
    ForbiddenException,
    InsufficientBalanceError,
    InvertedRangeError,
    NoWorkingDaysError,
    NotFoundException,
    NotFoundOrNotPending,
    OnlyPendingWithdrawable,
    PastDateError,
    SelfApprovalForbidden,
)
from leave_ledger.common.locks import KeyedLock
from leave_ledger.common.pagination import PaginatedResponse, PaginationMeta
from leave_ledger.leave.business_days import business_days_between
from leave_ledger.leave.models import LeaveRequest
from leave_ledger.leave.schemas import LeaveBalanceOut, LeaveRequestOut
from leave_ledger.leave.stores import UnitOfWork, UnitOfWorkFactory

logger = logging.getLogger(__name__)

Clock = Callable[[], date]


def local_today(tz_name: str) -> Clock:
    """Clock returning the current date in *tz_name*."""
    tz = ZoneInfo(tz_name)

    def _today() -> date:
        return datetime.now(tz).date()

    return _today


def normalize_leave_type(raw: str) -> str:
    return raw.strip().lower()


def _allocation_key(employee_id: uuid.UUID, year: int, leave_type: str) -> Hashable:
    return ("allocation", employee_id, year, leave_type)


def _request_key(request_id: uuid.UUID) -> Hashable:
    return ("request", request_id)


def _snapshot(request: LeaveRequest) -> dict[str, Any]:
    return {
        "status": request.status.value,
        "leave_type": request.leave_type,
        "start_date": request.start_date.isoformat(),
        "end_date": request.end_date.isoformat(),
        "approved_by": str(request.approved_by) if request.approved_by else None,
    }


def _to_out(request: LeaveRequest) -> LeaveRequestOut:
    out = LeaveRequestOut.model_validate(request)
    out.days = business_days_between(request.start_date, request.end_date)
    return out


# ═════════════════════════════════════════════════════════════════════
# LeaveLedger
# ═════════════════════════════════════════════════════════════════════


class LeaveLedger:
    """Apply / approve / reject / withdraw plus the read side for balances."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        *,
        access_policy: Optional[AccessPolicy] = None,
        clock: Optional[Clock] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._policy = access_policy or DefaultAccessPolicy()
        self._today = clock or date.today
        self._locks = locks or KeyedLock()

    def today(self) -> date:
        return self._today()

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    def _validate_range(self, start_date: date, end_date: date) -> int:
        today = self._today()
        if start_date < today or end_date < today:
            raise PastDateError(today)
        if end_date < start_date:
            raise InvertedRangeError(start_date, end_date)
        days = business_days_between(start_date, end_date)
        if days == 0:
            raise NoWorkingDaysError()
        return days

    @staticmethod
    def _require_approver(approver_role: UserRole) -> None:
        if approver_role not in APPROVER_ROLES:
            raise ForbiddenException("Only managers or HR can review leave requests.")

    def _authorize_review(
        self,
        request: LeaveRequest,
        approver_id: uuid.UUID,
        approver_role: UserRole,
    ) -> None:
        if approver_role == UserRole.manager and request.employee_id == approver_id:
            raise SelfApprovalForbidden()
        decision = self._policy.can_act_on_leave(
            approver_role, approver_id, request.employee_id,
        )
        if decision != PolicyDecision.allow:
            raise ForbiddenException("You are not permitted to review this leave request.")

    @staticmethod
    async def _load_pending(uow: UnitOfWork, request_id: uuid.UUID) -> LeaveRequest:
        request = await uow.requests.get(request_id, for_update=True)
        if request is None:
            raise NotFoundOrNotPending(request_id)
        if request.status != LeaveStatus.pending:
            raise NotFoundOrNotPending(request_id, request.status.value)
        return request

    async def _peek(self, request_id: uuid.UUID) -> Optional[LeaveRequest]:
        async with self._uow_factory(read_only=True) as uow:
            return await uow.requests.get(request_id)

    @staticmethod
    async def _restore_pool(
        uow: UnitOfWork,
        request: LeaveRequest,
        actor_id: uuid.UUID,
    ) -> None:
        """Credit the request's business days back to its allocation.

        ``used`` never drops below zero. When the credit is larger than what
        was recorded as used, the shortfall is logged and audited.
        """
        days = business_days_between(request.start_date, request.end_date)
        allocation = await uow.allocations.get_or_create(
            request.employee_id, request.year, request.leave_type,
        )
        used_before = allocation.used
        allocation = await uow.allocations.adjust(
            request.employee_id, request.year, request.leave_type, -days,
        )

        if used_before < days:
            logger.warning(
                "Allocation %s/%s/%s clamped: restoring %d days but only %d used (request %s)",
                request.employee_id, request.year, request.leave_type,
                days, used_before, request.id,
            )
            await uow.audit.record(
                action="clamp",
                entity_type="leave_allocation",
                entity_id=allocation.id,
                actor_id=actor_id,
                old_values={"used": used_before},
                new_values={"used": allocation.used, "restored": days,
                            "request_id": str(request.id)},
            )

    async def _finish_review(
        self,
        uow: UnitOfWork,
        request: LeaveRequest,
        status: LeaveStatus,
        approver_id: uuid.UUID,
        remarks: Optional[str],
    ) -> LeaveRequest:
        old = _snapshot(request)
        now = datetime.now(timezone.utc)
        request.status = status
        request.approved_by = approver_id
        request.reviewer_remarks = remarks
        request.reviewed_at = now
        request.updated_at = now
        await uow.requests.save(request)
        await uow.audit.record(
            action=status.value,
            entity_type="leave_request",
            entity_id=request.id,
            actor_id=approver_id,
            old_values=old,
            new_values=_snapshot(request),
        )
        return request

    # ─────────────────────────────────────────────────────────────────
    # Apply
    # ─────────────────────────────────────────────────────────────────

    async def apply(
        self,
        employee_id: uuid.UUID,
        *,
        start_date: date,
        end_date: date,
        leave_type: str,
        reason: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Debit the pool and create a pending request, atomically."""
        leave_type = normalize_leave_type(leave_type)
        try:
            days = self._validate_range(start_date, end_date)
        except (PastDateError, InvertedRangeError, NoWorkingDaysError) as exc:
            logger.info("Leave apply rejected for %s: %s", employee_id, exc.errors)
            raise
        year = start_date.year

        async with self._locks.hold(_allocation_key(employee_id, year, leave_type)):
            async with self._uow_factory() as uow:
                allocation = await uow.allocations.get_or_create(
                    employee_id, year, leave_type,
                )
                if allocation.remaining < days:
                    logger.info(
                        "Leave apply rejected for %s: %s remaining=%d requested=%d",
                        employee_id, leave_type, allocation.remaining, days,
                    )
                    raise InsufficientBalanceError(
                        remaining=allocation.remaining,
                        requested=days,
                        leave_type=leave_type,
                    )
                await uow.allocations.adjust(employee_id, year, leave_type, days)

                now = datetime.now(timezone.utc)
                request = await uow.requests.add(
                    LeaveRequest(
                        id=uuid.uuid4(),
                        employee_id=employee_id,
                        leave_type=leave_type,
                        start_date=start_date,
                        end_date=end_date,
                        reason=reason,
                        status=LeaveStatus.pending,
                        created_at=now,
                        updated_at=now,
                    )
                )
                await uow.audit.record(
                    action="apply",
                    entity_type="leave_request",
                    entity_id=request.id,
                    actor_id=employee_id,
                    new_values={**_snapshot(request), "days": days},
                )

        logger.info(
            "Leave %s applied by %s: %s %s..%s (%d days)",
            request.id, employee_id, leave_type, start_date, end_date, days,
        )
        return _to_out(request)

    # ─────────────────────────────────────────────────────────────────
    # Approve / Reject
    # ─────────────────────────────────────────────────────────────────

    async def approve(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        approver_role: Union[UserRole, str],
        *,
        remarks: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Mark a pending request approved; the apply-time debit stands."""
        role = normalize_role(approver_role)
        self._require_approver(role)

        async with self._locks.hold(_request_key(request_id)):
            async with self._uow_factory() as uow:
                request = await self._load_pending(uow, request_id)
                self._authorize_review(request, approver_id, role)
                await self._finish_review(
                    uow, request, LeaveStatus.approved, approver_id, remarks,
                )

        logger.info("Leave %s approved by %s (%s)", request_id, approver_id, role.value)
        return _to_out(request)

    async def reject(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        approver_role: Union[UserRole, str],
        *,
        remarks: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Mark a pending request rejected and credit its days back."""
        role = normalize_role(approver_role)
        self._require_approver(role)

        peeked = await self._peek(request_id)
        if peeked is None:
            raise NotFoundOrNotPending(request_id)

        async with self._locks.hold(_request_key(request_id)):
            async with self._locks.hold(
                _allocation_key(peeked.employee_id, peeked.year, peeked.leave_type)
            ):
                async with self._uow_factory() as uow:
                    request = await self._load_pending(uow, request_id)
                    self._authorize_review(request, approver_id, role)
                    await self._restore_pool(uow, request, approver_id)
                    await self._finish_review(
                        uow, request, LeaveStatus.rejected, approver_id, remarks,
                    )

        logger.info("Leave %s rejected by %s (%s)", request_id, approver_id, role.value)
        return _to_out(request)

    # ─────────────────────────────────────────────────────────────────
    # Withdraw
    # ─────────────────────────────────────────────────────────────────

    async def withdraw(
        self,
        request_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> LeaveRequestOut:
        """Owner withdraws their own pending request; days are credited back."""
        peeked = await self._peek(request_id)
        if peeked is None:
            raise NotFoundException("LeaveRequest", request_id)

        async with self._locks.hold(_request_key(request_id)):
            async with self._locks.hold(
                _allocation_key(peeked.employee_id, peeked.year, peeked.leave_type)
            ):
                async with self._uow_factory() as uow:
                    request = await uow.requests.get(request_id, for_update=True)
                    if request is None:
                        raise NotFoundException("LeaveRequest", request_id)
                    if request.employee_id != employee_id:
                        raise ForbiddenException("You can only withdraw your own leave requests.")
                    if request.status != LeaveStatus.pending:
                        raise OnlyPendingWithdrawable(request.status.value)

                    await self._restore_pool(uow, request, employee_id)

                    old = _snapshot(request)
                    request.status = LeaveStatus.withdrawn
                    request.approved_by = None
                    request.updated_at = datetime.now(timezone.utc)
                    await uow.requests.save(request)
                    await uow.audit.record(
                        action="withdraw",
                        entity_type="leave_request",
                        entity_id=request.id,
                        actor_id=employee_id,
                        old_values=old,
                        new_values=_snapshot(request),
                    )

        logger.info("Leave %s withdrawn by %s", request_id, employee_id)
        return _to_out(request)

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    async def get_balances(
        self,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> list[LeaveBalanceOut]:
        """Pool state per leave type; unseen default types report their full grant."""
        if year is None:
            year = self._today().year

        async with self._uow_factory(read_only=True) as uow:
            existing = {
                a.leave_type: a
                for a in await uow.allocations.list_for_employee(employee_id, year)
            }
            known = uow.allocations.known_types()
            leave_types = known + sorted(t for t in existing if t not in known)

            balances = []
            for leave_type in leave_types:
                allocation = existing.get(leave_type)
                if allocation is not None:
                    total, used = allocation.total, allocation.used
                else:
                    total, used = uow.allocations.default_total(leave_type), 0
                balances.append(
                    LeaveBalanceOut(
                        leave_type=leave_type,
                        year=year,
                        total=total,
                        used=used,
                        remaining=total - used,
                    )
                )
        return balances

    async def get_request(
        self,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        actor_role: Union[UserRole, str],
    ) -> LeaveRequestOut:
        role = normalize_role(actor_role)
        async with self._uow_factory(read_only=True) as uow:
            request = await uow.requests.get(request_id)
        if request is None:
            raise NotFoundException("LeaveRequest", request_id)
        decision = self._policy.can_view_leave(role, actor_id, request.employee_id)
        if decision != PolicyDecision.allow:
            raise ForbiddenException("You are not permitted to view this leave request.")
        return _to_out(request)

    async def list_requests(
        self,
        *,
        employee_id: Optional[uuid.UUID] = None,
        employee_ids: Optional[Collection[uuid.UUID]] = None,
        status: Optional[LeaveStatus] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> PaginatedResponse[LeaveRequestOut]:
        """Newest first, optionally narrowed by employee(s) and/or status."""
        async with self._uow_factory(read_only=True) as uow:
            rows, total = await uow.requests.list(
                employee_id=employee_id,
                employee_ids=employee_ids,
                status=status,
                page=page,
                page_size=page_size,
            )
            data = [_to_out(r) for r in rows]
        return PaginatedResponse[LeaveRequestOut](
            data=data,
            meta=PaginationMeta.build(page, page_size, total),
        )

    async def list_team_requests(
        self,
        actor_id: uuid.UUID,
        actor_role: Union[UserRole, str],
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> PaginatedResponse[LeaveRequestOut]:
        """Requests of the employees the actor may see under the access policy."""
        role = normalize_role(actor_role)
        if employee_id is not None:
            decision = self._policy.can_view_leave(role, actor_id, employee_id)
            if decision != PolicyDecision.allow:
                raise ForbiddenException("You are not permitted to view this employee's leave.")
        # an explicitly permitted employee needs no further narrowing
        owners = None if employee_id is not None else self._policy.visible_owners(role, actor_id)
        return await self.list_requests(
            employee_id=employee_id,
            employee_ids=owners,
            status=status,
            page=page,
            page_size=page_size,
        )
