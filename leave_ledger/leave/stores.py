"""Storage seams for the leave ledger and their SQLAlchemy implementations.

The ledger never touches a session directly. It opens a ``UnitOfWork`` which
exposes an ``AllocationStore``, a ``LeaveRequestStore`` and an ``AuditLog``
bound to one transaction: everything done through them commits together on a
clean exit and is rolled back otherwise.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from types import TracebackType
from typing import Any, Callable, Collection, Mapping, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leave_ledger.common.audit import create_audit_entry
from leave_ledger.common.constants import LeaveStatus
from leave_ledger.common.exceptions import InsufficientBalanceError, LedgerCommitError
from leave_ledger.common.pagination import paginate
from leave_ledger.leave.models import LeaveAllocation, LeaveRequest

logger = logging.getLogger(__name__)

AllocationKey = tuple[uuid.UUID, int, str]


# ═════════════════════════════════════════════════════════════════════
# Default allocation table
# ═════════════════════════════════════════════════════════════════════


class DefaultAllocations:
    """Days granted per leave type when an allocation is first created."""

    def __init__(self, table: Mapping[str, int]) -> None:
        self._table = {k.strip().lower(): int(v) for k, v in table.items()}

    def for_type(self, leave_type: str) -> int:
        return self._table.get(leave_type, 0)

    @property
    def known_types(self) -> list[str]:
        return list(self._table)


def apply_delta(allocation: LeaveAllocation, delta: int) -> None:
    """Move ``allocation.used`` by *delta* under the pool rules.

    A debit that would exceed ``total`` raises; a credit that would drive
    ``used`` below zero is clamped to zero.
    """
    new_used = allocation.used + delta
    if delta > 0 and new_used > allocation.total:
        raise InsufficientBalanceError(
            remaining=allocation.remaining,
            requested=delta,
            leave_type=allocation.leave_type,
        )
    allocation.used = max(0, new_used)
    allocation.updated_at = datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# Protocols
# ═════════════════════════════════════════════════════════════════════


class AllocationStore(Protocol):
    def default_total(self, leave_type: str) -> int: ...

    def known_types(self) -> list[str]: ...

    async def get(
        self, employee_id: uuid.UUID, year: int, leave_type: str,
    ) -> Optional[LeaveAllocation]: ...

    async def get_or_create(
        self, employee_id: uuid.UUID, year: int, leave_type: str,
    ) -> LeaveAllocation: ...

    async def adjust(
        self, employee_id: uuid.UUID, year: int, leave_type: str, delta: int,
    ) -> LeaveAllocation: ...

    async def list_for_employee(
        self, employee_id: uuid.UUID, year: int,
    ) -> list[LeaveAllocation]: ...


class LeaveRequestStore(Protocol):
    async def add(self, request: LeaveRequest) -> LeaveRequest: ...

    async def get(
        self, request_id: uuid.UUID, *, for_update: bool = False,
    ) -> Optional[LeaveRequest]: ...

    async def save(self, request: LeaveRequest) -> LeaveRequest: ...

    async def list(
        self,
        *,
        employee_id: Optional[uuid.UUID] = None,
        employee_ids: Optional[Collection[uuid.UUID]] = None,
        status: Optional[LeaveStatus] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[Sequence[LeaveRequest], int]: ...


class AuditLog(Protocol):
    async def record(
        self,
        *,
        action: str,
        entity_type: str,
        entity_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
    ) -> None: ...


class UnitOfWork(Protocol):
    allocations: AllocationStore
    requests: LeaveRequestStore
    audit: AuditLog

    async def __aenter__(self) -> "UnitOfWork": ...

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> Optional[bool]: ...


# Called with ``read_only=True`` for units that must never commit
UnitOfWorkFactory = Callable[..., UnitOfWork]


# ═════════════════════════════════════════════════════════════════════
# SQLAlchemy implementations
# ═════════════════════════════════════════════════════════════════════

_INSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class SqlAllocationStore:
    """Allocation rows read with ``FOR UPDATE`` so the balance check and the
    write happen against the same committed ``used``."""

    def __init__(self, session: AsyncSession, defaults: DefaultAllocations) -> None:
        self._session = session
        self._defaults = defaults

    def default_total(self, leave_type: str) -> int:
        return self._defaults.for_type(leave_type)

    def known_types(self) -> list[str]:
        return self._defaults.known_types

    async def _select(
        self,
        employee_id: uuid.UUID,
        year: int,
        leave_type: str,
        *,
        for_update: bool,
    ) -> Optional[LeaveAllocation]:
        query = (
            select(LeaveAllocation)
            .where(
                LeaveAllocation.employee_id == employee_id,
                LeaveAllocation.year == year,
                LeaveAllocation.leave_type == leave_type,
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalars().first()

    async def _insert_if_absent(
        self, employee_id: uuid.UUID, year: int, leave_type: str,
    ) -> None:
        values = dict(
            id=uuid.uuid4(),
            employee_id=employee_id,
            year=year,
            leave_type=leave_type,
            total=self.default_total(leave_type),
            used=0,
            updated_at=datetime.now(timezone.utc),
        )
        insert = _INSERT_BY_DIALECT.get(self._session.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(LeaveAllocation).values(**values).on_conflict_do_nothing(
                index_elements=["employee_id", "year", "leave_type"],
            )
            await self._session.execute(stmt)
            return

        # Other backends: race on the unique constraint inside a savepoint
        try:
            async with self._session.begin_nested():
                self._session.add(LeaveAllocation(**values))
        except IntegrityError:
            logger.debug("Allocation %s/%s/%s created concurrently", employee_id, year, leave_type)

    async def get(
        self, employee_id: uuid.UUID, year: int, leave_type: str,
    ) -> Optional[LeaveAllocation]:
        return await self._select(employee_id, year, leave_type, for_update=False)

    async def get_or_create(
        self, employee_id: uuid.UUID, year: int, leave_type: str,
    ) -> LeaveAllocation:
        allocation = await self._select(employee_id, year, leave_type, for_update=True)
        if allocation is not None:
            return allocation

        await self._insert_if_absent(employee_id, year, leave_type)
        allocation = await self._select(employee_id, year, leave_type, for_update=True)
        if allocation is None:
            raise LedgerCommitError()
        return allocation

    async def adjust(
        self, employee_id: uuid.UUID, year: int, leave_type: str, delta: int,
    ) -> LeaveAllocation:
        allocation = await self.get_or_create(employee_id, year, leave_type)
        apply_delta(allocation, delta)
        await self._session.flush()
        return allocation

    async def list_for_employee(
        self, employee_id: uuid.UUID, year: int,
    ) -> list[LeaveAllocation]:
        result = await self._session.execute(
            select(LeaveAllocation)
            .where(
                LeaveAllocation.employee_id == employee_id,
                LeaveAllocation.year == year,
            )
            .order_by(LeaveAllocation.leave_type)
        )
        return list(result.scalars().all())


class SqlLeaveRequestStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, request: LeaveRequest) -> LeaveRequest:
        self._session.add(request)
        await self._session.flush()
        return request

    async def get(
        self, request_id: uuid.UUID, *, for_update: bool = False,
    ) -> Optional[LeaveRequest]:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalars().first()

    async def save(self, request: LeaveRequest) -> LeaveRequest:
        await self._session.flush()
        return request

    async def list(
        self,
        *,
        employee_id: Optional[uuid.UUID] = None,
        employee_ids: Optional[Collection[uuid.UUID]] = None,
        status: Optional[LeaveStatus] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[Sequence[LeaveRequest], int]:
        query = select(LeaveRequest).order_by(
            LeaveRequest.created_at.desc(), LeaveRequest.id,
        )
        if employee_id:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if employee_ids is not None:
            query = query.where(LeaveRequest.employee_id.in_(list(employee_ids)))
        if status:
            query = query.where(LeaveRequest.status == status)
        return await paginate(self._session, query, page=page, page_size=page_size)


class SqlAuditLog:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, **kwargs: Any) -> None:
        await create_audit_entry(self._session, **kwargs)


class SqlUnitOfWork:
    """One ``AsyncSession`` per unit; commit on success, rollback otherwise.

    A ``read_only`` unit never commits, so a lookup can never write.
    Any database error, whether raised mid-unit or by the final commit, is
    reported as ``LedgerCommitError`` after the rollback.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        defaults: DefaultAllocations,
        *,
        read_only: bool = False,
    ) -> None:
        self._session_factory = session_factory
        self._defaults = defaults
        self.read_only = read_only
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SqlUnitOfWork":
        self._session = self._session_factory()
        self.allocations = SqlAllocationStore(self._session, self._defaults)
        self.requests = SqlLeaveRequestStore(self._session)
        self.audit = SqlAuditLog(self._session)
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> Optional[bool]:
        session, self._session = self._session, None
        if session is None:
            raise RuntimeError("Unit of work exited without being entered.")
        try:
            if exc_type is not None:
                await session.rollback()
                if isinstance(exc, SQLAlchemyError):
                    logger.error("Ledger unit of work failed, rolled back: %s", exc)
                    raise LedgerCommitError() from exc
            elif not self.read_only:
                try:
                    await session.commit()
                except SQLAlchemyError as err:
                    await session.rollback()
                    logger.error("Ledger commit failed, rolled back: %s", err)
                    raise LedgerCommitError() from err
            # read-only: close() ends the transaction and keeps loaded rows readable
        finally:
            await session.close()
        return None


def sql_unit_of_work_factory(
    session_factory: async_sessionmaker[AsyncSession],
    defaults: DefaultAllocations,
) -> UnitOfWorkFactory:
    """Bind a session factory and default table into a ``UnitOfWork`` factory."""

    def _factory(*, read_only: bool = False) -> SqlUnitOfWork:
        return SqlUnitOfWork(session_factory, defaults, read_only=read_only)

    return _factory
