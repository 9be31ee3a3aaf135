"""In-process ledger storage.

Used to exercise the ledger's state machine and concurrency rules without a
database. Each unit of work reads clones of committed records, stages its
changes and writes back the changed ones only when it exits cleanly.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from types import TracebackType
from typing import Any, Collection, Hashable, Mapping, Optional, Sequence, TypeVar

import sqlalchemy as sa

from leave_ledger.common.audit import AuditTrail
from leave_ledger.common.constants import LeaveStatus
from leave_ledger.common.exceptions import LedgerCommitError
from leave_ledger.leave.models import LeaveAllocation, LeaveRequest
from leave_ledger.leave.stores import (
    AllocationKey,
    DefaultAllocations,
    UnitOfWorkFactory,
    apply_delta,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", LeaveAllocation, LeaveRequest)


def _clone(obj: ModelT) -> ModelT:
    columns = sa.inspect(type(obj)).column_attrs
    return type(obj)(**{attr.key: getattr(obj, attr.key) for attr in columns})


class InMemoryLedgerStorage:
    """Committed state shared by every unit of work it hands out."""

    def __init__(self, defaults: DefaultAllocations) -> None:
        self.defaults = defaults
        self.allocations: dict[AllocationKey, LeaveAllocation] = {}
        self.requests: dict[uuid.UUID, LeaveRequest] = {}
        self.audit_entries: list[AuditTrail] = []
        self.commits = 0

    def unit_of_work(self, *, read_only: bool = False) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self, read_only=read_only)

    @property
    def factory(self) -> UnitOfWorkFactory:
        return self.unit_of_work

    def allocation(
        self, employee_id: uuid.UUID, year: int, leave_type: str,
    ) -> Optional[LeaveAllocation]:
        return self.allocations.get((employee_id, year, leave_type))

    def seed_allocation(
        self,
        employee_id: uuid.UUID,
        year: int,
        leave_type: str,
        *,
        total: int,
        used: int = 0,
    ) -> LeaveAllocation:
        allocation = LeaveAllocation(
            id=uuid.uuid4(),
            employee_id=employee_id,
            year=year,
            leave_type=leave_type,
            total=total,
            used=used,
            updated_at=datetime.now(timezone.utc),
        )
        self.allocations[(employee_id, year, leave_type)] = allocation
        return allocation


class InMemoryAllocationStore:
    def __init__(self, storage: InMemoryLedgerStorage) -> None:
        self._storage = storage
        self.staged: dict[AllocationKey, LeaveAllocation] = {}
        self.dirty: set[AllocationKey] = set()
        # committed record each staged clone was taken from (None when new)
        self.read_from: dict[AllocationKey, Optional[LeaveAllocation]] = {}

    def default_total(self, leave_type: str) -> int:
        return self._storage.defaults.for_type(leave_type)

    def known_types(self) -> list[str]:
        return self._storage.defaults.known_types

    async def get(
        self, employee_id: uuid.UUID, year: int, leave_type: str,
    ) -> Optional[LeaveAllocation]:
        key = (employee_id, year, leave_type)
        if key in self.staged:
            return self.staged[key]
        committed = self._storage.allocations.get(key)
        if committed is None:
            return None
        self.read_from[key] = committed
        self.staged[key] = _clone(committed)
        return self.staged[key]

    async def get_or_create(
        self, employee_id: uuid.UUID, year: int, leave_type: str,
    ) -> LeaveAllocation:
        allocation = await self.get(employee_id, year, leave_type)
        if allocation is None:
            key = (employee_id, year, leave_type)
            allocation = LeaveAllocation(
                id=uuid.uuid4(),
                employee_id=employee_id,
                year=year,
                leave_type=leave_type,
                total=self.default_total(leave_type),
                used=0,
                updated_at=datetime.now(timezone.utc),
            )
            self.read_from[key] = None
            self.staged[key] = allocation
            self.dirty.add(key)
        return allocation

    async def adjust(
        self, employee_id: uuid.UUID, year: int, leave_type: str, delta: int,
    ) -> LeaveAllocation:
        allocation = await self.get_or_create(employee_id, year, leave_type)
        apply_delta(allocation, delta)
        self.dirty.add((employee_id, year, leave_type))
        return allocation

    async def list_for_employee(
        self, employee_id: uuid.UUID, year: int,
    ) -> list[LeaveAllocation]:
        keys = {
            key for key in list(self._storage.allocations) + list(self.staged)
            if key[0] == employee_id and key[1] == year
        }
        found = [await self.get(*key) for key in keys]
        return sorted(
            (a for a in found if a is not None), key=lambda a: a.leave_type,
        )


class InMemoryLeaveRequestStore:
    def __init__(self, storage: InMemoryLedgerStorage) -> None:
        self._storage = storage
        self.staged: dict[uuid.UUID, LeaveRequest] = {}
        self.dirty: set[uuid.UUID] = set()
        self.read_from: dict[uuid.UUID, Optional[LeaveRequest]] = {}

    async def add(self, request: LeaveRequest) -> LeaveRequest:
        now = datetime.now(timezone.utc)
        if request.id is None:
            request.id = uuid.uuid4()
        if request.created_at is None:
            request.created_at = now
        if request.updated_at is None:
            request.updated_at = now
        if request.status is None:
            request.status = LeaveStatus.pending
        self.read_from[request.id] = None
        self.staged[request.id] = request
        self.dirty.add(request.id)
        return request

    async def get(
        self, request_id: uuid.UUID, *, for_update: bool = False,
    ) -> Optional[LeaveRequest]:
        if request_id in self.staged:
            return self.staged[request_id]
        committed = self._storage.requests.get(request_id)
        if committed is None:
            return None
        self.read_from[request_id] = committed
        self.staged[request_id] = _clone(committed)
        return self.staged[request_id]

    async def save(self, request: LeaveRequest) -> LeaveRequest:
        self.read_from.setdefault(request.id, self._storage.requests.get(request.id))
        self.staged[request.id] = request
        self.dirty.add(request.id)
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
        merged = {**self._storage.requests, **self.staged}
        rows = [
            r for r in merged.values()
            if (employee_id is None or r.employee_id == employee_id)
            and (employee_ids is None or r.employee_id in employee_ids)
            and (status is None or r.status == status)
        ]
        rows.sort(key=lambda r: str(r.id))
        rows.sort(key=lambda r: r.created_at, reverse=True)
        offset = (page - 1) * page_size
        return rows[offset:offset + page_size], len(rows)


class InMemoryAuditLog:
    def __init__(self) -> None:
        self.staged: list[AuditTrail] = []

    async def record(
        self,
        *,
        action: str,
        entity_type: str,
        entity_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
    ) -> None:
        self.staged.append(
            AuditTrail(
                id=uuid.uuid4(),
                actor_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                old_values=old_values,
                new_values=new_values,
                created_at=datetime.now(timezone.utc),
            )
        )


def _stale_keys(
    committed: Mapping[Hashable, Any],
    dirty: set[Hashable],
    read_from: Mapping[Hashable, Any],
) -> list[Hashable]:
    return [key for key in dirty if committed.get(key) is not read_from.get(key)]


class InMemoryUnitOfWork:
    """Writes back only what was added, saved or adjusted.

    A changed record whose committed version moved on since it was read fails
    the whole unit with ``LedgerCommitError``. A ``read_only`` unit discards
    everything on exit.
    """

    def __init__(self, storage: InMemoryLedgerStorage, *, read_only: bool = False) -> None:
        self._storage = storage
        self.read_only = read_only

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        self.allocations = InMemoryAllocationStore(self._storage)
        self.requests = InMemoryLeaveRequestStore(self._storage)
        self.audit = InMemoryAuditLog()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> Optional[bool]:
        if exc_type is not None or self.read_only:
            return None

        stale = _stale_keys(
            self._storage.allocations, self.allocations.dirty, self.allocations.read_from,
        ) + _stale_keys(
            self._storage.requests, self.requests.dirty, self.requests.read_from,
        )
        if stale:
            logger.error("Ledger commit failed, stale records: %s", stale)
            raise LedgerCommitError()

        for key in self.allocations.dirty:
            self._storage.allocations[key] = self.allocations.staged[key]
        for request_id in self.requests.dirty:
            self._storage.requests[request_id] = self.requests.staged[request_id]
        self._storage.audit_entries.extend(self.audit.staged)
        self._storage.commits += 1
        return None
