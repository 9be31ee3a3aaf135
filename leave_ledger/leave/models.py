"""Leave ORM models: LeaveAllocation, LeaveRequest."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from leave_ledger.common.constants import LeaveStatus
from leave_ledger.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveAllocation(Base):
    __tablename__ = "leave_allocations"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "year", "leave_type", name="uq_leave_allocation"
        ),
        sa.CheckConstraint("used >= 0", name="ck_leave_allocation_used_non_negative"),
        sa.CheckConstraint("total >= 0", name="ck_leave_allocation_total_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    leave_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    total: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    used: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    @property
    def remaining(self) -> int:
        return self.total - self.used

    def __repr__(self) -> str:
        return (
            f"<LeaveAllocation {self.employee_id}/{self.year}/{self.leave_type} "
            f"used={self.used} total={self.total}>"
        )


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("start_date <= end_date", name="ck_leave_request_range"),
        sa.Index("ix_leave_requests_employee_status", "employee_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    leave_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status", native_enum=False, length=20),
        nullable=False,
        default=LeaveStatus.pending,
    )
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    reviewer_remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    @property
    def year(self) -> int:
        """Allocation year this request is charged against."""
        return self.start_date.year

    def __repr__(self) -> str:
        return f"<LeaveRequest {self.id} {self.leave_type} {self.status.value}>"
