"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Request  → request bodies (write)
  - *Out      → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leave_ledger.common.constants import LeaveStatus


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Pool state for one leave type in one year."""

    model_config = ConfigDict(from_attributes=True)

    leave_type: str = Field(..., serialization_alias="type")
    year: int
    total: int
    used: int
    remaining: int


# ═════════════════════════════════════════════════════════════════════
# Leave Request: Apply
# ═════════════════════════════════════════════════════════════════════


class LeaveApplyRequest(BaseModel):
    """Payload for applying a leave request.

    Date ordering and the past-date rule are enforced by the ledger so the
    error shape is the same whichever entry point is used.
    """

    model_config = ConfigDict(populate_by_name=True)

    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    leave_type: str = Field(
        ..., alias="type", min_length=1, max_length=50,
        description="Leave type, e.g. sick, casual, vacation",
    )
    reason: Optional[str] = Field(None, max_length=1000)

    @field_validator("leave_type")
    @classmethod
    def _normalize_type(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("type must not be blank")
        return v


# ═════════════════════════════════════════════════════════════════════
# Leave Request: Review
# ═════════════════════════════════════════════════════════════════════


class LeaveReviewRequest(BaseModel):
    """Optional body for approve / reject."""

    remarks: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Leave Request: Output
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: str
    start_date: date
    end_date: date
    reason: Optional[str] = None
    status: LeaveStatus
    approved_by: Optional[uuid.UUID] = None
    reviewer_remarks: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    # Filled by the ledger, not stored
    days: int = 0
