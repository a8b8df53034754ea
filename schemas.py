from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from allocations import Allocation, AllocationSet
from models import EntryKind, TransactionStatus
from months import Month

MONTH_PATTERN = r"^[0-9]{4}-[0-9]{2}$"


class AllocationIn(BaseModel):
    category_id: int
    amount_cents: int = Field(..., gt=0)


def _allocation_set(
    items: Optional[list[AllocationIn]], *, required: bool = False
) -> AllocationSet:
    return AllocationSet(
        (Allocation(item.category_id, item.amount_cents) for item in items or []),
        required=required,
    )


class ObligationIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    amount_cents: int = Field(..., gt=0)
    kind: EntryKind
    day_of_month: int = Field(..., ge=1, le=31)
    status: TransactionStatus = TransactionStatus.pending
    payment_method_id: Optional[int] = None
    active_from_month: str = Field(..., pattern=MONTH_PATTERN)
    active_to_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    categories: list[AllocationIn] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required")
        return value

    @field_validator("active_from_month", "active_to_month")
    @classmethod
    def _valid_month(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return str(Month.parse(value))

    def allocation_set(self) -> AllocationSet:
        return _allocation_set(self.categories)


class ObligationPatch(BaseModel):
    """Partial update. Only fields the caller sent are considered.

    ``description`` and ``payment_method_id`` may be sent as null to clear
    them; null for any other field means "leave unchanged".
    """

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    kind: Optional[EntryKind] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    status: Optional[TransactionStatus] = None
    payment_method_id: Optional[int] = None
    active_from_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    active_to_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    categories: Optional[list[AllocationIn]] = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("Title is required")
        return value

    @field_validator("active_from_month", "active_to_month")
    @classmethod
    def _valid_month(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return str(Month.parse(value))

    def sent(self, field: str) -> bool:
        return field in self.model_fields_set

    def allocation_set(self) -> Optional[AllocationSet]:
        if not self.sent("categories") or self.categories is None:
            return None
        return _allocation_set(self.categories)


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    amount_cents: int = Field(..., gt=0)
    kind: EntryKind
    status: TransactionStatus = TransactionStatus.paid
    payment_method_id: Optional[int] = None
    occurred_on: date
    due_on: Optional[date] = None
    split: list[AllocationIn] = Field(default_factory=list)

    def allocation_set(self) -> AllocationSet:
        return _allocation_set(self.split, required=True)
