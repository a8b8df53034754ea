from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from errors import AllocationError


@dataclass(frozen=True)
class Allocation:
    category_id: int
    amount_cents: int


class AllocationSet:
    """A total amount split across categories.

    Amounts are integer minor units and must reconcile exactly with the
    parent's total; there is no rounding tolerance. Obligations may carry an
    empty set (uncategorized), ad-hoc transactions pass ``required=True``.
    """

    def __init__(self, allocations: Iterable[Allocation], *, required: bool = False) -> None:
        self.allocations = list(allocations)
        self.required = required

    @classmethod
    def from_pairs(
        cls, pairs: Iterable[tuple[int, int]], *, required: bool = False
    ) -> AllocationSet:
        return cls(
            [Allocation(category_id, amount) for category_id, amount in pairs],
            required=required,
        )

    def __len__(self) -> int:
        return len(self.allocations)

    def __iter__(self):
        return iter(self.allocations)

    def total(self) -> int:
        return sum(item.amount_cents for item in self.allocations)

    def validate(self, total_cents: int) -> None:
        if self.required and not self.allocations:
            raise AllocationError("At least one category allocation is required")

        seen: set[int] = set()
        for item in self.allocations:
            if item.category_id in seen:
                raise AllocationError(
                    f"Category {item.category_id} is allocated more than once"
                )
            seen.add(item.category_id)
            if not isinstance(item.amount_cents, int) or isinstance(
                item.amount_cents, bool
            ):
                raise AllocationError("Allocated amounts must be integer cents")
            if item.amount_cents <= 0:
                raise AllocationError("Allocated amounts must be greater than zero")

        if self.allocations and self.total() != total_cents:
            raise AllocationError(
                f"Category allocations sum to {self.total()} but the total is {total_cents}"
            )

    def signature(self) -> frozenset[tuple[int, int]]:
        """Order-insensitive identity, used to tell whether a split changed."""
        return frozenset((item.category_id, item.amount_cents) for item in self.allocations)
