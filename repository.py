from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from allocations import Allocation, AllocationSet
from errors import NotFoundError
from models import (
    ObligationAllocation,
    RecurringObligation,
    Transaction,
    TransactionAllocation,
    TransactionStatus,
)
from months import Month

OBLIGATION_FIELDS = (
    "title",
    "description",
    "amount_cents",
    "kind",
    "day_of_month",
    "status",
    "payment_method_id",
    "active_from_month",
    "active_to_month",
)


class ObligationRepository:
    """Persistence boundary for obligations and the transactions generated from them.

    Methods flush but never commit; the calling service owns the unit of work.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_obligations(self, user_id: int) -> list[RecurringObligation]:
        stmt = (
            select(RecurringObligation)
            .options(selectinload(RecurringObligation.allocations))
            .where(RecurringObligation.user_id == user_id)
            .order_by(RecurringObligation.active_from_month, RecurringObligation.id)
        )
        return list(self.session.scalars(stmt).all())

    def list_lineage(self, user_id: int, lineage_id: int) -> list[RecurringObligation]:
        stmt = (
            select(RecurringObligation)
            .options(selectinload(RecurringObligation.allocations))
            .where(
                RecurringObligation.user_id == user_id,
                RecurringObligation.lineage_id == lineage_id,
            )
            .order_by(RecurringObligation.active_from_month, RecurringObligation.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_obligation(
        self, obligation_id: int, user_id: int
    ) -> Optional[RecurringObligation]:
        obligation = self.session.get(RecurringObligation, obligation_id)
        if not obligation or obligation.user_id != user_id:
            return None
        return obligation

    def get_obligation(self, obligation_id: int, user_id: int) -> RecurringObligation:
        obligation = self.find_obligation(obligation_id, user_id)
        if obligation is None:
            raise NotFoundError(f"Recurring obligation {obligation_id} not found")
        return obligation

    def create_obligation(self, user_id: int, **fields) -> RecurringObligation:
        unknown = set(fields) - set(OBLIGATION_FIELDS) - {"lineage_id", "supersedes_id"}
        if unknown:
            raise TypeError(f"Unknown obligation fields: {sorted(unknown)}")
        obligation = RecurringObligation(user_id=user_id, **fields)
        self.session.add(obligation)
        self.session.flush()
        if obligation.lineage_id is None:
            obligation.lineage_id = obligation.id
            self.session.flush()
        return obligation

    def update_obligation(
        self, obligation_id: int, user_id: int, fields: dict[str, object]
    ) -> RecurringObligation:
        obligation = self.get_obligation(obligation_id, user_id)
        for name, value in fields.items():
            if name not in OBLIGATION_FIELDS:
                raise TypeError(f"Unknown obligation field: {name}")
            setattr(obligation, name, value)
        self.session.flush()
        return obligation

    def delete_obligation(self, obligation_id: int, user_id: int) -> None:
        obligation = self.get_obligation(obligation_id, user_id)
        self.session.execute(
            update(RecurringObligation)
            .where(RecurringObligation.supersedes_id == obligation.id)
            .values(supersedes_id=None)
            .execution_options(synchronize_session="fetch")
        )
        # Allocations cascade; generated transactions keep existing with no source.
        self.session.delete(obligation)
        self.session.flush()

    def get_allocations(self, obligation_id: int) -> AllocationSet:
        stmt = (
            select(ObligationAllocation)
            .where(ObligationAllocation.obligation_id == obligation_id)
            .order_by(ObligationAllocation.category_id)
        )
        rows = self.session.scalars(stmt).all()
        return AllocationSet(Allocation(row.category_id, row.amount_cents) for row in rows)

    def set_allocations(
        self, obligation: RecurringObligation, allocations: Iterable[Allocation]
    ) -> None:
        obligation.allocations.clear()
        self.session.flush()
        obligation.allocations.extend(
            ObligationAllocation(category_id=item.category_id, amount_cents=item.amount_cents)
            for item in allocations
        )
        self.session.flush()

    def find_generated_transaction(
        self, user_id: int, obligation_id: int, month: Month
    ) -> Optional[int]:
        stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == user_id,
                Transaction.source_obligation_id == obligation_id,
                Transaction.occurred_month == month,
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def insert_generated_transaction(
        self,
        obligation: RecurringObligation,
        month: Month,
        allocations: Iterable[Allocation],
    ) -> Transaction:
        occurred_on = month.day(obligation.day_of_month)
        pending = obligation.status == TransactionStatus.pending
        txn = Transaction(
            user_id=obligation.user_id,
            kind=obligation.kind,
            title=obligation.title,
            description=obligation.description,
            amount_cents=obligation.amount_cents,
            payment_method_id=obligation.payment_method_id,
            is_fixed=True,
            status=obligation.status,
            occurred_on=occurred_on,
            due_on=occurred_on if pending else None,
            paid_on=None if pending else occurred_on,
            occurred_month=month,
            source_obligation_id=obligation.id,
        )
        txn.allocations = [
            TransactionAllocation(category_id=item.category_id, amount_cents=item.amount_cents)
            for item in allocations
        ]
        self.session.add(txn)
        self.session.flush()
        return txn

    def transactions_for_obligations(
        self, user_id: int, obligation_ids: Iterable[int]
    ) -> list[Transaction]:
        ids = list(obligation_ids)
        if not ids:
            return []
        stmt = (
            select(Transaction)
            .options(selectinload(Transaction.allocations))
            .where(
                Transaction.user_id == user_id,
                Transaction.source_obligation_id.in_(ids),
            )
            .order_by(Transaction.occurred_month.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())
