from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from allocations import AllocationSet
from config import get_settings
from errors import DataIntegrityError, NotFoundError, ValidationError
from models import (
    Category,
    EntryKind,
    PaymentMethod,
    RecurringObligation,
    Transaction,
    TransactionAllocation,
    TransactionStatus,
)
from months import Month
from recurrence import GenerationEngine, GenerationReport, local_month
from repository import ObligationRepository
from schemas import ObligationIn, ObligationPatch, TransactionIn

logger = logging.getLogger(__name__)

# Fields whose change on an Open obligation produces a new version.
VERSIONED_FIELDS = (
    "title",
    "description",
    "amount_cents",
    "kind",
    "day_of_month",
    "status",
    "payment_method_id",
)
NULLABLE_FIELDS = {"description", "payment_method_id"}


def get_current_user_id() -> int:
    return 1


def _check_window(start: Month, end: Optional[Month]) -> None:
    if end is not None and end < start:
        raise ValidationError(
            f"End month {end} cannot be before start month {start}"
        )


def _ensure_references(
    session: Session,
    user_id: int,
    category_ids: Iterable[int],
    payment_method_id: Optional[int],
) -> None:
    wanted = set(category_ids)
    if wanted:
        found = set(
            session.scalars(
                select(Category.id).where(
                    Category.user_id == user_id, Category.id.in_(wanted)
                )
            ).all()
        )
        missing = sorted(wanted - found)
        if missing:
            raise ValidationError(f"Category {missing[0]} not found")
    if payment_method_id is not None:
        method = session.get(PaymentMethod, payment_method_id)
        if not method or method.user_id != user_id:
            raise ValidationError(f"Payment method {payment_method_id} not found")


class ObligationVersioningService:
    """Creates obligations and applies copy-on-write edits.

    Editing an Open obligation closes it at the previous month and appends a
    new version starting this month, so transactions already generated keep
    pointing at the version that produced them. Closed obligations, and edits
    that only move the activation window, are applied in place.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.repo = ObligationRepository(session)

    def create(self, data: ObligationIn) -> RecurringObligation:
        allocations = data.allocation_set()
        allocations.validate(data.amount_cents)
        start = Month.parse(data.active_from_month)
        end = Month.parse(data.active_to_month) if data.active_to_month else None
        _check_window(start, end)
        _ensure_references(
            self.session,
            self.user_id,
            (item.category_id for item in allocations),
            data.payment_method_id,
        )

        obligation = self.repo.create_obligation(
            self.user_id,
            title=data.title,
            description=data.description,
            amount_cents=data.amount_cents,
            kind=data.kind,
            day_of_month=data.day_of_month,
            status=data.status,
            payment_method_id=data.payment_method_id,
            active_from_month=start,
            active_to_month=end,
        )
        self.repo.set_allocations(obligation, allocations)
        self.session.commit()
        logger.info(
            f"obligation_created: id={obligation.id} user_id={self.user_id} "
            f"from={start} to={end}"
        )
        return obligation

    def update(
        self,
        obligation_id: int,
        patch: ObligationPatch,
        *,
        current_month: Optional[Month] = None,
    ) -> RecurringObligation:
        existing = self.repo.get_obligation(obligation_id, self.user_id)
        patched = self._patched_values(patch)
        amount = patched.get("amount_cents", existing.amount_cents)

        allocations = patch.allocation_set()
        (allocations if allocations is not None else existing.allocation_set()).validate(
            amount
        )
        _ensure_references(
            self.session,
            self.user_id,
            (item.category_id for item in allocations or []),
            patched.get("payment_method_id"),
        )

        if existing.is_open and self.changed_fields(existing, patch):
            return self._new_version(
                existing, patch, allocations, current_month or local_month()
            )
        return self._update_in_place(existing, patch, allocations)

    def changed_fields(
        self, existing: RecurringObligation, patch: ObligationPatch
    ) -> set[str]:
        changed = {
            name
            for name, value in self._patched_values(patch).items()
            if value != getattr(existing, name)
        }
        allocations = patch.allocation_set()
        if (
            allocations is not None
            and allocations.signature() != existing.allocation_set().signature()
        ):
            changed.add("categories")
        return changed

    @staticmethod
    def _patched_values(patch: ObligationPatch) -> dict[str, object]:
        values: dict[str, object] = {}
        for name in VERSIONED_FIELDS:
            if not patch.sent(name):
                continue
            value = getattr(patch, name)
            if value is None and name not in NULLABLE_FIELDS:
                continue
            values[name] = value
        return values

    def _new_version(
        self,
        existing: RecurringObligation,
        patch: ObligationPatch,
        allocations: Optional[AllocationSet],
        current_month: Month,
    ) -> RecurringObligation:
        close_month = max(current_month.previous(), existing.active_from_month)
        new_start = current_month
        requested_end = (
            Month.parse(patch.active_to_month) if patch.active_to_month else None
        )
        if requested_end is not None and requested_end < new_start:
            raise ValidationError(
                f"End month {requested_end} cannot be before the new version's "
                f"start month {new_start}"
            )

        carried = allocations if allocations is not None else existing.allocation_set()
        fields = {name: getattr(existing, name) for name in VERSIONED_FIELDS}
        fields.update(self._patched_values(patch))

        self.repo.update_obligation(
            existing.id, self.user_id, {"active_to_month": close_month}
        )
        successor = self.repo.create_obligation(
            self.user_id,
            lineage_id=existing.lineage_id or existing.id,
            supersedes_id=existing.id,
            active_from_month=new_start,
            active_to_month=requested_end,
            **fields,
        )
        self.repo.set_allocations(successor, carried)
        self.session.commit()
        logger.info(
            f"obligation_versioned: old_id={existing.id} closed_at={close_month} "
            f"new_id={successor.id} from={new_start}"
        )
        return successor

    def _update_in_place(
        self,
        existing: RecurringObligation,
        patch: ObligationPatch,
        allocations: Optional[AllocationSet],
    ) -> RecurringObligation:
        fields = self._patched_values(patch)
        if patch.active_from_month:
            fields["active_from_month"] = Month.parse(patch.active_from_month)
        if patch.active_to_month:
            fields["active_to_month"] = Month.parse(patch.active_to_month)
        _check_window(
            fields.get("active_from_month", existing.active_from_month),
            fields.get("active_to_month", existing.active_to_month),
        )

        obligation = self.repo.update_obligation(existing.id, self.user_id, fields)
        if allocations is not None:
            self.repo.set_allocations(obligation, allocations)
        self.session.commit()
        logger.info(
            f"obligation_updated: id={obligation.id} fields={sorted(fields)} "
            f"categories={allocations is not None}"
        )
        return obligation


class ClosureResult(str, Enum):
    closed = "closed"
    deleted = "deleted"


class ObligationClosureService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.repo = ObligationRepository(session)

    def close(
        self, obligation_id: int, *, current_month: Optional[Month] = None
    ) -> ClosureResult:
        """Retire an Open obligation at the previous month; delete a Closed one."""
        obligation = self.repo.get_obligation(obligation_id, self.user_id)
        if obligation.is_open:
            month = current_month or local_month()
            close_month = max(month.previous(), obligation.active_from_month)
            self.repo.update_obligation(
                obligation.id, self.user_id, {"active_to_month": close_month}
            )
            self.session.commit()
            logger.info(f"obligation_closed: id={obligation_id} to={close_month}")
            return ClosureResult.closed

        self.repo.delete_obligation(obligation.id, self.user_id)
        self.session.commit()
        logger.info(f"obligation_deleted: id={obligation_id}")
        return ClosureResult.deleted


class MonthlyGenerationService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def generate(
        self,
        month: Union[Month, str, None] = None,
        *,
        strict: Optional[bool] = None,
    ) -> GenerationReport:
        if isinstance(month, str):
            month = Month.parse(month)
        month = month or local_month()
        if strict is None:
            strict = get_settings().generation_strict

        try:
            report = GenerationEngine(self.session).generate(
                self.user_id, month, strict=strict
            )
        except DataIntegrityError:
            self.session.rollback()
            raise
        self.session.commit()
        return report


class ObligationService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.repo = ObligationRepository(session)

    def get(self, obligation_id: int) -> RecurringObligation:
        return self.repo.get_obligation(obligation_id, self.user_id)

    def list(self) -> list[RecurringObligation]:
        return self.repo.list_obligations(self.user_id)

    def active_in(self, month: Month) -> list[RecurringObligation]:
        return [item for item in self.list() if item.is_active_in(month)]

    def versions(self, obligation_id: int) -> list[RecurringObligation]:
        obligation = self.get(obligation_id)
        return self.repo.list_lineage(
            self.user_id, obligation.lineage_id or obligation.id
        )

    def occurrences(self, obligation_id: int) -> list[Transaction]:
        ids = [item.id for item in self.versions(obligation_id)]
        return self.repo.transactions_for_obligations(self.user_id, ids)

    def monthly_summary(self, month: Optional[Month] = None) -> dict[str, object]:
        month = month or local_month()
        active = self.active_in(month)
        income = [item for item in active if item.kind == EntryKind.income]
        expenses = [item for item in active if item.kind == EntryKind.expense]
        total_income = sum(item.amount_cents for item in income)
        total_expenses = sum(item.amount_cents for item in expenses)
        return {
            "month": str(month),
            "total_income": total_income,
            "total_expenses": total_expenses,
            "net": total_income - total_expenses,
            "counts": {
                "income": len(income),
                "expense": len(expenses),
                "total": len(active),
            },
        }


class TransactionService:
    """Ad-hoc transactions; every one must be split across at least one category."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(selectinload(Transaction.allocations))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        allocations = self._validated(data)
        txn = Transaction(user_id=self.user_id)
        self._apply(txn, data)
        txn.allocations = [
            TransactionAllocation(category_id=item.category_id, amount_cents=item.amount_cents)
            for item in allocations
        ]
        self.session.add(txn)
        self.session.commit()
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        allocations = self._validated(data)
        self._ensure_month_free(txn, Month.from_date(data.occurred_on))
        self._apply(txn, data)
        txn.allocations.clear()
        self.session.flush()
        txn.allocations.extend(
            TransactionAllocation(category_id=item.category_id, amount_cents=item.amount_cents)
            for item in allocations
        )
        self.session.commit()
        return txn

    def _ensure_month_free(self, txn: Transaction, month: Month) -> None:
        # A generated transaction may only move to a month its obligation has not filled.
        if txn.source_obligation_id is None or month == txn.occurred_month:
            return
        taken = ObligationRepository(self.session).find_generated_transaction(
            self.user_id, txn.source_obligation_id, month
        )
        if taken is not None:
            raise ValidationError(
                f"Obligation {txn.source_obligation_id} already has transaction {taken} "
                f"in {month}"
            )

    def _validated(self, data: TransactionIn) -> AllocationSet:
        allocations = data.allocation_set()
        allocations.validate(data.amount_cents)
        _ensure_references(
            self.session,
            self.user_id,
            (item.category_id for item in allocations),
            data.payment_method_id,
        )
        return allocations

    @staticmethod
    def _apply(txn: Transaction, data: TransactionIn) -> None:
        pending = data.status == TransactionStatus.pending
        txn.kind = data.kind
        txn.title = data.title
        txn.description = data.description
        txn.amount_cents = data.amount_cents
        txn.payment_method_id = data.payment_method_id
        txn.status = data.status
        txn.occurred_on = data.occurred_on
        txn.occurred_month = Month.from_date(data.occurred_on)
        txn.due_on = (data.due_on or data.occurred_on) if pending else None
        txn.paid_on = None if pending else data.occurred_on
