from datetime import date

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import repository
from database import Base, build_engine
from errors import DataIntegrityError, MonthFormatError
from models import (
    Category,
    EntryKind,
    RecurringObligation,
    Transaction,
    TransactionStatus,
)
from months import Month
from recurrence import GenerationEngine
from schemas import AllocationIn, ObligationIn, ObligationPatch
from services import MonthlyGenerationService, ObligationVersioningService

FEBRUARY = Month(2025, 2)


def make_session() -> Session:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _category(session: Session, name: str = "Rent") -> Category:
    category = Category(name=name, kind=EntryKind.expense)
    session.add(category)
    session.commit()
    return category


def _create(session: Session, **overrides) -> RecurringObligation:
    values = dict(
        title="Rent",
        amount_cents=150_000,
        kind=EntryKind.expense,
        day_of_month=5,
        active_from_month="2025-01",
    )
    values.update(overrides)
    return ObligationVersioningService(session).create(ObligationIn(**values))


def _transactions(session: Session) -> list[Transaction]:
    return list(session.scalars(select(Transaction).order_by(Transaction.id)).all())


def test_generates_pending_transaction_on_the_configured_day():
    with make_session() as session:
        rent = _category(session)
        obligation = _create(
            session, categories=[AllocationIn(category_id=rent.id, amount_cents=150_000)]
        )

        report = MonthlyGenerationService(session).generate("2025-02", strict=False)

        assert report.generated == [obligation.id]
        assert report.ok
        txn = _transactions(session)[0]
        assert report.transaction_ids == [txn.id]
        assert txn.occurred_on == date(2025, 2, 5)
        assert txn.occurred_month == FEBRUARY
        assert txn.amount_cents == 150_000
        assert txn.kind == EntryKind.expense
        assert txn.status == TransactionStatus.pending
        assert txn.due_on == date(2025, 2, 5)
        assert txn.paid_on is None
        assert txn.is_fixed
        assert txn.source_obligation_id == obligation.id
        assert [(a.category_id, a.amount_cents) for a in txn.allocations] == [
            (rent.id, 150_000)
        ]


def test_uncategorized_obligation_generates_dated_transaction():
    with make_session() as session:
        obligation = _create(session)

        report = MonthlyGenerationService(session).generate("2025-02", strict=False)

        assert report.generated == [obligation.id]
        txn = _transactions(session)[0]
        assert txn.occurred_on == date(2025, 2, 5)
        assert txn.amount_cents == 150_000
        assert txn.status == obligation.status == TransactionStatus.pending
        assert txn.allocations == []


def test_second_run_for_same_month_is_a_no_op():
    with make_session() as session:
        obligation = _create(session)
        service = MonthlyGenerationService(session)

        first = service.generate(FEBRUARY, strict=False)
        second = service.generate(FEBRUARY, strict=False)

        assert first.generated == [obligation.id]
        assert second.generated == []
        assert second.skipped == [obligation.id]
        assert len(_transactions(session)) == 1


def test_obligation_outside_its_window_is_not_generated():
    with make_session() as session:
        _create(session, active_to_month="2025-03")
        service = MonthlyGenerationService(session)

        assert service.generate("2024-12", strict=False).generated == []
        assert len(service.generate("2025-03", strict=False).generated) == 1
        assert service.generate("2025-04", strict=False).generated == []
        assert len(_transactions(session)) == 1


def test_day_31_lands_on_last_day_of_short_months():
    with make_session() as session:
        _create(session, day_of_month=31)
        service = MonthlyGenerationService(session)

        service.generate("2025-02", strict=False)
        service.generate("2025-04", strict=False)
        service.generate("2025-05", strict=False)

        assert [txn.occurred_on for txn in _transactions(session)] == [
            date(2025, 2, 28),
            date(2025, 4, 30),
            date(2025, 5, 31),
        ]


def test_paid_obligation_generates_settled_transaction():
    with make_session() as session:
        _create(
            session,
            title="Salary",
            kind=EntryKind.income,
            status=TransactionStatus.paid,
            day_of_month=1,
        )

        MonthlyGenerationService(session).generate(FEBRUARY, strict=False)

        txn = _transactions(session)[0]
        assert txn.kind == EntryKind.income
        assert txn.status == TransactionStatus.paid
        assert txn.paid_on == date(2025, 2, 1)
        assert txn.due_on is None


def _corrupt(session: Session, obligation_id: int, amount_cents: int) -> None:
    session.execute(
        update(RecurringObligation)
        .where(RecurringObligation.id == obligation_id)
        .values(amount_cents=amount_cents)
    )
    session.commit()
    session.expire_all()


def test_inconsistent_allocations_are_isolated_by_default():
    with make_session() as session:
        rent = _category(session)
        healthy = _create(session, title="Gym", amount_cents=3_000)
        broken = _create(
            session, categories=[AllocationIn(category_id=rent.id, amount_cents=150_000)]
        )
        healthy_id, broken_id = healthy.id, broken.id
        _corrupt(session, broken_id, 140_000)

        report = MonthlyGenerationService(session).generate(FEBRUARY, strict=False)

        assert report.generated == [healthy_id]
        assert list(report.failed) == [broken_id]
        assert "Rent" in report.failed[broken_id]
        assert not report.ok
        assert [txn.source_obligation_id for txn in _transactions(session)] == [healthy_id]


def test_strict_run_aborts_and_rolls_back_the_month():
    with make_session() as session:
        rent = _category(session)
        _create(session, title="Gym", amount_cents=3_000)
        broken = _create(
            session,
            active_from_month="2025-02",
            categories=[AllocationIn(category_id=rent.id, amount_cents=150_000)],
        )
        _corrupt(session, broken.id, 140_000)

        with pytest.raises(DataIntegrityError, match="inconsistent"):
            MonthlyGenerationService(session).generate(FEBRUARY, strict=True)

        assert _transactions(session) == []


def test_strict_defaults_to_configuration(monkeypatch):
    with make_session() as session:
        rent = _category(session)
        broken = _create(
            session, categories=[AllocationIn(category_id=rent.id, amount_cents=150_000)]
        )
        _corrupt(session, broken.id, 1)

        class StrictSettings:
            generation_strict = True

        monkeypatch.setattr("services.get_settings", lambda: StrictSettings())
        with pytest.raises(DataIntegrityError):
            MonthlyGenerationService(session).generate(FEBRUARY)


def test_versioned_obligation_generates_once_per_month():
    with make_session() as session:
        original = _create(session)
        service = MonthlyGenerationService(session)
        service.generate("2025-05", strict=False)

        successor = ObligationVersioningService(session).update(
            original.id, ObligationPatch(amount_cents=160_000), current_month=Month(2025, 6)
        )
        may = service.generate("2025-05", strict=False)
        june = service.generate("2025-06", strict=False)

        assert may.generated == []
        assert may.skipped == [original.id]
        assert june.generated == [successor.id]
        amounts = [(str(t.occurred_month), t.amount_cents) for t in _transactions(session)]
        assert amounts == [("2025-05", 150_000), ("2025-06", 160_000)]


def test_history_keeps_old_amount_after_edit():
    with make_session() as session:
        original = _create(session)
        MonthlyGenerationService(session).generate("2025-03", strict=False)

        ObligationVersioningService(session).update(
            original.id, ObligationPatch(amount_cents=999), current_month=Month(2025, 6)
        )

        txn = _transactions(session)[0]
        assert txn.amount_cents == 150_000
        assert txn.source_obligation_id == original.id


def test_concurrent_insert_is_counted_as_skipped(monkeypatch):
    with make_session() as session:
        obligation = _create(session)
        service = MonthlyGenerationService(session)
        service.generate(FEBRUARY, strict=False)

        real_lookup = repository.ObligationRepository.find_generated_transaction
        lookups = []

        def stale_first_lookup(self, user_id, obligation_id, month):
            lookups.append(obligation_id)
            if len(lookups) == 1:
                return None
            return real_lookup(self, user_id, obligation_id, month)

        monkeypatch.setattr(
            repository.ObligationRepository,
            "find_generated_transaction",
            stale_first_lookup,
        )
        report = service.generate(FEBRUARY, strict=False)

        assert report.generated == []
        assert report.skipped == [obligation.id]
        assert len(_transactions(session)) == 1
        assert lookups == [obligation.id, obligation.id]


def test_other_insert_failures_are_not_taken_for_a_race(monkeypatch):
    with make_session() as session:
        _create(session)

        def failing_insert(self, obligation, month, allocations):
            raise IntegrityError(
                "INSERT INTO transactions", {}, Exception("CHECK constraint failed")
            )

        monkeypatch.setattr(
            repository.ObligationRepository,
            "insert_generated_transaction",
            failing_insert,
        )
        with pytest.raises(IntegrityError):
            MonthlyGenerationService(session).generate(FEBRUARY, strict=False)


def test_only_the_requesting_user_is_generated():
    with make_session() as session:
        mine = _create(session)
        ObligationVersioningService(session, user_id=2).create(
            ObligationIn(
                title="Other",
                amount_cents=500,
                kind=EntryKind.expense,
                day_of_month=1,
                active_from_month="2025-01",
            )
        )

        report = MonthlyGenerationService(session).generate(FEBRUARY, strict=False)

        assert report.generated == [mine.id]


def test_active_obligations_respects_window_edges():
    with make_session() as session:
        bounded = _create(session, active_from_month="2025-02", active_to_month="2025-04")
        engine = GenerationEngine(session)

        assert engine.active_obligations(1, Month(2025, 1)) == []
        assert engine.active_obligations(1, Month(2025, 2)) == [bounded]
        assert engine.active_obligations(1, Month(2025, 4)) == [bounded]
        assert engine.active_obligations(1, Month(2025, 5)) == []


def test_inverted_stored_window_is_read_as_single_month():
    with make_session() as session:
        obligation = _create(session, active_from_month="2025-03")
        session.execute(
            update(RecurringObligation)
            .where(RecurringObligation.id == obligation.id)
            .values(active_to_month=Month(2025, 1))
        )
        session.commit()
        session.expire_all()
        service = MonthlyGenerationService(session)

        assert service.generate("2025-02", strict=False).generated == []
        assert service.generate("2025-03", strict=False).generated == [obligation.id]
        assert service.generate("2025-04", strict=False).generated == []


def test_bad_month_string_is_rejected():
    with make_session() as session:
        with pytest.raises(MonthFormatError):
            MonthlyGenerationService(session).generate("2025-13", strict=False)
        assert _transactions(session) == []
