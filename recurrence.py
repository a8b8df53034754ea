import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import AllocationError, DataIntegrityError
from models import RecurringObligation
from months import Month
from repository import ObligationRepository

logger = logging.getLogger(__name__)


def local_month() -> Month:
    return Month.current()


@dataclass
class GenerationReport:
    month: Month
    generated: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    transaction_ids: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict[str, object]:
        return {
            "month": str(self.month),
            "generated": self.generated,
            "skipped": self.skipped,
            "failed": {str(key): value for key, value in self.failed.items()},
            "transaction_ids": self.transaction_ids,
        }


class GenerationEngine:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.repo = ObligationRepository(session)

    def active_obligations(self, user_id: int, month: Month) -> list[RecurringObligation]:
        return [
            obligation
            for obligation in self.repo.list_obligations(user_id)
            if obligation.is_active_in(month)
        ]

    def generate(
        self, user_id: int, month: Month, *, strict: bool = False
    ) -> GenerationReport:
        report = GenerationReport(month=month)
        for obligation in self.active_obligations(user_id, month):
            self._generate_one(obligation, month, report, strict=strict)
        logger.info(
            f"generation_run: user_id={user_id} month={month} "
            f"generated={len(report.generated)} skipped={len(report.skipped)} "
            f"failed={len(report.failed)}"
        )
        return report

    def _generate_one(
        self,
        obligation: RecurringObligation,
        month: Month,
        report: GenerationReport,
        *,
        strict: bool,
    ) -> None:
        existing = self.repo.find_generated_transaction(
            obligation.user_id, obligation.id, month
        )
        if existing is not None:
            report.skipped.append(obligation.id)
            return

        allocations = self.repo.get_allocations(obligation.id)
        try:
            allocations.validate(obligation.amount_cents)
        except AllocationError as exc:
            error = DataIntegrityError(
                f"Obligation {obligation.id} ({obligation.title}): stored allocations "
                f"are inconsistent with its amount: {exc.message}"
            )
            if strict:
                raise error from exc
            logger.warning(
                f"generation_failed: obligation_id={obligation.id} month={month} "
                f"reason={exc.message}"
            )
            report.failed[obligation.id] = error.message
            return

        try:
            with self.session.begin_nested():
                txn = self.repo.insert_generated_transaction(
                    obligation, month, allocations
                )
        except IntegrityError:
            # Only a row from a concurrent run for the same month counts as a race.
            if (
                self.repo.find_generated_transaction(
                    obligation.user_id, obligation.id, month
                )
                is None
            ):
                raise
            logger.info(
                f"generation_race: obligation_id={obligation.id} month={month}"
            )
            report.skipped.append(obligation.id)
            return

        report.generated.append(obligation.id)
        report.transaction_ids.append(txn.id)
