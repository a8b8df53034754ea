import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from errors import (
    DataIntegrityError,
    MonthFormatError,
    NotFoundError,
    ObligationError,
)
from models import RecurringObligation, Transaction
from months import Month
from schemas import ObligationIn, ObligationPatch, TransactionIn
from services import (
    MonthlyGenerationService,
    ObligationClosureService,
    ObligationService,
    ObligationVersioningService,
    TransactionService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Recurring Obligations", version=APP_VERSION)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def http_error(exc: ObligationError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, DataIntegrityError):
        return HTTPException(status_code=409, detail=exc.message)
    return HTTPException(status_code=400, detail=exc.message)


def month_param(month: Optional[str]) -> Optional[Month]:
    if not month:
        return None
    try:
        return Month.parse(month)
    except MonthFormatError as exc:
        raise http_error(exc) from exc


def obligation_payload(obligation: RecurringObligation) -> dict[str, object]:
    return {
        "id": obligation.id,
        "lineage_id": obligation.lineage_id,
        "supersedes_id": obligation.supersedes_id,
        "title": obligation.title,
        "description": obligation.description,
        "amount_cents": obligation.amount_cents,
        "kind": obligation.kind.value,
        "day_of_month": obligation.day_of_month,
        "status": obligation.status.value,
        "payment_method_id": obligation.payment_method_id,
        "active_from_month": str(obligation.active_from_month),
        "active_to_month": (
            str(obligation.active_to_month) if obligation.active_to_month else None
        ),
        "is_open": obligation.is_open,
        "categories": [
            {"category_id": item.category_id, "amount_cents": item.amount_cents}
            for item in obligation.allocations
        ],
        "created_at": obligation.created_at.isoformat(),
        "updated_at": obligation.updated_at.isoformat(),
    }


def transaction_payload(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "kind": txn.kind.value,
        "title": txn.title,
        "description": txn.description,
        "amount_cents": txn.amount_cents,
        "payment_method_id": txn.payment_method_id,
        "is_fixed": txn.is_fixed,
        "status": txn.status.value,
        "occurred_on": txn.occurred_on.isoformat(),
        "due_on": txn.due_on.isoformat() if txn.due_on else None,
        "paid_on": txn.paid_on.isoformat() if txn.paid_on else None,
        "occurred_month": str(txn.occurred_month),
        "source_obligation_id": txn.source_obligation_id,
        "split": [
            {"category_id": item.category_id, "amount_cents": item.amount_cents}
            for item in txn.allocations
        ],
    }


@app.get("/api/recurring")
def list_obligations(db: Session = Depends(get_db)):
    return [obligation_payload(item) for item in ObligationService(db).list()]


@app.post("/api/recurring", status_code=201)
def create_obligation(data: ObligationIn, db: Session = Depends(get_db)):
    try:
        obligation = ObligationVersioningService(db).create(data)
    except ObligationError as exc:
        raise http_error(exc) from exc
    return obligation_payload(obligation)


@app.get("/api/recurring/summary")
def obligations_summary(month: Optional[str] = None, db: Session = Depends(get_db)):
    return ObligationService(db).monthly_summary(month_param(month))


@app.post("/api/recurring/generate")
def generate_recurring(
    month: str, strict: Optional[bool] = None, db: Session = Depends(get_db)
):
    target = month_param(month)
    try:
        report = MonthlyGenerationService(db).generate(target, strict=strict)
    except ObligationError as exc:
        logger.error(f"generation_error: month={month} error={exc.message}")
        raise http_error(exc) from exc
    return report.as_dict()


@app.get("/api/recurring/{obligation_id}")
def get_obligation(obligation_id: int, db: Session = Depends(get_db)):
    try:
        obligation = ObligationService(db).get(obligation_id)
    except ObligationError as exc:
        raise http_error(exc) from exc
    return obligation_payload(obligation)


@app.put("/api/recurring/{obligation_id}")
def update_obligation(
    obligation_id: int, patch: ObligationPatch, db: Session = Depends(get_db)
):
    try:
        obligation = ObligationVersioningService(db).update(obligation_id, patch)
    except ObligationError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return obligation_payload(obligation)


@app.delete("/api/recurring/{obligation_id}")
def close_or_delete_obligation(obligation_id: int, db: Session = Depends(get_db)):
    try:
        result = ObligationClosureService(db).close(obligation_id)
    except ObligationError as exc:
        raise http_error(exc) from exc
    return {"result": result.value}


@app.get("/api/recurring/{obligation_id}/versions")
def obligation_versions(obligation_id: int, db: Session = Depends(get_db)):
    try:
        versions = ObligationService(db).versions(obligation_id)
    except ObligationError as exc:
        raise http_error(exc) from exc
    return [obligation_payload(item) for item in versions]


@app.get("/api/recurring/{obligation_id}/occurrences")
def obligation_occurrences(obligation_id: int, db: Session = Depends(get_db)):
    try:
        occurrences = ObligationService(db).occurrences(obligation_id)
    except ObligationError as exc:
        raise http_error(exc) from exc
    return [transaction_payload(txn) for txn in occurrences]


@app.post("/api/transactions", status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ObligationError as exc:
        raise http_error(exc) from exc
    return transaction_payload(txn)


@app.get("/api/transactions/{transaction_id}")
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).get(transaction_id)
    except ObligationError as exc:
        raise http_error(exc) from exc
    return transaction_payload(txn)


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update(transaction_id, data)
    except ObligationError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return transaction_payload(txn)


@app.get("/healthz")
def healthz():
    return Response(content=f"ok {APP_VERSION}", media_type="text/plain")
