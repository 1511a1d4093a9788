from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from schoollib.extensions import db
from schoollib.repositories.transaction_repo import TransactionRepo
from schoollib.services.fine_service import FineService
from schoollib.utils.clock import as_date, utcnow


@dataclass
class SweepResult:
    count: int
    dry_run: bool
    rows: list = field(default_factory=list)


def _preview_row(t, today) -> dict:
    return {
        "id": t.id,
        "student": t.student.full_name if t.student else "-",
        "book": t.book.title if t.book else "-",
        "borrowed_date": t.borrowed_date,
        "due_date": t.due_date,
        "days_overdue": FineService.days_overdue(t.due_date, today),
    }


def run_overdue_sweep(today=None, dry_run: bool = False) -> SweepResult:
    """
    Mark borrowed loans whose due date has passed as overdue.
    - selects status == borrowed AND due_date < today
    - dry run lists those rows and changes nothing
    - otherwise one bulk update; running it twice the same day finds nothing the second time
    """
    today = as_date(today or utcnow())

    if dry_run:
        candidates = TransactionRepo.overdue_candidates(today).all()
        rows = [_preview_row(t, today) for t in candidates]
        current_app.logger.info(f"[overdue_sweep] dry run date={today} would_update={len(rows)}")
        return SweepResult(count=len(rows), dry_run=True, rows=rows)

    try:
        updated = TransactionRepo.mark_overdue(today)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"[overdue_sweep] failed date={today}: {e}")
        raise

    current_app.logger.info(f"[overdue_sweep] date={today} updated={updated}")
    return SweepResult(count=updated, dry_run=False)


def run_overdue_sweep_job(app):
    """Scheduler entry point; runs the sweep inside the app context."""
    with app.app_context():
        return run_overdue_sweep()
