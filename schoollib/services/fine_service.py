from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import exists, func

from schoollib.errors import FineError
from schoollib.extensions import db
from schoollib.models.fine_payment import PAYMENT_METHODS, FinePayment
from schoollib.models.transaction import Transaction
from schoollib.repositories.transaction_repo import TransactionRepo
from schoollib.services.setting_service import SettingService
from schoollib.utils.clock import as_date, as_datetime, utcnow

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
CURRENCY = "₱"


def _money(value) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PaymentResult:
    success: bool
    message: str
    remaining: Decimal
    fully_paid: bool


class FineService:
    """
    Fine policy: fine = max(0, days_overdue - grace_period) * fine_per_day,
    capped at max_fine_amount when that setting is positive.

    Days are whole calendar days between the due date and the end date
    (return date, or today for loans still out).
    """

    # ------------------------------------------------------------------
    # pure calculation
    # ------------------------------------------------------------------
    @staticmethod
    def days_overdue(due_date, end_date) -> int:
        due = as_date(due_date)
        end = as_date(end_date)
        if end <= due:
            return 0
        return (end - due).days

    @staticmethod
    def calculate_fine(due_date, end_date, fine_per_day, grace_period: int, max_fine=None) -> Decimal:
        days = FineService.days_overdue(due_date, end_date)
        chargeable = max(0, days - int(grace_period))
        fine = _money(Decimal(chargeable) * Decimal(str(fine_per_day)))
        if max_fine is not None:
            cap = _money(max_fine)
            if cap > 0 and fine > cap:
                fine = cap
        return fine

    @staticmethod
    def _end_date(transaction: Transaction, now=None) -> date:
        if transaction.returned_date is not None:
            return as_date(transaction.returned_date)
        return as_date(now or utcnow())

    @staticmethod
    def get_days_overdue(transaction: Transaction, now=None) -> int:
        return FineService.days_overdue(transaction.due_date, FineService._end_date(transaction, now))

    @staticmethod
    def fine_for(transaction: Transaction, now=None) -> Decimal:
        """Fine under the current settings. Does not touch the stored amount."""
        return FineService.calculate_fine(
            transaction.due_date,
            FineService._end_date(transaction, now),
            SettingService.fine_per_day(),
            SettingService.grace_period(),
            SettingService.max_fine_amount(),
        )

    @staticmethod
    def is_overdue(transaction: Transaction, now=None) -> bool:
        if transaction.status == "returned" or transaction.returned_date is not None:
            return False
        return as_date(now or utcnow()) > as_date(transaction.due_date)

    @staticmethod
    def get_fine_policy() -> dict:
        return {
            "fine_per_day": SettingService.fine_per_day(),
            "grace_period": SettingService.grace_period(),
            "max_fine_amount": SettingService.max_fine_amount(),
            "currency": CURRENCY,
        }

    # ------------------------------------------------------------------
    # settlement
    # ------------------------------------------------------------------
    @staticmethod
    def get_amount_paid(transaction: Transaction) -> Decimal:
        total = (
            db.session.query(func.coalesce(func.sum(FinePayment.amount), 0))
            .filter(FinePayment.transaction_id == transaction.id)
            .scalar()
        )
        return _money(total)

    @staticmethod
    def record_payment(transaction: Transaction, amount, method: str = "cash", now=None) -> PaymentResult:
        now = as_datetime(now or utcnow())

        def _reject(message, remaining, fully_paid=False):
            db.session.rollback()
            return PaymentResult(False, message, remaining, fully_paid)

        # hold the row while the balance is read so two desks cannot both settle it
        TransactionRepo.lock(transaction.id)
        fine = _money(transaction.fine_amount)

        if fine <= 0:
            return _reject("This transaction has no fine to pay.", ZERO)
        if transaction.fine_paid:
            return _reject("This fine has already been paid.", ZERO, True)

        amount = _money(amount)
        if amount <= 0:
            return _reject("Payment amount must be greater than zero.", fine)
        if method not in PAYMENT_METHODS:
            return _reject(f"Unknown payment method '{method}'.", fine)

        outstanding = max(ZERO, fine - FineService.get_amount_paid(transaction))
        applied = min(amount, outstanding)
        remaining = max(ZERO, outstanding - amount)
        fully_paid = remaining <= 0

        try:
            db.session.add(FinePayment(
                transaction_id=transaction.id,
                amount=applied,
                method=method,
                paid_at=now,
            ))
            transaction.fine_paid = fully_paid
            transaction.append_note(
                f"Payment of {CURRENCY}{amount} via {method} recorded on {now:%Y-%m-%d %H:%M}"
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"[fines] payment tx={transaction.id} amount={amount} method={method} remaining={remaining}"
        )

        if fully_paid:
            message = f"Payment of {CURRENCY}{amount} received. Fine fully paid."
        else:
            message = f"Partial payment of {CURRENCY}{amount} received. Remaining balance: {CURRENCY}{remaining}"
        return PaymentResult(True, message, remaining, fully_paid)

    @staticmethod
    def waive_fine(transaction: Transaction, reason: str, now=None) -> Transaction:
        """Zero the fine. Only admins should reach this; the caller checks that."""
        reason = (reason or "").strip()
        if not reason:
            raise FineError("A reason is required to waive a fine.")

        now = now or utcnow()
        previous = _money(transaction.fine_amount)
        try:
            transaction.fine_amount = ZERO
            transaction.fine_paid = True
            transaction.append_note(f"Fine waived: {reason}")
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            f"[fines] waived tx={transaction.id} amount={previous} at={now:%Y-%m-%d %H:%M} reason={reason!r}"
        )
        return transaction

    @staticmethod
    def mark_fine_paid(transaction: Transaction, method: str = "cash", now=None, commit: bool = True) -> Transaction:
        """Settle whatever is still owed as one ledger payment and close the fine."""
        now = as_datetime(now or utcnow())

        TransactionRepo.lock(transaction.id)
        outstanding = max(ZERO, _money(transaction.fine_amount) - FineService.get_amount_paid(transaction))
        if outstanding > 0 and not transaction.fine_paid:
            db.session.add(FinePayment(
                transaction_id=transaction.id,
                amount=outstanding,
                method=method,
                paid_at=now,
            ))
        transaction.fine_paid = True

        if commit:
            try:
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            current_app.logger.info(f"[fines] marked paid tx={transaction.id} amount={outstanding} method={method}")
        return transaction

    @staticmethod
    def get_total_unpaid_fines(student_id: int) -> Decimal:
        return TransactionRepo.total_unpaid_fines(student_id)

    # ------------------------------------------------------------------
    # reporting
    # ------------------------------------------------------------------
    @staticmethod
    def get_fine_breakdown(transaction: Transaction, now=None) -> dict:
        now = now or utcnow()
        end = FineService._end_date(transaction, now)
        days = FineService.days_overdue(transaction.due_date, end)
        grace = SettingService.grace_period()
        rate = SettingService.fine_per_day()
        cap = SettingService.max_fine_amount()
        chargeable = max(0, days - grace)
        computed = FineService.calculate_fine(transaction.due_date, end, rate, grace, cap)

        formula = f"({days} days overdue - {grace} grace) x {CURRENCY}{_money(rate)} = {CURRENCY}{_money(chargeable * rate)}"
        if computed < _money(chargeable * rate):
            formula += f", capped at {CURRENCY}{_money(cap)}"

        return {
            "transaction_id": transaction.id,
            "due_date": as_date(transaction.due_date),
            "end_date": end,
            "is_returned": transaction.returned_date is not None,
            "days_overdue": days,
            "grace_period": grace,
            "chargeable_days": chargeable,
            "fine_per_day": _money(rate),
            "max_fine_amount": _money(cap),
            "calculated_fine": computed,
            "stored_fine": _money(transaction.fine_amount),
            "amount_paid": FineService.get_amount_paid(transaction),
            "fine_paid": bool(transaction.fine_paid),
            "formula": formula,
        }

    @staticmethod
    def get_fine_statistics() -> dict:
        unpaid = Transaction.fine_paid.is_(False)
        paid = Transaction.fine_paid.is_(True)

        ledger = db.session.query(func.coalesce(func.sum(FinePayment.amount), 0)).scalar()
        # fines closed before the payment ledger existed have no rows in it
        unledgered = (
            db.session.query(func.coalesce(func.sum(Transaction.fine_amount), 0))
            .filter(
                Transaction.fine_amount > 0,
                paid,
                ~exists().where(FinePayment.transaction_id == Transaction.id),
            )
            .scalar()
        )
        return {
            "total_unpaid": TransactionRepo.total_unpaid_fines(),
            "total_collected": _money(ledger) + _money(unledgered),
            "unpaid_count": Transaction.query.filter(Transaction.fine_amount > 0, unpaid).count(),
            "paid_count": Transaction.query.filter(Transaction.fine_amount > 0, paid).count(),
            "students_with_fines": (
                db.session.query(func.count(func.distinct(Transaction.student_id)))
                .filter(Transaction.fine_amount > 0, unpaid)
                .scalar()
            ),
        }
