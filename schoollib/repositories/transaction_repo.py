from decimal import Decimal

from sqlalchemy import and_, func, or_, update

from schoollib.extensions import db
from schoollib.models.fine_payment import FinePayment
from schoollib.models.transaction import ACTIVE_STATUSES, Transaction


class TransactionRepo:
    @staticmethod
    def get(transaction_id: int):
        return db.session.get(Transaction, transaction_id)

    @staticmethod
    def active_for_student(student_id: int):
        return Transaction.query.filter(
            Transaction.student_id == student_id,
            Transaction.status.in_(ACTIVE_STATUSES),
        )

    @staticmethod
    def count_active(student_id: int) -> int:
        return TransactionRepo.active_for_student(student_id).count()

    @staticmethod
    def has_overdue(student_id: int) -> bool:
        q = Transaction.query.filter_by(student_id=student_id, status="overdue")
        return db.session.query(q.exists()).scalar()

    @staticmethod
    def unpaid_fines_query():
        return Transaction.query.filter(
            Transaction.fine_amount > 0,
            Transaction.fine_paid.is_(False),
        )

    @staticmethod
    def has_unpaid_fines(student_id: int) -> bool:
        q = TransactionRepo.unpaid_fines_query().filter(Transaction.student_id == student_id)
        return db.session.query(q.exists()).scalar()

    @staticmethod
    def lock(transaction_id: int):
        # SELECT ... FOR UPDATE, reloading the row over any stale copy in the session
        return (
            Transaction.query.filter_by(id=transaction_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    @staticmethod
    def payments_subquery():
        """transaction_id -> sum of ledger payments."""
        return (
            db.session.query(
                FinePayment.transaction_id.label("transaction_id"),
                func.sum(FinePayment.amount).label("paid"),
            )
            .group_by(FinePayment.transaction_id)
            .subquery()
        )

    @staticmethod
    def unpaid_balances():
        """One row per unpaid fine with what is still owed after partial payments."""
        paid = TransactionRepo.payments_subquery()
        return (
            db.session.query(
                Transaction.id.label("transaction_id"),
                Transaction.student_id.label("student_id"),
                (Transaction.fine_amount - func.coalesce(paid.c.paid, 0)).label("balance"),
            )
            .outerjoin(paid, paid.c.transaction_id == Transaction.id)
            .filter(Transaction.fine_amount > 0, Transaction.fine_paid.is_(False))
            .subquery()
        )

    @staticmethod
    def total_unpaid_fines(student_id: int = None) -> Decimal:
        balances = TransactionRepo.unpaid_balances()
        q = db.session.query(func.coalesce(func.sum(balances.c.balance), 0))
        if student_id is not None:
            q = q.filter(balances.c.student_id == student_id)
        return Decimal(str(q.scalar())).quantize(Decimal("0.01"))

    @staticmethod
    def overdue_query(today):
        """Marked overdue, or still borrowed past the due date and not swept yet."""
        return Transaction.query.filter(
            or_(
                Transaction.status == "overdue",
                and_(Transaction.status == "borrowed", Transaction.due_date < today),
            )
        )

    @staticmethod
    def overdue_candidates(today):
        return (
            Transaction.query.filter(
                Transaction.status == "borrowed",
                Transaction.due_date < today,
            )
            .order_by(Transaction.due_date.asc(), Transaction.id.asc())
        )

    @staticmethod
    def mark_overdue(today) -> int:
        result = db.session.execute(
            update(Transaction)
            .where(Transaction.status == "borrowed", Transaction.due_date < today)
            .values(status="overdue")
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    def close(transaction_id: int, returned_date, fine_amount, notes) -> bool:
        """Move an open loan to returned. False if someone else closed it first."""
        result = db.session.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.status != "returned")
            .values(
                status="returned",
                returned_date=returned_date,
                fine_amount=fine_amount,
                notes=notes,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
