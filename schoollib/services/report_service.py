from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func

from schoollib.extensions import db
from schoollib.models.book import Book
from schoollib.models.category import Category
from schoollib.models.student import Student
from schoollib.models.transaction import ACTIVE_STATUSES, Transaction
from schoollib.repositories.student_repo import StudentRepo
from schoollib.repositories.transaction_repo import TransactionRepo
from schoollib.services.fine_service import FineService
from schoollib.utils.clock import as_date, utcnow


def _total(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


class ReportService:
    """Read-only views over circulation data. Nothing here writes to the session."""

    @staticmethod
    def get_overdue_books(today=None) -> list:
        """Overdue loans, including past-due ones the sweep has not marked yet. Most overdue first."""
        today = as_date(today or utcnow())
        rows = (
            TransactionRepo.overdue_query(today)
            .order_by(Transaction.due_date.asc(), Transaction.id.asc())
            .all()
        )
        return [
            {
                "transaction": t,
                "days_overdue": FineService.get_days_overdue(t, today),
                "calculated_fine": FineService.fine_for(t, today),
            }
            for t in rows
        ]

    @staticmethod
    def get_students_with_fines() -> list:
        # aggregate first so the GROUP BY stays valid on MSSQL
        balances = TransactionRepo.unpaid_balances()
        fines = (
            db.session.query(
                balances.c.student_id.label("student_id"),
                func.sum(balances.c.balance).label("total_fines"),
                func.count(balances.c.transaction_id).label("fine_count"),
            )
            .group_by(balances.c.student_id)
            .subquery()
        )
        rows = (
            db.session.query(Student, fines.c.total_fines, fines.c.fine_count)
            .join(fines, fines.c.student_id == Student.id)
            .order_by(fines.c.total_fines.desc(), Student.id.asc())
            .all()
        )
        return [
            {"student": student, "total_fines": _total(total), "fine_count": count}
            for student, total, count in rows
        ]

    @staticmethod
    def get_student_borrowing_history(student: Student, limit: int = None) -> dict:
        q = Transaction.query.filter_by(student_id=student.id).order_by(
            Transaction.borrowed_date.desc(), Transaction.id.desc()
        )
        if limit:
            q = q.limit(limit)

        base = Transaction.query.filter_by(student_id=student.id)
        total_fines = (
            db.session.query(func.coalesce(func.sum(Transaction.fine_amount), 0))
            .filter(Transaction.student_id == student.id)
            .scalar()
        )
        return {
            "student": student,
            "transactions": q.all(),
            "summary": {
                "total_borrowed": base.count(),
                "currently_borrowed": base.filter(Transaction.status.in_(ACTIVE_STATUSES)).count(),
                "total_fines": _total(total_fines),
                "unpaid_fines": FineService.get_total_unpaid_fines(student.id),
            },
        }

    @staticmethod
    def get_most_borrowed_books(limit: int = 10, start_date=None, end_date=None) -> list:
        counts = db.session.query(
            Transaction.book_id.label("book_id"),
            func.count(Transaction.id).label("borrow_count"),
        )
        if start_date:
            counts = counts.filter(Transaction.borrowed_date >= as_date(start_date))
        if end_date:
            counts = counts.filter(Transaction.borrowed_date <= as_date(end_date))
        counts = counts.group_by(Transaction.book_id).subquery()

        rows = (
            db.session.query(Book, counts.c.borrow_count)
            .join(counts, counts.c.book_id == Book.id)
            .order_by(counts.c.borrow_count.desc(), Book.id.asc())
            .limit(limit)
            .all()
        )
        return [{"book": book, "borrow_count": count} for book, count in rows]

    @staticmethod
    def get_books_by_category() -> dict:
        rows = (
            db.session.query(Category.name, func.count(Book.id))
            .outerjoin(Book, Book.category_id == Category.id)
            .group_by(Category.id, Category.name)
            .order_by(func.count(Book.id).desc(), Category.name.asc())
            .all()
        )
        return {name: count for name, count in rows}

    @staticmethod
    def get_inventory_report() -> dict:
        total_titles = Book.query.count()
        total_copies = db.session.query(func.coalesce(func.sum(Book.copies_total), 0)).scalar()
        available_copies = db.session.query(func.coalesce(func.sum(Book.copies_available), 0)).scalar()
        borrowed_copies = total_copies - available_copies

        by_condition = dict(
            db.session.query(Book.condition, func.count(Book.id)).group_by(Book.condition).all()
        )

        return {
            "total_titles": total_titles,
            "total_copies": total_copies,
            "available_copies": available_copies,
            "borrowed_copies": borrowed_copies,
            "utilization_rate": round(borrowed_copies / total_copies * 100, 2) if total_copies else 0,
            "by_condition": by_condition,
            "by_category": ReportService.get_books_by_category(),
        }

    @staticmethod
    def get_daily_transactions(day=None) -> dict:
        day = as_date(day or utcnow())
        borrowed = (
            Transaction.query.filter(Transaction.borrowed_date == day)
            .order_by(Transaction.id.desc())
            .all()
        )
        returned = (
            Transaction.query.filter(Transaction.returned_date == day)
            .order_by(Transaction.id.desc())
            .all()
        )
        return {
            "date": day,
            "borrowed": borrowed,
            "borrowed_count": len(borrowed),
            "returned": returned,
            "returned_count": len(returned),
        }

    @staticmethod
    def get_circulation_statistics(start_date, end_date) -> dict:
        start, end = as_date(start_date), as_date(end_date)
        in_period = Transaction.borrowed_date.between(start, end)

        total_borrowed = Transaction.query.filter(in_period).count()
        total_returned = Transaction.query.filter(Transaction.returned_date.between(start, end)).count()
        fines_collected = (
            db.session.query(func.coalesce(func.sum(Transaction.fine_amount), 0))
            .filter(Transaction.returned_date.between(start, end), Transaction.fine_paid.is_(True))
            .scalar()
        )
        unique_borrowers = (
            db.session.query(func.count(func.distinct(Transaction.student_id))).filter(in_period).scalar()
        )
        daily = (
            db.session.query(Transaction.borrowed_date, func.count(Transaction.id))
            .filter(in_period)
            .group_by(Transaction.borrowed_date)
            .order_by(Transaction.borrowed_date.asc())
            .all()
        )

        span = (end - start).days
        return {
            "period": {"start": start, "end": end},
            "total_borrowed": total_borrowed,
            "total_returned": total_returned,
            "total_fines_collected": _total(fines_collected),
            "unique_borrowers": unique_borrowers,
            "average_daily_borrows": round(total_borrowed / span, 2) if span > 0 else total_borrowed,
            "daily_breakdown": [{"date": d, "count": c} for d, c in daily],
        }

    @staticmethod
    def get_dashboard_statistics(today=None) -> dict:
        today = as_date(today or utcnow())
        return {
            "total_books": Book.query.count(),
            "available_books": Book.query.filter(Book.copies_available > 0).count(),
            "total_copies": db.session.query(func.coalesce(func.sum(Book.copies_total), 0)).scalar(),
            "available_copies": db.session.query(func.coalesce(func.sum(Book.copies_available), 0)).scalar(),
            "total_students": StudentRepo.active_query().count(),
            "students_with_borrowed_books": (
                db.session.query(func.count(func.distinct(Transaction.student_id)))
                .filter(Transaction.status.in_(ACTIVE_STATUSES))
                .scalar()
            ),
            "books_borrowed_today": Transaction.query.filter(Transaction.borrowed_date == today).count(),
            "books_returned_today": Transaction.query.filter(Transaction.returned_date == today).count(),
            "overdue_books": TransactionRepo.overdue_query(today).count(),
            "total_unpaid_fines": TransactionRepo.total_unpaid_fines(),
        }
