from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from flask import current_app
from sqlalchemy.exc import OperationalError

from schoollib.errors import (
    AlreadyReturnedError,
    AvailabilityConflictError,
    BookUnavailableError,
    BorrowingNotAllowedError,
    CirculationError,
)
from schoollib.extensions import db
from schoollib.models.book import BOOK_CONDITIONS, Book
from schoollib.models.student import Student
from schoollib.models.transaction import Transaction
from schoollib.models.user import User
from schoollib.repositories.book_repo import BookRepo
from schoollib.repositories.transaction_repo import TransactionRepo
from schoollib.services.fine_service import FineService
from schoollib.services.setting_service import SettingService
from schoollib.utils.clock import as_date, utcnow


@dataclass
class Eligibility:
    eligible: bool
    reason: Optional[str] = None


class BorrowService:
    @staticmethod
    def get_active_loan_count(student: Student) -> int:
        return TransactionRepo.count_active(student.id)

    @staticmethod
    def can_borrow(student: Student) -> Eligibility:
        """
        Checks run in a fixed order and stop at the first failure:
        account status, borrowing limit, overdue books, unpaid fines.
        """
        if not student.is_active:
            return Eligibility(False, "Student account is not active and cannot borrow books.")

        max_books = SettingService.max_books_per_student()
        if BorrowService.get_active_loan_count(student) >= max_books:
            return Eligibility(False, f"Student has reached the maximum limit of {max_books} borrowed books.")

        if TransactionRepo.has_overdue(student.id):
            return Eligibility(False, "Student has overdue books that must be returned first.")

        if TransactionRepo.has_unpaid_fines(student.id):
            return Eligibility(False, "Student has unpaid fines that must be settled first.")

        return Eligibility(True, None)

    @staticmethod
    def borrow_book(student: Student, book: Book, operator: User, due_date=None, now=None) -> Transaction:
        now = now or utcnow()
        borrowed_on = as_date(now)

        eligibility = BorrowService.can_borrow(student)
        if not eligibility.eligible:
            raise BorrowingNotAllowedError(eligibility.reason)

        if book.copies_available is None or book.copies_available <= 0:
            raise BookUnavailableError("This book is not available for borrowing. All copies are currently borrowed.")
        if book.status == "unavailable":
            raise BookUnavailableError("This book is marked as unavailable (lost/withdrawn).")

        if due_date is None:
            due_date = borrowed_on + timedelta(days=SettingService.borrowing_period())
        else:
            due_date = as_date(due_date)
            if due_date <= borrowed_on:
                raise CirculationError("Due date must be after the borrowing date.")

        attempts = max(1, current_app.config.get("BORROW_MAX_ATTEMPTS", 3))
        for attempt in range(1, attempts + 1):
            try:
                transaction = BorrowService._create_loan(student, book, operator, borrowed_on, due_date)
                break
            except OperationalError as e:
                db.session.rollback()
                if attempt == attempts:
                    current_app.logger.error(f"[borrow] book={book.id} gave up after {attempt} attempts: {e}")
                    raise
                current_app.logger.warning(f"[borrow] book={book.id} contention, retry {attempt}/{attempts}: {e}")

        current_app.logger.info(
            f"[borrow] tx={transaction.id} student={student.student_code} book={book.accession_number} "
            f"due={transaction.due_date}"
        )
        return transaction

    @staticmethod
    def _create_loan(student, book, operator, borrowed_on, due_date) -> Transaction:
        # loan row and counter commit together or not at all
        try:
            BookRepo.lock(book.id)
            if not BookRepo.take_copy(book.id):
                raise AvailabilityConflictError(
                    "The last copy of this book was just borrowed. Please check availability again."
                )

            transaction = Transaction(
                student_id=student.id,
                book_id=book.id,
                librarian_id=operator.id,
                borrowed_date=borrowed_on,
                due_date=due_date,
                status="borrowed",
                fine_amount=Decimal("0.00"),
                fine_paid=False,
            )
            db.session.add(transaction)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return transaction

    @staticmethod
    def return_book(
        transaction: Transaction,
        condition: Optional[str] = None,
        notes: Optional[str] = None,
        now=None,
        pay_fine_now: bool = False,
    ) -> Transaction:
        now = now or utcnow()
        returned_on = as_date(now)

        if transaction.status == "returned":
            raise AlreadyReturnedError("This book has already been returned.")
        if condition is not None and condition not in BOOK_CONDITIONS:
            raise CirculationError(f"Invalid book condition '{condition}'.")

        fine_amount = Decimal("0.00")
        if transaction.status == "overdue" or as_date(transaction.due_date) < returned_on:
            fine_amount = FineService.calculate_fine(
                transaction.due_date,
                returned_on,
                SettingService.fine_per_day(),
                SettingService.grace_period(),
                SettingService.max_fine_amount(),
            )

        combined_notes = transaction.notes
        if notes:
            combined_notes = f"{combined_notes}\n{notes}" if combined_notes else notes

        book = transaction.book
        try:
            if condition:
                book.condition = condition

            if not TransactionRepo.close(transaction.id, returned_on, fine_amount, combined_notes):
                raise AlreadyReturnedError("This book has already been returned.")

            if not BookRepo.put_back_copy(book.id):
                # counter already at copies_total, leave it clamped
                current_app.logger.warning(
                    f"[return] book={book.accession_number} already has all copies on the shelf"
                )

            if pay_fine_now and fine_amount > 0:
                FineService.mark_fine_paid(transaction, now=now, commit=False)

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        # bulk updates bypass the identity map
        db.session.refresh(transaction)
        db.session.refresh(book)

        current_app.logger.info(
            f"[return] tx={transaction.id} book={book.accession_number} fine={transaction.fine_amount} "
            f"paid={transaction.fine_paid}"
        )
        return transaction

    @staticmethod
    def get_current_borrowed_books(student: Student) -> list:
        return (
            TransactionRepo.active_for_student(student.id)
            .order_by(Transaction.due_date.asc(), Transaction.id.asc())
            .all()
        )

    @staticmethod
    def get_remaining_borrowing_capacity(student: Student) -> int:
        return max(0, SettingService.max_books_per_student() - BorrowService.get_active_loan_count(student))

    @staticmethod
    def check_book_availability(book: Book) -> dict:
        return {
            "available": book.is_available,
            "copies_total": book.copies_total,
            "copies_available": book.copies_available,
            "copies_borrowed": book.copies_borrowed,
            "status": book.status,
        }

    @staticmethod
    def get_student_snapshot(student: Student, now=None) -> dict:
        """Everything the borrow screen shows about a student, read-only."""
        today = as_date(now or utcnow())
        eligibility = BorrowService.can_borrow(student)
        current = BorrowService.get_current_borrowed_books(student)
        return {
            "eligible": eligibility.eligible,
            "reason": eligibility.reason,
            "current_books_count": len(current),
            "remaining_capacity": BorrowService.get_remaining_borrowing_capacity(student),
            "unpaid_fines": FineService.get_total_unpaid_fines(student.id),
            "current_books": [
                {
                    "id": t.id,
                    "book_title": t.book.title if t.book else None,
                    "due_date": t.due_date,
                    "is_overdue": t.status == "overdue" or t.due_date < today,
                    "days_until_due": (t.due_date - today).days,
                }
                for t in current
            ],
        }
