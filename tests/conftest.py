from datetime import date, timedelta
from decimal import Decimal

import pytest

from schoollib import create_app
from schoollib.config import TestConfig
from schoollib.extensions import db
from schoollib.models.book import Book
from schoollib.models.student import Student
from schoollib.models.transaction import Transaction
from schoollib.models.user import User
from schoollib.repositories.book_repo import BookRepo
from schoollib.repositories.student_repo import StudentRepo
from schoollib.repositories.user_repo import UserRepo

TODAY = date(2026, 3, 16)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def operator(app):
    return UserRepo.create(User(username="librarian", name="Maria Santos", role="librarian"))


@pytest.fixture
def make_student(app):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = dict(
            student_code=f"2026-{counter['n']:04d}",
            first_name="Juan",
            last_name=f"Dela Cruz {counter['n']}",
            grade_level="5",
            section="Sampaguita",
            status="active",
        )
        fields.update(overrides)
        return StudentRepo.create(Student(**fields))

    return _make


@pytest.fixture
def make_book(app):
    counter = {"n": 0}

    def _make(copies=1, **overrides):
        counter["n"] += 1
        fields = dict(
            accession_number=f"ACC-{counter['n']:05d}",
            title=f"Noli Me Tangere vol. {counter['n']}",
            author="Jose Rizal",
            copies_total=copies,
            copies_available=copies,
        )
        fields.update(overrides)
        return BookRepo.create(Book(**fields))

    return _make


@pytest.fixture
def make_loan(app, operator):
    """Insert a loan row directly, taking a copy off the shelf like a real borrow would."""

    def _make(student, book, borrowed=None, due=None, status="borrowed", fine="0.00", paid=False):
        borrowed = borrowed or TODAY - timedelta(days=7)
        due = due or borrowed + timedelta(days=7)
        tx = Transaction(
            student_id=student.id,
            book_id=book.id,
            librarian_id=operator.id,
            borrowed_date=borrowed,
            due_date=due,
            status=status,
            fine_amount=Decimal(fine),
            fine_paid=paid,
        )
        if status != "returned":
            book.copies_available -= 1
        db.session.add(tx)
        db.session.commit()
        return tx

    return _make
