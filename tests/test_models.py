from schoollib.models.book import Book
from schoollib.models.student import Student
from schoollib.utils.clock import utcnow


def test_student_names():
    s = Student(first_name="Jose", last_name="Rizal", middle_name="Protacio")
    assert s.full_name == "Rizal, Jose Protacio"
    assert s.display_name == "Jose Rizal"
    assert Student(first_name="Ana", last_name="Reyes").full_name == "Reyes, Ana"


def test_student_activity():
    assert Student(status="active").is_active
    assert not Student(status="graduated").is_active
    assert not Student(status="active", deleted_at=utcnow()).is_active


def test_book_counts():
    book = Book(copies_total=4, copies_available=1, status="available")
    assert book.copies_borrowed == 3
    assert book.is_available
    assert not Book(copies_total=1, copies_available=0, status="available").is_available
    assert not Book(copies_total=1, copies_available=1, status="unavailable").is_available
