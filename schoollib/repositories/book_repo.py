from sqlalchemy import update

from schoollib.extensions import db
from schoollib.models.book import Book


class BookRepo:
    @staticmethod
    def get_by_accession(accession_number: str):
        return Book.query.filter_by(accession_number=accession_number).first()

    @staticmethod
    def lock(book_id: int):
        # SELECT ... FOR UPDATE where the backend has row locks (ignored by SQLite)
        return Book.query.filter_by(id=book_id).with_for_update().first()

    @staticmethod
    def take_copy(book_id: int) -> bool:
        """Check-and-decrement in one statement; False if no copy was left."""
        result = db.session.execute(
            update(Book)
            .where(Book.id == book_id, Book.copies_available > 0)
            .values(copies_available=Book.copies_available - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def put_back_copy(book_id: int) -> bool:
        """Increment, never past copies_total. False when already full."""
        result = db.session.execute(
            update(Book)
            .where(Book.id == book_id, Book.copies_available < Book.copies_total)
            .values(copies_available=Book.copies_available + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def create(book: Book):
        db.session.add(book)
        db.session.commit()
        return book
