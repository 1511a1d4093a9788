from schoollib.extensions import db
from schoollib.utils.clock import utcnow

BOOK_CONDITIONS = ("excellent", "good", "fair", "poor")
BOOK_STATUSES = ("available", "unavailable")


class Book(db.Model):
    __tablename__ = "books"
    __table_args__ = (
        db.CheckConstraint("copies_total >= 1", name="ck_books_copies_total"),
        db.CheckConstraint("copies_available >= 0", name="ck_books_available_min"),
        db.CheckConstraint("copies_available <= copies_total", name="ck_books_available_max"),
        db.Index("ix_books_status_available", "status", "copies_available"),
    )

    id = db.Column(db.Integer, primary_key=True)
    accession_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    isbn = db.Column(db.String(13), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False, index=True)
    author = db.Column(db.String(255), nullable=False)
    publisher = db.Column(db.String(255), nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    copies_total = db.Column(db.Integer, nullable=False, default=1)
    copies_available = db.Column(db.Integer, nullable=False, default=1)

    location = db.Column(db.String(100), nullable=True)
    condition = db.Column(db.String(20), nullable=False, default="good")  # excellent/good/fair/poor
    status = db.Column(db.String(20), nullable=False, default="available")  # available/unavailable

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    category = db.relationship("Category", back_populates="books")
    transactions = db.relationship("Transaction", back_populates="book")

    @property
    def copies_borrowed(self) -> int:
        return (self.copies_total or 0) - (self.copies_available or 0)

    @property
    def is_available(self) -> bool:
        return self.status == "available" and (self.copies_available or 0) > 0
