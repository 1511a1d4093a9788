from decimal import Decimal

from schoollib.extensions import db
from schoollib.utils.clock import utcnow

ACTIVE_STATUSES = ("borrowed", "overdue")


class Transaction(db.Model):
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("fine_amount >= 0", name="ck_transactions_fine_amount"),
        db.Index("ix_transactions_student_status", "student_id", "status"),
        db.Index("ix_transactions_status_due", "status", "due_date"),
        db.Index("ix_transactions_fines", "fine_amount", "fine_paid"),
    )

    id = db.Column(db.Integer, primary_key=True)

    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)
    librarian_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    borrowed_date = db.Column(db.Date, nullable=False, index=True)
    due_date = db.Column(db.Date, nullable=False)
    returned_date = db.Column(db.Date, nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, default="borrowed")  # borrowed/overdue/returned

    fine_amount = db.Column(db.Numeric(8, 2), nullable=False, default=Decimal("0.00"))
    fine_paid = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    student = db.relationship("Student", back_populates="transactions")
    book = db.relationship("Book", back_populates="transactions")
    librarian = db.relationship("User")
    payments = db.relationship(
        "FinePayment", back_populates="transaction", order_by="FinePayment.id"
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def has_unpaid_fine(self) -> bool:
        return Decimal(self.fine_amount or 0) > 0 and not self.fine_paid

    def append_note(self, line: str) -> None:
        self.notes = f"{self.notes}\n{line}" if self.notes else line
