from schoollib.extensions import db
from schoollib.utils.clock import utcnow

STUDENT_STATUSES = ("active", "inactive", "graduated")


class Student(db.Model):
    __tablename__ = "students"
    __table_args__ = (
        db.Index("ix_students_status_grade", "status", "grade_level"),
    )

    id = db.Column(db.Integer, primary_key=True)
    # school-assigned id, e.g. "2024-0001"
    student_code = db.Column(db.String(50), unique=True, nullable=False, index=True)

    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    middle_name = db.Column(db.String(100), nullable=True)

    grade_level = db.Column(db.String(2), nullable=False)
    section = db.Column(db.String(50), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active", index=True)

    contact_number = db.Column(db.String(20), nullable=True)
    guardian_name = db.Column(db.String(255), nullable=True)
    guardian_contact = db.Column(db.String(20), nullable=True)

    # soft delete: history stays, default queries skip the row
    deleted_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    transactions = db.relationship("Transaction", back_populates="student")

    @property
    def full_name(self) -> str:
        name = f"{self.last_name}, {self.first_name}"
        if self.middle_name:
            name += f" {self.middle_name}"
        return name

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_active(self) -> bool:
        return self.status == "active" and not self.is_deleted
