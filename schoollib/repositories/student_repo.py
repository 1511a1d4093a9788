from schoollib.extensions import db
from schoollib.models.student import Student


class StudentRepo:
    @staticmethod
    def get_by_code(student_code: str):
        return Student.query.filter(
            Student.student_code == student_code,
            Student.deleted_at.is_(None),
        ).first()

    @staticmethod
    def active_query():
        return Student.query.filter(
            Student.status == "active",
            Student.deleted_at.is_(None),
        )

    @staticmethod
    def create(student: Student):
        db.session.add(student)
        db.session.commit()
        return student
