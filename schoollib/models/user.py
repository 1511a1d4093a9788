from schoollib.extensions import db
from schoollib.utils.clock import utcnow


class User(db.Model):
    """Librarian or admin who processes circulation at the desk."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="librarian")  # admin/librarian

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
