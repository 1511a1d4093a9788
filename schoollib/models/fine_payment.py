from schoollib.extensions import db
from schoollib.utils.clock import utcnow

PAYMENT_METHODS = ("cash", "gcash", "maya", "bank_transfer")


class FinePayment(db.Model):
    __tablename__ = "fine_payments"

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)

    # amount applied to the fine; overpayment is not kept
    amount = db.Column(db.Numeric(8, 2), nullable=False)
    method = db.Column(db.String(20), nullable=False, default="cash")
    paid_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    transaction = db.relationship("Transaction", back_populates="payments")
