from marketplace.extensions import db
from marketplace.utils.dates import utcnow

PENDING = "pending"
APPROVED = "approved"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
REJECTED = "rejected"

OPEN_STATUSES = (PENDING, APPROVED, PROCESSING)
TERMINAL_STATUSES = (COMPLETED, FAILED, REJECTED)

_OPEN_SQL = db.text("status IN ('pending', 'approved', 'processing')")

class WithdrawalRequest(db.Model):
    __tablename__ = "withdrawal_requests"
    __table_args__ = (
        # One in-flight request per seller
        db.Index(
            "uq_withdrawal_open_per_seller",
            "seller_id",
            unique=True,
            sqlite_where=_OPEN_SQL,
            postgresql_where=_OPEN_SQL,
        ),
    )

    id = db.Column(db.String(50), primary_key=True)
    seller_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(30), nullable=False, default=PENDING)

    bank_account_number = db.Column(db.String(32), nullable=False)
    routing_code = db.Column(db.String(11), nullable=False)
    account_holder_name = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text)

    payout_id = db.Column(db.String(100))
    transaction_id = db.Column(db.String(50))
    failure_reason = db.Column(db.Text)

    requested_at = db.Column(db.DateTime, default=utcnow)
    processed_at = db.Column(db.DateTime)
    processed_by = db.Column(db.String(50))

    seller = db.relationship("User", backref="withdrawals")
