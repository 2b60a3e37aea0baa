from sqlalchemy import event

from marketplace.extensions import db
from marketplace.utils.dates import utcnow

CREDIT_PENDING = "credit_pending"
RELEASE_TO_AVAILABLE = "release_to_available"
REVERSAL = "reversal"
DEBIT_WITHDRAWAL = "debit_withdrawal"
KINDS = (CREDIT_PENDING, RELEASE_TO_AVAILABLE, REVERSAL, DEBIT_WITHDRAWAL)

PENDING = "pending"
AVAILABLE = "available"

class WalletTransaction(db.Model):
    """One immutable ledger row. Amount is signed and moves a single balance bucket."""
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.Index("idx_wallet_transactions_seller", "seller_id", "created_at"),
        db.Index("idx_wallet_transactions_order", "order_id"),
    )

    id = db.Column(db.String(50), primary_key=True)
    wallet_id = db.Column(db.String(50), db.ForeignKey("wallets.id"), nullable=False)
    seller_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False)
    order_id = db.Column(db.String(50), db.ForeignKey("orders.id"), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    type = db.Column(db.String(30), nullable=False)
    balance_type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="completed")

    idempotency_key = db.Column(db.String(120), unique=True, nullable=True)
    reference_type = db.Column(db.String(50))
    reference_id = db.Column(db.String(50))

    description = db.Column(db.String(255))
    created_by = db.Column(db.String(50))
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    wallet = db.relationship("Wallet", backref=db.backref("transactions", lazy="dynamic"))


@event.listens_for(WalletTransaction, "before_update")
def _refuse_update(mapper, connection, target):
    raise RuntimeError(f"wallet transaction {target.id} is immutable")


@event.listens_for(WalletTransaction, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise RuntimeError(f"wallet transaction {target.id} is immutable")
