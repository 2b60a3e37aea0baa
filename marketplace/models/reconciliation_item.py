from marketplace.extensions import db
from marketplace.utils.dates import utcnow
import uuid

REVERSAL_AFTER_RELEASE = "reversal_after_release"
STUCK_RELEASE = "stuck_release"
PAYOUT_UNKNOWN = "payout_unknown"
PAYMENT_AFTER_CANCELLATION = "payment_after_cancellation"
PAYOUT_LEDGER_MISMATCH = "payout_ledger_mismatch"

KINDS = (
    REVERSAL_AFTER_RELEASE,
    STUCK_RELEASE,
    PAYOUT_UNKNOWN,
    PAYMENT_AFTER_CANCELLATION,
    PAYOUT_LEDGER_MISMATCH,
)

def gen_item_id():
    return f"rec_{uuid.uuid4().hex[:12]}"

class ReconciliationItem(db.Model):
    """Operator queue entry for ledger situations that are never auto-resolved."""
    __tablename__ = "reconciliation_items"
    __table_args__ = (
        db.Index("idx_reconciliation_status", "status", "kind"),
    )

    id = db.Column(db.String(50), primary_key=True, default=gen_item_id)
    kind = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="open")

    seller_id = db.Column(db.String(50), db.ForeignKey("users.id"))
    order_id = db.Column(db.String(50), db.ForeignKey("orders.id"))
    withdrawal_id = db.Column(db.String(50), db.ForeignKey("withdrawal_requests.id"))
    amount = db.Column(db.Numeric(12, 2))
    details = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime, default=utcnow)
    resolved_at = db.Column(db.DateTime)
    resolved_by = db.Column(db.String(50))
    resolution = db.Column(db.Text)
