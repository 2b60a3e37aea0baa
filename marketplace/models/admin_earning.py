from marketplace.extensions import db
from marketplace.utils.dates import utcnow
import uuid

def gen_earning_id():
    return f"ern_{uuid.uuid4().hex[:12]}"

class AdminEarning(db.Model):
    """Platform commission taken on one paid order."""
    __tablename__ = "admin_earnings"

    id = db.Column(db.String(50), primary_key=True, default=gen_earning_id)
    order_id = db.Column(db.String(50), db.ForeignKey("orders.id"), unique=True, nullable=False)
    seller_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False, index=True)

    order_amount = db.Column(db.Numeric(12, 2), nullable=False)
    commission_rate = db.Column(db.Numeric(5, 2), nullable=False)
    commission_amount = db.Column(db.Numeric(12, 2), nullable=False)
    seller_amount = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.String(20), nullable=False, default="earned")
    earned_at = db.Column(db.DateTime, default=utcnow, index=True)
    reversed_at = db.Column(db.DateTime)

    order = db.relationship("Order", backref=db.backref("admin_earning", uselist=False))
