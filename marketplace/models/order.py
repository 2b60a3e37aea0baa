from marketplace.extensions import db
from marketplace.utils.dates import utcnow
import uuid

ORDER_STATUSES = ("pending", "confirmed", "dispatched", "delivered", "cancelled", "returned")
CLOSED_STATUSES = ("cancelled", "returned")

# Settlement progress of the order's seller amount through the wallet
UNCREDITED = "uncredited"
PENDING_CREDITED = "pending_credited"
RELEASED = "released"
REVERSED = "reversed"

def gen_order_id():
    return f"ORD-{str(uuid.uuid4())[:8]}"

class Order(db.Model):
    __tablename__ = "orders"

    __table_args__ = (
        db.Index("idx_orders_payment_status", "payment_status"),
        db.Index("idx_orders_settlement", "status", "wallet_credited"),
    )

    id = db.Column(db.String(50), primary_key=True, default=gen_order_id)

    buyer_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=True)
    seller_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    # Frozen when payment is confirmed, never recomputed afterwards
    commission_rate = db.Column(db.Numeric(5, 2))
    commission_amount = db.Column(db.Numeric(12, 2))
    seller_amount = db.Column(db.Numeric(12, 2))

    payment_method = db.Column(db.String(20), nullable=False, default="online")
    payment_status = db.Column(db.String(30), nullable=False, default="pending")
    status = db.Column(db.String(30), nullable=False, default="pending")

    settlement_state = db.Column(db.String(30), nullable=False, default=UNCREDITED)
    wallet_credited = db.Column(db.Boolean, nullable=False, default=False)

    gateway_order_id = db.Column(db.String(100), index=True)
    gateway_payment_id = db.Column(db.String(100))

    shipment_id = db.Column(db.String(100), index=True)
    awb_code = db.Column(db.String(100))
    courier_name = db.Column(db.String(100))
    tracking_url = db.Column(db.String(255))
    shipment_status = db.Column(db.String(100))
    delivery_address = db.Column(db.JSON)
    items = db.Column(db.JSON, default=list)

    paid_at = db.Column(db.DateTime)
    credited_at = db.Column(db.DateTime)
    delivered_at = db.Column(db.DateTime)
    released_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    buyer = db.relationship("User", foreign_keys=[buyer_id], backref="buyer_orders", lazy=True)
    seller = db.relationship("User", foreign_keys=[seller_id], backref="seller_orders", lazy=True)

    @property
    def is_cod(self):
        return (self.payment_method or "").lower() == "cod"

    @property
    def is_closed(self):
        return self.status in CLOSED_STATUSES
