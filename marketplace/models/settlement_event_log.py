from marketplace.extensions import db
from marketplace.utils.dates import utcnow
import uuid

def gen_event_id():
    return f"evt_{uuid.uuid4().hex[:12]}"

class SettlementEventLog(db.Model):
    __tablename__ = "settlement_events"

    id = db.Column(db.String(50), primary_key=True, default=gen_event_id)
    order_id = db.Column(db.String(50), db.ForeignKey("orders.id"), index=True)
    event_type = db.Column(db.String(50), nullable=False)
    source = db.Column(db.String(50), nullable=False)
    actor_id = db.Column(db.String(50))
    outcome = db.Column(db.String(20), nullable=False)
    detail = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utcnow)
