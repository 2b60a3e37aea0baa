from marketplace.extensions import db
from marketplace.utils.dates import utcnow

class Wallet(db.Model):
    __tablename__ = "wallets"
    __table_args__ = (
        db.CheckConstraint("pending_balance >= 0", name="ck_wallet_pending_non_negative"),
        db.CheckConstraint("available_balance >= 0", name="ck_wallet_available_non_negative"),
    )

    id = db.Column(db.String(50), primary_key=True)
    seller_id = db.Column(db.String(50), db.ForeignKey("users.id"), unique=True, nullable=False)

    pending_balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    available_balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency = db.Column(db.String(10), default="INR")

    # Bumped by SQLAlchemy on every UPDATE; a stale writer gets StaleDataError
    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    seller = db.relationship("User", backref=db.backref("wallet", uselist=False))

    __mapper_args__ = {"version_id_col": version}
