from marketplace.extensions import db
from marketplace.utils.dates import utcnow

class SellerProfile(db.Model):
    __tablename__ = "seller_profiles"

    user_id = db.Column(db.String(50), db.ForeignKey("users.id"), primary_key=True)
    business_name = db.Column(db.String(255))

    # KYC bank details, the payout destination of record
    account_number = db.Column(db.String(32))
    routing_code = db.Column(db.String(11))
    account_holder_name = db.Column(db.String(255))

    pickup_location = db.Column(db.String(100), default="Primary")

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", backref=db.backref("seller_profile", uselist=False))

    @property
    def kyc_complete(self):
        return bool(self.account_number and self.routing_code and self.account_holder_name)
