from marketplace.extensions import db
from marketplace.utils.dates import utcnow
import uuid

ROLES = ("buyer", "seller", "admin")

def gen_uuid(prefix=None):
    uid = str(uuid.uuid4())
    return f"{prefix}-{uid}" if prefix else uid

class User(db.Model):
    """Local view of an identity owned by the auth provider."""
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint(f"role IN {ROLES}", name="ck_users_role"),
    )

    id = db.Column(db.String(50), primary_key=True, default=lambda: gen_uuid("usr"))
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(255))
    role = db.Column(db.String(20), nullable=False, default="buyer")
    joined_at = db.Column(db.DateTime, default=utcnow)
