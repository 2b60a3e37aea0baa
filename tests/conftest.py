from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from marketplace.extensions import db
from marketplace.main import create_app
from marketplace.models.order import Order
from marketplace.models.seller_profile import SellerProfile
from marketplace.models.user import User
from marketplace.utils.exceptions import PayoutDeclined, PayoutTimeout


class FakePayoutGateway:
    """Records payouts; behaviour is 'ok', 'declined' or 'timeout'."""

    def __init__(self):
        self.behaviour = "ok"
        self.calls = []

    def create_payout(self, destination, amount, reference):
        self.calls.append({"destination": destination, "amount": amount, "reference": reference})
        if self.behaviour == "declined":
            raise PayoutDeclined("Beneficiary bank rejected the transfer")
        if self.behaviour == "timeout":
            raise PayoutTimeout(details={"reference": reference})
        return {"payout_id": f"pout_{len(self.calls)}", "status": "processing"}


class FakeCourierClient:
    def __init__(self):
        self.shipments = []
        self.awb_code = "AWB123456"

    def create_shipment(self, order, pickup_location, delivery_address, items):
        self.shipments.append(order.id)
        return {
            "shipment_id": f"SHP-{len(self.shipments)}",
            "tracking_code": self.awb_code,
            "courier_name": "Delhivery" if self.awb_code else "Pending Assignment",
            "tracking_url": f"https://shiprocket.co/tracking/{self.awb_code}" if self.awb_code else None,
        }


@pytest.fixture
def app():
    app = create_app("testing")
    app.extensions["payout_gateway"] = FakePayoutGateway()
    app.extensions["courier_client"] = FakeCourierClient()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def payout_gateway(app):
    return app.extensions["payout_gateway"]


@pytest.fixture
def courier(app):
    return app.extensions["courier_client"]


def make_user(role, email=None):
    user = User(email=email or f"{role}-{User.query.count()}@example.com", full_name=f"Test {role}", role=role)
    db.session.add(user)
    db.session.commit()
    return user


def make_order(seller, buyer=None, total="1000.00", payment_method="online", **kwargs):
    order = Order(
        seller_id=seller.id,
        buyer_id=buyer.id if buyer else None,
        total_amount=Decimal(total),
        payment_method=payment_method,
        delivery_address={"name": "Asha", "address": "12 MG Road", "city": "Pune", "pincode": "411001"},
        items=[{"name": "Handmade mug", "sku": "MUG-1", "quantity": 1, "price": total}],
        **kwargs,
    )
    db.session.add(order)
    db.session.commit()
    return order


@pytest.fixture
def seller(app):
    return make_user("seller", "seller@example.com")


@pytest.fixture
def buyer(app):
    return make_user("buyer", "buyer@example.com")


@pytest.fixture
def admin(app):
    return make_user("admin", "admin@example.com")


@pytest.fixture
def kyc(seller):
    profile = SellerProfile(
        user_id=seller.id,
        business_name="Clay Works",
        account_number="123456789012",
        routing_code="HDFC0001234",
        account_holder_name="Clay Works Pvt Ltd",
    )
    db.session.add(profile)
    db.session.commit()
    return profile


@pytest.fixture
def order(seller, buyer):
    return make_order(seller, buyer, gateway_order_id="gw_order_1")


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(identity=user.id)}"}


@pytest.fixture
def seller_headers(seller):
    return auth_headers(seller)


@pytest.fixture
def buyer_headers(buyer):
    return auth_headers(buyer)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def internal_headers(app):
    return {"X-Internal-Key": app.config["INTERNAL_API_KEY"]}
