from flask import Blueprint, current_app

from marketplace.extensions import db
from marketplace.models.order import Order
from marketplace.models.seller_profile import SellerProfile
from marketplace.schemas.order_schema import OrderSettlementSchema
from marketplace.services.courier_service import get_courier_client
from marketplace.services.notification_service import send_notification_to_user
from marketplace.utils.dates import utcnow
from marketplace.utils.exceptions import InvalidStateTransition
from marketplace.utils.identity import current_identity, role_required
from marketplace.utils.response_formatter import error_response, success_response

bp = Blueprint("shipments", __name__, url_prefix="/api/v1/orders")

order_schema = OrderSettlementSchema()


@bp.route("/<order_id>/shipment", methods=["POST"])
@role_required("seller", "admin")
def create_shipment(order_id):
    identity = current_identity()
    order = db.session.get(Order, order_id)
    if not order:
        return error_response("NOT_FOUND", "Order not found", status=404)
    if identity.role == "seller" and order.seller_id != identity.user_id:
        return error_response("FORBIDDEN", "Order belongs to another seller", status=403)

    # Courier already has it
    if order.shipment_id:
        return success_response({"order": order_schema.dump(order)}, "Shipment already exists")

    if order.is_closed:
        raise InvalidStateTransition(f"Order {order.id} is {order.status}")
    if not order.is_cod and order.payment_status != "paid":
        raise InvalidStateTransition(f"Order {order.id} has not been paid")

    profile = db.session.get(SellerProfile, order.seller_id)
    shipment = get_courier_client().create_shipment(
        order,
        profile.pickup_location if profile else None,
        order.delivery_address or {},
        order.items or [],
    )

    order.shipment_id = shipment["shipment_id"]
    order.awb_code = shipment["tracking_code"]
    order.courier_name = shipment["courier_name"]
    order.tracking_url = shipment["tracking_url"]
    order.shipment_status = "AWB Assigned" if order.awb_code else "Created"
    order.status = "dispatched" if order.awb_code else "confirmed"
    order.updated_at = utcnow()
    db.session.commit()

    current_app.logger.info("Shipment %s created for order %s", order.shipment_id, order.id)
    if order.buyer_id:
        send_notification_to_user(
            order.buyer_id,
            "Order Shipped" if order.awb_code else "Order Confirmed",
            f"Your order {order.id} is on its way." if order.awb_code else f"Your order {order.id} has been confirmed.",
            notif_type="info",
            details={"order_id": order.id, "tracking_url": order.tracking_url},
        )

    return success_response({"order": order_schema.dump(order)}, "Shipment created", status=201)
