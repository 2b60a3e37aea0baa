from flask import Blueprint, current_app, request

from marketplace.services import event_service
from marketplace.utils.identity import current_identity, role_required
from marketplace.utils.response_formatter import error_response, success_response

bp = Blueprint("payments", __name__, url_prefix="/api/v1/payments")


@bp.route("/verify", methods=["POST"])
@role_required("buyer")
def verify_payment():
    data = request.get_json(silent=True) or {}

    verified = event_service.verify_payment_event(data, current_identity())
    if not verified.ok:
        return error_response(verified.error.code, verified.error.message, status=verified.error.status)

    result = event_service.dispatch(verified.value)
    current_app.logger.info("Payment verified for order %s: %s", result.order_id, result.reason)
    return success_response({"result": result.to_dict()}, "Payment verified successfully")
