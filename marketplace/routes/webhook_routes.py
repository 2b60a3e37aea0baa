from flask import Blueprint, current_app, request

from marketplace.services import event_service
from marketplace.utils.exceptions import ReconciliationRequired
from marketplace.utils.response_formatter import error_response, success_response

bp = Blueprint("webhooks", __name__, url_prefix="/api/v1/webhooks")


@bp.route("/delivery-updates", methods=["GET"])
def delivery_webhook_ping():
    return success_response({"status": "ok"}, "Webhook endpoint reachable")


@bp.route("/delivery-updates", methods=["POST"])
def delivery_webhook():
    """Courier status push. Answers 200 for anything the courier should not retry."""
    parsed = event_service.parse_courier_webhook(
        request.get_data(),
        request.headers.get("X-Courier-Signature"),
        current_app.config.get("COURIER_WEBHOOK_SECRET"),
    )
    if not parsed.ok:
        return error_response(parsed.error.code, parsed.error.message, status=parsed.error.status)
    if parsed.value is None:
        return success_response({"status": "ok"}, "Webhook received")

    event = parsed.value
    try:
        result = event_service.dispatch(event)
    except ReconciliationRequired as e:
        # Queued for an operator; retrying would not change anything
        current_app.logger.warning("Courier update for order %s needs review: %s", event.order_id, e.message)
        return success_response({"status": "flagged", "code": e.code})

    current_app.logger.info(
        "Courier update for order %s (%s): %s",
        event.order_id, event.payload.get("shipment_status"), result.outcome,
    )
    return success_response({"status": "processed", "result": result.to_dict()})
