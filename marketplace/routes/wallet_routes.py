from flask import Blueprint, current_app, request

from marketplace.schemas.wallet_schema import WalletSchema, WalletTransactionSchema
from marketplace.services import event_service, settlement_service
from marketplace.services.wallet_service import transactions_query, wallet_summary
from marketplace.models.wallet_transaction import KINDS
from marketplace.utils.identity import current_identity, internal_required, role_required
from marketplace.utils.pagination import page_args, paginate_query
from marketplace.utils.response_formatter import error_response, success_response

bp = Blueprint("wallet", __name__, url_prefix="/api/v1/wallet")

wallet_schema = WalletSchema()
transactions_schema = WalletTransactionSchema(many=True)


@bp.route("", methods=["GET"])
@role_required("seller")
def get_wallet():
    summary = wallet_summary(current_identity().user_id)
    return success_response({"wallet": wallet_schema.dump(summary)})


@bp.route("/transactions", methods=["GET"])
@role_required("seller")
def list_transactions():
    tx_type = request.args.get("type")
    if tx_type and tx_type not in KINDS:
        return error_response("VALIDATION_ERROR", f"Unknown transaction type: {tx_type}", status=400)

    page, limit = page_args()
    items, pagination = paginate_query(transactions_query(current_identity().user_id, tx_type), page, limit)
    return success_response({
        "transactions": transactions_schema.dump(items),
        "pagination": pagination,
    })


def _order_id_from_body():
    data = request.get_json(silent=True) or {}
    order_id = data.get("order_id")
    if not order_id:
        return None, error_response("VALIDATION_ERROR", "order_id is required", status=400)
    return str(order_id), None


# ==========================================================
#  POST /wallet/credit   (payment confirmed by a trusted caller)
#  POST /wallet/release  (delivery confirmed by a trusted caller)
#  Both are safe to retry.
# ==========================================================
@bp.route("/credit", methods=["POST"])
@internal_required
def credit():
    order_id, err = _order_id_from_body()
    if err:
        return err

    event = event_service.internal_event(settlement_service.PAYMENT_CONFIRMED, order_id, current_identity().user_id)
    result = event_service.dispatch(event)
    current_app.logger.info("Internal credit for order %s: %s", order_id, result.outcome)
    return success_response({"result": result.to_dict()})


@bp.route("/release", methods=["POST"])
@internal_required
def release():
    order_id, err = _order_id_from_body()
    if err:
        return err

    event = event_service.internal_event(settlement_service.ORDER_DELIVERED, order_id, current_identity().user_id)
    result = event_service.dispatch(event)
    current_app.logger.info("Internal release for order %s: %s", order_id, result.outcome)
    return success_response({"result": result.to_dict()})
