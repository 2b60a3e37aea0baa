from flask import Blueprint, current_app, request

from marketplace.models.withdrawal_request import COMPLETED, FAILED, PROCESSING, OPEN_STATUSES, TERMINAL_STATUSES
from marketplace.schemas.withdrawal_schema import WithdrawalSchema
from marketplace.services import withdrawal_service
from marketplace.utils.identity import current_identity, role_required
from marketplace.utils.pagination import page_args, paginate_query
from marketplace.utils.response_formatter import error_response, success_response

bp = Blueprint("withdrawals", __name__, url_prefix="/api/v1/withdrawals")

withdrawal_schema = WithdrawalSchema()
withdrawals_schema = WithdrawalSchema(many=True)


@bp.route("", methods=["POST"])
@role_required("seller")
def create_withdrawal():
    data = request.get_json(silent=True) or {}
    if data.get("amount") is None:
        return error_response("validation_error", "amount is required", status=400)

    wr = withdrawal_service.request_withdrawal(
        current_identity().user_id,
        data.get("amount"),
        data,
        notes=data.get("notes"),
    )
    return success_response(
        {"withdrawal": withdrawal_schema.dump(wr)},
        "Withdrawal request submitted. It will be processed after admin approval.",
        status=201,
    )


@bp.route("", methods=["GET"])
@role_required("seller")
def list_withdrawals():
    status = request.args.get("status")
    if status and status not in OPEN_STATUSES + TERMINAL_STATUSES:
        return error_response("VALIDATION_ERROR", f"Unknown status: {status}", status=400)

    page, limit = page_args()
    q = withdrawal_service.withdrawals_query(seller_id=current_identity().user_id, status=status)
    items, pagination = paginate_query(q, page, limit)
    return success_response({
        "withdrawals": withdrawals_schema.dump(items),
        "pagination": pagination,
    })


# ==========================================================
#  POST /withdrawals/<id>/approve
#  body: {"action": "approve" | "reject", "reason": "..."}
#  200 completed / rejected, 202 processing, 502 payout failed
# ==========================================================
@bp.route("/<wid>/approve", methods=["POST"])
@role_required("admin")
def process_withdrawal(wid):
    data = request.get_json(silent=True) or {}
    action = data.get("action", "approve")
    admin_id = current_identity().user_id

    if action == "reject":
        wr = withdrawal_service.reject_withdrawal(wid, admin_id, data.get("reason"))
        return success_response({"withdrawal": withdrawal_schema.dump(wr)}, "Withdrawal rejected")
    if action != "approve":
        return error_response("VALIDATION_ERROR", "action must be 'approve' or 'reject'", status=400)

    wr = withdrawal_service.approve_withdrawal(wid, admin_id)
    body = {"withdrawal": withdrawal_schema.dump(wr)}

    if wr.status == COMPLETED:
        return success_response(body, "Withdrawal approved and paid")
    if wr.status == PROCESSING:
        current_app.logger.warning("Withdrawal %s accepted, payout outcome pending confirmation", wr.id)
        return success_response(body, "Payout submitted; awaiting confirmation", status=202)
    if wr.status == FAILED and wr.failure_reason == withdrawal_service.INSUFFICIENT_AT_APPROVAL:
        return error_response("insufficient_balance", wr.failure_reason, details=body, status=400)
    return error_response("PAYOUT_FAILED", wr.failure_reason or "Payout failed", details=body, status=502)


@bp.route("/<wid>/resolve", methods=["POST"])
@role_required("admin")
def resolve_withdrawal(wid):
    data = request.get_json(silent=True) or {}
    wr = withdrawal_service.resolve_processing_withdrawal(
        wid,
        current_identity().user_id,
        data.get("outcome"),
        payout_id=data.get("payout_id"),
        reason=data.get("reason"),
    )
    message = "Withdrawal marked completed" if wr.status == COMPLETED else "Withdrawal marked failed"
    return success_response({"withdrawal": withdrawal_schema.dump(wr)}, message)
