from datetime import timedelta

from flask import Blueprint, current_app, request
from sqlalchemy import func, or_

from marketplace.extensions import db
from marketplace.models.admin_earning import AdminEarning
from marketplace.models.order import Order
from marketplace.models.reconciliation_item import KINDS as RECONCILIATION_KINDS
from marketplace.models.user import User
from marketplace.models.withdrawal_request import WithdrawalRequest
from marketplace.schemas.earning_schema import AdminEarningSchema
from marketplace.schemas.order_schema import OrderSettlementSchema
from marketplace.schemas.reconciliation_schema import ReconciliationItemSchema
from marketplace.schemas.withdrawal_schema import AdminWithdrawalSchema
from marketplace.services import event_service, reconciliation_service
from marketplace.services.wallet_service import reconcile_wallet
from marketplace.utils.dates import utcnow
from marketplace.utils.identity import current_identity, role_required
from marketplace.utils.money import ZERO, to_money
from marketplace.utils.pagination import page_args, paginate_query
from marketplace.utils.response_formatter import error_response, success_response

bp = Blueprint("admin_payments", __name__, url_prefix="/api/v1/admin")

withdrawals_schema = AdminWithdrawalSchema(many=True)
earnings_schema = AdminEarningSchema(many=True)
item_schema = ReconciliationItemSchema()
items_schema = ReconciliationItemSchema(many=True)
order_schema = OrderSettlementSchema()

PERIODS = {
    "today": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


# ==========================================================
#  GET /admin/withdrawals
#  Filters:
#    page, limit
#    status=pending|approved|processing|completed|failed|rejected
#    search (seller name or email)
# ==========================================================
@bp.route("/withdrawals", methods=["GET"])
@role_required("admin")
def admin_list_withdrawals():
    status = request.args.get("status")
    search = request.args.get("search")

    q = WithdrawalRequest.query.join(User, WithdrawalRequest.seller_id == User.id)
    if status:
        q = q.filter(WithdrawalRequest.status == status)
    if search:
        q = q.filter(
            or_(
                User.full_name.ilike(f"%{search}%"),
                User.email.ilike(f"%{search}%")
            )
        )

    page, limit = page_args()
    items, pagination = paginate_query(q.order_by(WithdrawalRequest.requested_at.desc()), page, limit)
    return success_response({
        "withdrawals": withdrawals_schema.dump(items),
        "pagination": pagination,
    })


# ==========================================================
#  GET /admin/earnings?period=today|week|month|year|all&status=earned|reversed
# ==========================================================
@bp.route("/earnings", methods=["GET"])
@role_required("admin")
def admin_earnings():
    period = request.args.get("period", "all")
    status = request.args.get("status")
    if period != "all" and period not in PERIODS:
        return error_response("VALIDATION_ERROR", f"Unknown period: {period}", status=400)

    q = AdminEarning.query
    if period != "all":
        q = q.filter(AdminEarning.earned_at >= utcnow() - PERIODS[period])
    if status:
        q = q.filter(AdminEarning.status == status)

    totals = (
        q.with_entities(
            func.count(AdminEarning.id),
            func.coalesce(func.sum(AdminEarning.order_amount), 0),
            func.coalesce(func.sum(AdminEarning.commission_amount), 0),
        )
        .filter(AdminEarning.status == "earned")
        .one()
    )

    page, limit = page_args()
    items, pagination = paginate_query(q.order_by(AdminEarning.earned_at.desc()), page, limit)
    return success_response({
        "earnings": earnings_schema.dump(items),
        "summary": {
            "period": period,
            "orders": totals[0],
            "gross_order_value": str(to_money(totals[1] or ZERO)),
            "commission_earned": str(to_money(totals[2] or ZERO)),
        },
        "pagination": pagination,
    })


@bp.route("/reconciliation", methods=["GET"])
@role_required("admin")
def list_reconciliation_items():
    status = request.args.get("status", "open")
    kind = request.args.get("kind")
    if kind and kind not in RECONCILIATION_KINDS:
        return error_response("VALIDATION_ERROR", f"Unknown kind: {kind}", status=400)

    page, limit = page_args()
    q = reconciliation_service.items_query(status=None if status == "all" else status, kind=kind)
    items, pagination = paginate_query(q, page, limit)
    return success_response({"items": items_schema.dump(items), "pagination": pagination})


@bp.route("/reconciliation/<item_id>/resolve", methods=["POST"])
@role_required("admin")
def resolve_reconciliation_item(item_id):
    data = request.get_json(silent=True) or {}
    resolution = (data.get("resolution") or "").strip()
    if not resolution:
        return error_response("VALIDATION_ERROR", "resolution is required", status=400)

    item = reconciliation_service.resolve_item(item_id, current_identity().user_id, resolution)
    return success_response({"item": item_schema.dump(item)}, "Item resolved")


@bp.route("/wallets/<seller_id>/audit", methods=["GET"])
@role_required("admin")
def audit_wallet(seller_id):
    if not db.session.get(User, seller_id):
        return error_response("NOT_FOUND", "Seller not found", status=404)

    report = reconcile_wallet(seller_id)
    if not report["balanced"]:
        current_app.logger.error("Wallet audit mismatch for seller %s", seller_id)
    return success_response({"audit": {k: str(v) if k != "balanced" else v for k, v in report.items()}})


# ==========================================================
#  POST /admin/orders/<id>/status
#  body: {"status": "...", "payment_status": "paid", "note": "..."}
# ==========================================================
@bp.route("/orders/<order_id>/status", methods=["POST"])
@role_required("admin")
def override_order_status(order_id):
    data = request.get_json(silent=True) or {}
    verified = event_service.admin_override_events(order_id, data, current_identity())
    if not verified.ok:
        return error_response(verified.error.code, verified.error.message, status=verified.error.status)

    results = event_service.dispatch_all(verified.value)
    current_app.logger.info(
        "Admin %s overrode order %s: %s",
        current_identity().user_id, order_id, ", ".join(r.outcome for r in results),
    )
    order = db.session.get(Order, order_id)
    return success_response({
        "result": results[-1].to_dict(),
        "results": [r.to_dict() for r in results],
        "order": order_schema.dump(order),
    })
