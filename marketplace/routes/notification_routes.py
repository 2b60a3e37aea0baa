from flask import Blueprint, request

from marketplace.extensions import db
from marketplace.models.notification import Notification
from marketplace.schemas.notification_schema import NotificationSchema
from marketplace.services.notification_service import get_user_notifications, mark_notification_read
from marketplace.utils.identity import current_identity, role_required
from marketplace.utils.pagination import page_args, paginate_query
from marketplace.utils.response_formatter import error_response, success_response

bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")

notification_schema = NotificationSchema()
notifications_schema = NotificationSchema(many=True)


@bp.route("", methods=["GET"])
@role_required()
def get_notifications():
    is_read = request.args.get("is_read")
    if is_read is not None:
        is_read = is_read.lower() in ("1", "true", "yes")

    page, limit = page_args()
    q = get_user_notifications(current_identity().user_id, is_read=is_read)
    items, pagination = paginate_query(q, page, limit)
    return success_response({
        "notifications": notifications_schema.dump(items),
        "pagination": pagination,
    })


@bp.route("/<notif_id>/read", methods=["PATCH"])
@role_required()
def mark_read(notif_id):
    notif = db.session.get(Notification, notif_id)
    if not notif or notif.user_id != current_identity().user_id:
        return error_response("NOT_FOUND", "Notification not found", status=404)

    mark_notification_read(notif)
    return success_response({"notification": notification_schema.dump(notif)})
