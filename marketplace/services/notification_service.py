from marketplace.extensions import db
from marketplace.models.notification import Notification
from marketplace.utils.dates import utcnow

def get_user_notifications(user_id, is_read=None):
    q = Notification.query.filter_by(user_id=user_id)
    if is_read is not None:
        q = q.filter_by(is_read=is_read)
    return q.order_by(Notification.created_at.desc())

def mark_notification_read(notification):
    notification.is_read = True
    db.session.commit()
    return notification

def send_notification_to_user(
    user_id: str,
    title: str,
    message: str,
    notif_type="info",
    details=None,
):
    notif = Notification(
        user_id=user_id,
        type=notif_type,
        title=title,
        message=message,
        details=details,
        created_at=utcnow(),
    )
    db.session.add(notif)
    db.session.commit()
    return notif
