import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from marketplace.extensions import db
from marketplace.models.order import Order
from marketplace.models.reconciliation_item import ReconciliationItem, STUCK_RELEASE
from marketplace.models.wallet import Wallet
from marketplace.services.wallet_service import reconcile_wallet
from marketplace.utils.dates import utcnow
from marketplace.utils.exceptions import InvalidStateTransition, NotFound

logger = logging.getLogger(__name__)


def open_item(kind, seller_id=None, order_id=None, withdrawal_id=None, amount=None, details=None):
    """Queue a situation for an operator. Re-opening the same subject reuses the open item."""
    existing = ReconciliationItem.query.filter_by(
        kind=kind, status="open", order_id=order_id, withdrawal_id=withdrawal_id
    ).first()
    if existing:
        return existing

    item = ReconciliationItem(
        kind=kind,
        seller_id=seller_id,
        order_id=order_id,
        withdrawal_id=withdrawal_id,
        amount=amount,
        details=details or {},
        created_at=utcnow(),
    )
    db.session.add(item)
    db.session.flush()
    logger.warning(
        "Reconciliation item %s opened: kind=%s order=%s withdrawal=%s",
        item.id, kind, order_id, withdrawal_id,
    )
    return item


def resolve_open_items(admin_id, resolution, order_id=None, withdrawal_id=None, kind=None):
    q = ReconciliationItem.query.filter_by(status="open")
    if order_id:
        q = q.filter_by(order_id=order_id)
    if withdrawal_id:
        q = q.filter_by(withdrawal_id=withdrawal_id)
    if kind:
        q = q.filter_by(kind=kind)
    items = q.all()
    for item in items:
        _close(item, admin_id, resolution)
    return items


def _close(item, admin_id, resolution):
    item.status = "resolved"
    item.resolved_at = utcnow()
    item.resolved_by = admin_id
    item.resolution = resolution


def resolve_item(item_id, admin_id, resolution):
    item = db.session.get(ReconciliationItem, item_id)
    if not item:
        raise NotFound("Reconciliation item not found")
    if item.status != "open":
        raise InvalidStateTransition(f"Item already {item.status}")
    _close(item, admin_id, resolution)
    db.session.commit()
    logger.info("Reconciliation item %s resolved by %s", item.id, admin_id)
    return item


def items_query(status=None, kind=None):
    q = ReconciliationItem.query
    if status:
        q = q.filter_by(status=status)
    if kind:
        q = q.filter_by(kind=kind)
    return q.order_by(ReconciliationItem.created_at.desc())


def find_stuck_releases(older_than_hours=None, now=None):
    """Paid and delivered orders whose seller funds never left pending."""
    if older_than_hours is None:
        older_than_hours = current_app.config.get("STUCK_RELEASE_THRESHOLD_HOURS", 72)
    cutoff = (now or utcnow()) - timedelta(hours=older_than_hours)
    delivered_at = func.coalesce(Order.delivered_at, Order.updated_at)
    return (
        Order.query
        .filter(
            Order.payment_status == "paid",
            Order.status == "delivered",
            Order.wallet_credited.is_(False),
            delivered_at < cutoff,
        )
        .order_by(delivered_at)
        .all()
    )


def sweep_stuck_releases(older_than_hours=None, now=None):
    """Flag every stuck order for manual release; returns the open items."""
    items = []
    for order in find_stuck_releases(older_than_hours, now):
        items.append(open_item(
            STUCK_RELEASE,
            seller_id=order.seller_id,
            order_id=order.id,
            amount=order.seller_amount,
            details={
                "settlement_state": order.settlement_state,
                "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
            },
        ))
    db.session.commit()
    if items:
        logger.warning("Sweep flagged %s order(s) with funds stuck in pending", len(items))
    return items


def audit_wallets():
    """Every wallet whose balances disagree with its ledger rows."""
    mismatches = []
    for (seller_id,) in db.session.query(Wallet.seller_id).order_by(Wallet.seller_id):
        report = reconcile_wallet(seller_id)
        if not report["balanced"]:
            logger.error("Wallet for seller %s does not reconcile: %s", seller_id, report)
            mismatches.append(report)
    return mismatches
