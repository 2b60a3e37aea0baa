"""Settlement engine.

Turns business events (payment confirmed, order delivered, order cancelled
or returned) into ledger transactions, at most once per order per event.
Per order the seller amount moves through::

    uncredited -> pending_credited -> released
                        |
                        +-> reversed

The order row itself is the idempotency guard (``settlement_state`` and
``wallet_credited``); the ledger's idempotency keys are a second line of
defence. Events may arrive in any order and any number of times.
A return after release is never auto-reversed: it is queued for an operator
and ``ReversalAfterRelease`` is raised.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from flask import current_app

from marketplace.extensions import db
from marketplace.models.admin_earning import AdminEarning
from marketplace.models.order import (
    Order,
    CLOSED_STATUSES,
    UNCREDITED,
    PENDING_CREDITED,
    RELEASED,
    REVERSED,
)
from marketplace.models.reconciliation_item import REVERSAL_AFTER_RELEASE, PAYMENT_AFTER_CANCELLATION
from marketplace.models.settlement_event_log import SettlementEventLog
from marketplace.models.wallet_transaction import CREDIT_PENDING, RELEASE_TO_AVAILABLE, REVERSAL
from marketplace.services.reconciliation_service import open_item
from marketplace.services.wallet_service import TransactionIntent, apply_transaction, atomic
from marketplace.utils.dates import utcnow
from marketplace.utils.exceptions import NotFound, ReversalAfterRelease, ValidationError
from marketplace.utils.money import CENTS, split_commission, to_money

logger = logging.getLogger(__name__)

PAYMENT_CONFIRMED = "payment_confirmed"
ORDER_DELIVERED = "order_delivered"
ORDER_CANCELLED = "order_cancelled"
ORDER_RETURNED = "order_returned"

APPLIED = "applied"
NOOP = "noop"
FLAGGED = "flagged"


@dataclass(frozen=True)
class SettlementResult:
    order_id: str
    event_type: str
    outcome: str
    reason: Optional[str] = None
    settlement_state: Optional[str] = None

    @property
    def applied(self):
        return self.outcome == APPLIED

    def to_dict(self):
        return {
            "order_id": self.order_id,
            "event": self.event_type,
            "outcome": self.outcome,
            "reason": self.reason,
            "settlement_state": self.settlement_state,
        }


def _load_order(order_id):
    order = (
        Order.query
        .filter_by(id=order_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not order:
        raise NotFound(f"Order {order_id} not found")
    return order


def _finish(order, event_type, source, actor_id, outcome, reason):
    db.session.add(SettlementEventLog(
        order_id=order.id,
        event_type=event_type,
        source=source,
        actor_id=actor_id,
        outcome=outcome,
        detail=reason,
        created_at=utcnow(),
    ))
    if outcome == APPLIED:
        logger.info("%s for order %s applied (%s) via %s", event_type, order.id, reason, source)
    else:
        logger.warning("%s for order %s was a %s (%s) via %s", event_type, order.id, outcome, reason, source)
    return SettlementResult(order.id, event_type, outcome, reason, order.settlement_state)


def _freeze_split(order):
    if order.seller_amount is not None and order.commission_amount is not None:
        if order.commission_rate is None:
            total = to_money(order.total_amount)
            order.commission_rate = (
                (to_money(order.commission_amount) * 100 / total).quantize(CENTS) if total > 0 else Decimal("0")
            )
        return
    rate = order.commission_rate
    if rate is None:
        rate = Decimal(str(current_app.config.get("COMMISSION_RATE", 5.0)))
    commission, seller_amount = split_commission(order.total_amount, rate)
    order.commission_rate = rate
    order.commission_amount = commission
    order.seller_amount = seller_amount


def _mark_paid(order, gateway_payment_id=None):
    if order.payment_status != "paid":
        order.payment_status = "paid"
        order.paid_at = utcnow()
    if gateway_payment_id and not order.gateway_payment_id:
        order.gateway_payment_id = gateway_payment_id


def _credit_pending(order, actor_id):
    _freeze_split(order)
    amount = to_money(order.seller_amount)
    if amount > 0:
        apply_transaction(TransactionIntent(
            seller_id=order.seller_id,
            kind=CREDIT_PENDING,
            amount=amount,
            order_id=order.id,
            idempotency_key=f"{CREDIT_PENDING}:{order.id}",
            description=f"Payment received for order {order.id} - pending delivery confirmation",
            reference_type="order",
            reference_id=order.id,
            created_by=actor_id,
        ))

    if not AdminEarning.query.filter_by(order_id=order.id).first():
        db.session.add(AdminEarning(
            order_id=order.id,
            seller_id=order.seller_id,
            order_amount=order.total_amount,
            commission_rate=order.commission_rate,
            commission_amount=order.commission_amount,
            seller_amount=order.seller_amount,
            status="earned",
            earned_at=utcnow(),
        ))

    order.settlement_state = PENDING_CREDITED
    order.credited_at = utcnow()


def _release(order, actor_id):
    amount = to_money(order.seller_amount)
    if amount > 0:
        apply_transaction(TransactionIntent(
            seller_id=order.seller_id,
            kind=RELEASE_TO_AVAILABLE,
            amount=amount,
            order_id=order.id,
            idempotency_key=f"{RELEASE_TO_AVAILABLE}:{order.id}",
            description=f"Order {order.id} delivered - funds released",
            reference_type="order",
            reference_id=order.id,
            created_by=actor_id,
        ))
    order.wallet_credited = True
    order.settlement_state = RELEASED
    order.released_at = utcnow()


@atomic
def on_payment_confirmed(order_id, source="internal", actor_id=None, gateway_payment_id=None):
    order = _load_order(order_id)

    if order.is_cod:
        return _finish(order, PAYMENT_CONFIRMED, source, actor_id, NOOP, "cod_settles_on_delivery")

    if order.settlement_state != UNCREDITED:
        return _finish(order, PAYMENT_CONFIRMED, source, actor_id, NOOP, f"already_{order.settlement_state}")

    _mark_paid(order, gateway_payment_id)

    if order.is_closed:
        # Money was taken for an order that no longer ships: refund is an operator call
        open_item(
            PAYMENT_AFTER_CANCELLATION,
            seller_id=order.seller_id,
            order_id=order.id,
            amount=order.total_amount,
            details={"order_status": order.status, "gateway_payment_id": order.gateway_payment_id},
        )
        return _finish(order, PAYMENT_CONFIRMED, source, actor_id, FLAGGED, "order_closed")

    _credit_pending(order, actor_id)

    # Delivery was reported before the payment confirmation got here
    if order.status == "delivered":
        _release(order, actor_id)
        return _finish(order, PAYMENT_CONFIRMED, source, actor_id, APPLIED, "credited_and_released")

    return _finish(order, PAYMENT_CONFIRMED, source, actor_id, APPLIED, "credited_pending")


@atomic
def on_order_delivered(order_id, source="internal", actor_id=None, delivered_at=None):
    order = _load_order(order_id)

    if order.is_closed:
        return _finish(order, ORDER_DELIVERED, source, actor_id, NOOP, "order_closed")

    if order.status != "delivered":
        order.status = "delivered"
        order.delivered_at = delivered_at or utcnow()

    if order.wallet_credited or order.settlement_state == RELEASED:
        return _finish(order, ORDER_DELIVERED, source, actor_id, NOOP, "already_released")
    if order.settlement_state == REVERSED:
        return _finish(order, ORDER_DELIVERED, source, actor_id, NOOP, "already_reversed")

    if order.settlement_state == UNCREDITED:
        if order.is_cod:
            _mark_paid(order)
            _credit_pending(order, actor_id)
            _release(order, actor_id)
            return _finish(order, ORDER_DELIVERED, source, actor_id, APPLIED, "cod_settled")
        if order.payment_status != "paid":
            return _finish(order, ORDER_DELIVERED, source, actor_id, NOOP, "awaiting_payment")
        _credit_pending(order, actor_id)

    _release(order, actor_id)
    return _finish(order, ORDER_DELIVERED, source, actor_id, APPLIED, "released")


@atomic
def on_order_cancelled_or_returned(order_id, status="cancelled", source="internal", actor_id=None, reason=None):
    if status not in CLOSED_STATUSES:
        raise ValidationError(message=f"Unsupported closing status: {status}")

    event_type = ORDER_CANCELLED if status == "cancelled" else ORDER_RETURNED
    order = _load_order(order_id)
    order.status = status

    if order.settlement_state == RELEASED:
        open_item(
            REVERSAL_AFTER_RELEASE,
            seller_id=order.seller_id,
            order_id=order.id,
            amount=order.seller_amount,
            details={"status": status, "reason": reason, "released_at": str(order.released_at)},
        )
        _finish(order, event_type, source, actor_id, FLAGGED, "released_before_reversal")
        db.session.commit()
        raise ReversalAfterRelease(order.id, details={"seller_id": order.seller_id})

    if order.settlement_state == UNCREDITED:
        return _finish(order, event_type, source, actor_id, NOOP, "nothing_to_reverse")
    if order.settlement_state == REVERSED:
        return _finish(order, event_type, source, actor_id, NOOP, "already_reversed")

    amount = to_money(order.seller_amount)
    if amount > 0:
        apply_transaction(TransactionIntent(
            seller_id=order.seller_id,
            kind=REVERSAL,
            amount=-amount,
            order_id=order.id,
            idempotency_key=f"{REVERSAL}:{order.id}",
            description=f"Order {status.upper()} - funds reversed" + (f": {reason}" if reason else ""),
            reference_type="order",
            reference_id=order.id,
            created_by=actor_id,
        ))

    earning = AdminEarning.query.filter_by(order_id=order.id).first()
    if earning and earning.status != "reversed":
        earning.status = "reversed"
        earning.reversed_at = utcnow()

    order.settlement_state = REVERSED
    return _finish(order, event_type, source, actor_id, APPLIED, "reversed_pending")
