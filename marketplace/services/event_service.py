"""Event ingestion.

Three sources report settlement-relevant facts about an order: the buyer's
payment verification call, the courier's delivery webhook and an admin's
manual override. Each is authenticated here and turned into
``SettlementEvent`` values; ``dispatch`` hands each to the settlement engine. Source
checks report failures through ``Result`` rather than raising.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from dateutil import parser as date_parser
from dateutil import tz
from flask import current_app

from marketplace.extensions import db
from marketplace.models.order import Order, ORDER_STATUSES
from marketplace.models.settlement_event_log import SettlementEventLog
from marketplace.services import settlement_service
from marketplace.services.courier_service import map_courier_status, verify_webhook_signature
from marketplace.services.wallet_service import atomic
from marketplace.utils.dates import utcnow
from marketplace.utils.exceptions import InvalidStateTransition, NotFound
from marketplace.utils.result import Result
from marketplace.utils.signatures import payment_signature, signatures_match

logger = logging.getLogger(__name__)

PAYMENT_VERIFICATION = "payment_verification"
COURIER_WEBHOOK = "courier_webhook"
ADMIN_OVERRIDE = "admin_override"
INTERNAL = "internal"

STATUS_UPDATE = "status_update"

_STATUS_EVENTS = {
    "delivered": settlement_service.ORDER_DELIVERED,
    "cancelled": settlement_service.ORDER_CANCELLED,
    "returned": settlement_service.ORDER_RETURNED,
}

_TRACKING_FIELDS = ("shipment_status", "awb_code", "courier_name", "tracking_url")


@dataclass(frozen=True)
class SettlementEvent:
    kind: str
    order_id: str
    source: str
    actor_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    payload: dict = field(default_factory=dict)


def _event_for_status(status):
    return _STATUS_EVENTS.get(status, STATUS_UPDATE)


def verify_payment_event(data, identity):
    secret = current_app.config.get("PAYMENT_GATEWAY_KEY_SECRET")
    if not secret:
        logger.error("PAYMENT_GATEWAY_KEY_SECRET not configured")
        return Result.failure("CONFIG_ERROR", "Payment verification unavailable", 500)

    gateway_order_id = data.get("gateway_order_id")
    gateway_payment_id = data.get("gateway_payment_id")
    signature = data.get("signature")
    order_id = data.get("order_id")

    values = [gateway_order_id, gateway_payment_id, signature, order_id]
    if not all(values):
        return Result.failure("VALIDATION_ERROR", "Missing payment verification data", 400)
    if not all(isinstance(value, str) for value in values):
        return Result.failure("VALIDATION_ERROR", "Payment verification fields must be strings", 400)

    expected = payment_signature(secret, gateway_order_id, gateway_payment_id)
    if not signatures_match(expected, signature):
        logger.warning("Invalid payment signature for order %s", order_id)
        return Result.failure("INVALID_SIGNATURE", "Invalid payment signature", 400)

    order = db.session.get(Order, order_id)
    if not order:
        return Result.failure("NOT_FOUND", "Order not found", 404)
    if order.buyer_id and order.buyer_id != identity.user_id:
        return Result.failure("FORBIDDEN", "Order belongs to another buyer", 403)
    if not order.gateway_order_id:
        logger.warning("Payment verification for order %s with no gateway order on record", order.id)
        return Result.failure("VALIDATION_ERROR", "Order has no online payment to verify", 400)
    if order.gateway_order_id != gateway_order_id:
        return Result.failure("VALIDATION_ERROR", "Payment does not belong to this order", 400)

    return Result.success(SettlementEvent(
        kind=settlement_service.PAYMENT_CONFIRMED,
        order_id=order.id,
        source=PAYMENT_VERIFICATION,
        actor_id=identity.user_id,
        occurred_at=utcnow(),
        payload={"gateway_order_id": gateway_order_id, "gateway_payment_id": gateway_payment_id},
    ))


def _parse_date(value):
    if not value:
        return None
    try:
        parsed = date_parser.parse(str(value))
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is not None:
        # Stored timestamps are naive UTC
        parsed = parsed.astimezone(tz.UTC).replace(tzinfo=None)
    return parsed


def parse_courier_webhook(raw_body, signature, secret):
    """Authenticate a courier webhook. Success with no value means a ping."""
    text = raw_body.decode("utf-8", errors="replace").strip() if raw_body else ""
    if not text or text == "{}":
        return Result.success(None)

    if not signature:
        logger.warning("Courier webhook without signature rejected")
        return Result.failure("UNAUTHORIZED", "Missing signature", 401)
    if not verify_webhook_signature(raw_body, signature, secret):
        logger.warning("Courier webhook with invalid signature rejected")
        return Result.failure("UNAUTHORIZED", "Invalid signature", 401)

    try:
        payload = json.loads(text)
    except ValueError:
        return Result.failure("VALIDATION_ERROR", "Malformed JSON payload", 400)
    if not isinstance(payload, dict):
        return Result.failure("VALIDATION_ERROR", "Malformed JSON payload", 400)

    order_id = payload.get("order_id")
    shipment_id = payload.get("shipment_id")
    if not order_id and not shipment_id:
        return Result.failure("VALIDATION_ERROR", "Missing order or shipment ID", 400)

    if order_id:
        order = db.session.get(Order, str(order_id))
    else:
        order = Order.query.filter_by(shipment_id=str(shipment_id)).first()
    if not order:
        return Result.failure("NOT_FOUND", "Order not found", 404)

    courier_status = payload.get("current_status")
    new_status = map_courier_status(courier_status)
    awb_code = payload.get("awb_code") or payload.get("awb")

    return Result.success(SettlementEvent(
        kind=_event_for_status(new_status),
        order_id=order.id,
        source=COURIER_WEBHOOK,
        occurred_at=_parse_date(payload.get("delivered_date")) if new_status == "delivered" else utcnow(),
        payload={
            "new_status": new_status,
            "shipment_status": courier_status,
            "awb_code": awb_code,
            "courier_name": payload.get("courier_name"),
            "tracking_url": f"https://shiprocket.co/tracking/{awb_code}" if awb_code else None,
        },
    ))


def admin_override_events(order_id, data, identity):
    """Events for an admin's manual order update, in the order they must be applied.

    A body carrying both ``payment_status`` and ``status`` yields the payment
    confirmation first, then the status event.
    """
    if identity.role != "admin":
        return Result.failure("FORBIDDEN", "Admin access required", 403)

    status = data.get("status")
    payment_status = data.get("payment_status")

    if payment_status is not None and payment_status != "paid":
        return Result.failure("VALIDATION_ERROR", "payment_status can only be set to 'paid'", 400)
    if status is None and payment_status is None:
        return Result.failure("VALIDATION_ERROR", "status or payment_status is required", 400)
    if status is not None and status not in ORDER_STATUSES:
        return Result.failure("VALIDATION_ERROR", f"Invalid status: {status}", 400)

    if not db.session.get(Order, order_id):
        return Result.failure("NOT_FOUND", "Order not found", 404)

    kinds = []
    if payment_status == "paid":
        kinds.append(settlement_service.PAYMENT_CONFIRMED)
    if status is not None:
        kinds.append(_event_for_status(status))

    now = utcnow()
    return Result.success([
        SettlementEvent(
            kind=kind,
            order_id=order_id,
            source=ADMIN_OVERRIDE,
            actor_id=identity.user_id,
            occurred_at=now,
            payload={"new_status": status, "note": data.get("note")},
        )
        for kind in kinds
    ])


@atomic
def _record_tracking(event):
    order = db.session.get(Order, event.order_id)
    if not order:
        raise NotFound(f"Order {event.order_id} not found")
    for name in _TRACKING_FIELDS:
        value = event.payload.get(name)
        if value and (name == "shipment_status" or not getattr(order, name)):
            setattr(order, name, value)


@atomic
def _apply_status_update(event):
    order = db.session.get(Order, event.order_id)
    if not order:
        raise NotFound(f"Order {event.order_id} not found")

    new_status = event.payload.get("new_status")
    outcome, detail = "noop", "tracking_only"
    if new_status:
        if order.is_closed or order.status == "delivered":
            if event.source == ADMIN_OVERRIDE:
                raise InvalidStateTransition(f"Order {order.id} is already {order.status}")
            detail = f"order_already_{order.status}"
        elif order.status != new_status:
            order.status = new_status
            outcome, detail = "applied", f"status_{new_status}"

    db.session.add(SettlementEventLog(
        order_id=order.id,
        event_type=STATUS_UPDATE,
        source=event.source,
        actor_id=event.actor_id,
        outcome=outcome,
        detail=detail,
        created_at=utcnow(),
    ))
    return settlement_service.SettlementResult(order.id, STATUS_UPDATE, outcome, detail, order.settlement_state)


def dispatch(event):
    """Route a verified event to the settlement engine."""
    if any(event.payload.get(name) for name in _TRACKING_FIELDS):
        _record_tracking(event)

    if event.kind == settlement_service.PAYMENT_CONFIRMED:
        return settlement_service.on_payment_confirmed(
            event.order_id,
            source=event.source,
            actor_id=event.actor_id,
            gateway_payment_id=event.payload.get("gateway_payment_id"),
        )
    if event.kind == settlement_service.ORDER_DELIVERED:
        return settlement_service.on_order_delivered(
            event.order_id,
            source=event.source,
            actor_id=event.actor_id,
            delivered_at=event.occurred_at,
        )
    if event.kind in (settlement_service.ORDER_CANCELLED, settlement_service.ORDER_RETURNED):
        status = "cancelled" if event.kind == settlement_service.ORDER_CANCELLED else "returned"
        return settlement_service.on_order_cancelled_or_returned(
            event.order_id,
            status=status,
            source=event.source,
            actor_id=event.actor_id,
            reason=event.payload.get("note") or event.payload.get("shipment_status"),
        )
    return _apply_status_update(event)


def dispatch_all(events):
    return [dispatch(event) for event in events]


def internal_event(kind, order_id, actor_id):
    """Events raised by trusted callers of the internal wallet endpoints."""
    return SettlementEvent(kind=kind, order_id=order_id, source=INTERNAL, actor_id=actor_id, occurred_at=utcnow())
