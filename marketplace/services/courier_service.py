"""Courier collaborator: shipment creation, tracking and webhook signatures."""
import logging
import time

import requests
from flask import current_app

from marketplace.utils.exceptions import CourierError
from marketplace.utils.signatures import hmac_sha256_hex, signatures_match

logger = logging.getLogger(__name__)

# Courier status text -> internal order status. Unlisted statuses only update shipment_status.
STATUS_MAP = {
    "delivered": "delivered",
    "rto": "returned",
    "rto delivered": "returned",
    "lost": "cancelled",
    "cancelled": "cancelled",
    "picked up": "dispatched",
    "shipped": "dispatched",
    "in transit": "dispatched",
    "out for delivery": "dispatched",
}


def map_courier_status(courier_status):
    if not courier_status:
        return None
    return STATUS_MAP.get(str(courier_status).strip().lower())


def verify_webhook_signature(raw_body, signature, secret):
    if not secret:
        logger.warning("COURIER_WEBHOOK_SECRET not configured")
        return False
    return signatures_match(hmac_sha256_hex(secret, raw_body), signature)


class TokenCache:
    """Holds one bearer token until it expires."""

    def __init__(self, ttl_seconds, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._token = None
        self._expires_at = 0.0

    def get(self):
        if self._token and self._clock() < self._expires_at:
            return self._token
        return None

    def set(self, token):
        self._token = token
        self._expires_at = self._clock() + self.ttl_seconds

    def clear(self):
        self._token = None
        self._expires_at = 0.0


class CourierClient:
    def __init__(self, base_url, email, password, token_cache, timeout=20, session=None):
        self.base_url = base_url.rstrip("/")
        self.email = email
        self.password = password
        self.token_cache = token_cache
        self.timeout = timeout
        self.session = session or requests.Session()

    def _authenticate(self):
        token = self.token_cache.get()
        if token:
            return token

        try:
            res = self.session.post(
                f"{self.base_url}/auth/login",
                json={"email": self.email, "password": self.password},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise CourierError(f"Courier authentication failed: {e}")

        if not res.ok:
            raise CourierError(f"Courier authentication failed: {_error_message(res)}")

        token = res.json().get("token")
        if not token:
            raise CourierError("Courier authentication returned no token")
        self.token_cache.set(token)
        return token

    def _request(self, method, path, payload=None):
        token = self._authenticate()
        try:
            res = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise CourierError(f"Courier request to {path} failed: {e}")

        if res.status_code == 401:
            # Token revoked early; drop it so the next call logs in again
            self.token_cache.clear()
        return res

    def create_shipment(self, order, pickup_location, delivery_address, items):
        """Create the courier order, then best-effort AWB assignment and pickup.

        Returns shipment_id, tracking_code, courier_name and tracking_url.
        """
        total_weight = sum((item.get("weight") or 0.5) * item.get("quantity", 1) for item in items)
        payload = {
            "order_id": order.id,
            "order_date": order.created_at.strftime("%Y-%m-%d") if order.created_at else None,
            "pickup_location": pickup_location or "Primary",
            "billing_customer_name": delivery_address.get("name"),
            "billing_address": delivery_address.get("address"),
            "billing_city": delivery_address.get("city"),
            "billing_pincode": delivery_address.get("pincode"),
            "billing_state": delivery_address.get("state"),
            "billing_country": delivery_address.get("country", "India"),
            "billing_email": delivery_address.get("email"),
            "billing_phone": delivery_address.get("phone"),
            "shipping_is_billing": True,
            "order_items": [
                {
                    "name": item.get("name"),
                    "sku": item.get("sku") or item.get("id"),
                    "units": item.get("quantity", 1),
                    "selling_price": str(item.get("price", 0)),
                }
                for item in items
            ],
            "payment_method": "COD" if order.is_cod else "Prepaid",
            "sub_total": str(order.total_amount),
            "length": 10,
            "breadth": 10,
            "height": 10,
            "weight": total_weight,
        }

        res = self._request("POST", "/orders/create/adhoc", payload)
        if not res.ok:
            raise CourierError(f"Shipment creation failed: {_error_message(res)}")
        result = res.json()
        shipment_id = result.get("shipment_id")
        if not shipment_id:
            raise CourierError("Courier did not return shipment_id")

        awb_code, courier_name = self._assign_awb(shipment_id)
        if awb_code:
            self._request_pickup(shipment_id)

        logger.info("Shipment %s created for order %s (awb=%s)", shipment_id, order.id, awb_code)
        return {
            "shipment_id": str(shipment_id),
            "tracking_code": awb_code,
            "courier_name": courier_name,
            "tracking_url": f"https://shiprocket.co/tracking/{awb_code}" if awb_code else None,
        }

    def _assign_awb(self, shipment_id):
        try:
            res = self._request("POST", "/courier/assign/awb", {"shipment_id": shipment_id})
        except CourierError as e:
            logger.warning("AWB assignment for shipment %s failed: %s", shipment_id, e.message)
            return None, "Pending Assignment"
        if not res.ok:
            logger.warning("AWB assignment for shipment %s failed: %s", shipment_id, _error_message(res))
            return None, "Pending Assignment"
        body = res.json()
        data = (body.get("response") or {}).get("data") or {}
        return (
            data.get("awb_code") or body.get("awb_code"),
            data.get("courier_name") or body.get("courier_name") or "Pending Assignment",
        )

    def _request_pickup(self, shipment_id):
        try:
            res = self._request("POST", "/courier/generate/pickup", {"shipment_id": [shipment_id]})
            if not res.ok:
                logger.warning("Pickup request for shipment %s failed: %s", shipment_id, _error_message(res))
        except CourierError as e:
            logger.warning("Pickup request for shipment %s failed: %s", shipment_id, e.message)

    def get_tracking(self, awb_code):
        res = self._request("GET", f"/courier/track/awb/{awb_code}")
        if not res.ok:
            raise CourierError("Failed to fetch shipment tracking")
        return res.json()


def _error_message(res):
    try:
        body = res.json()
    except ValueError:
        return res.reason
    if isinstance(body, dict):
        return body.get("message") or res.reason
    return res.reason


def init_courier_client(app):
    cfg = app.config
    client = CourierClient(
        base_url=cfg["COURIER_API_BASE"],
        email=cfg.get("COURIER_EMAIL"),
        password=cfg.get("COURIER_PASSWORD"),
        token_cache=TokenCache(cfg.get("COURIER_TOKEN_TTL_SECONDS", 36000)),
        timeout=cfg.get("COURIER_TIMEOUT_SECONDS", 20),
    )
    app.extensions["courier_client"] = client
    return client


def get_courier_client():
    return current_app.extensions["courier_client"]
