"""HTTP surface: auth, status codes and response shapes."""
import json
from decimal import Decimal

import pytest

from conftest import auth_headers, make_order, make_user
from marketplace.extensions import db
from marketplace.models.order import Order
from marketplace.models.reconciliation_item import ReconciliationItem
from marketplace.services import settlement_service
from marketplace.services.wallet_service import get_wallet
from marketplace.utils.signatures import hmac_sha256_hex, payment_signature

BANK = {
    "bank_account_number": "123456789012",
    "routing_code": "HDFC0001234",
    "account_holder_name": "Clay Works Pvt Ltd",
}


@pytest.fixture
def funded(seller, order, kyc):
    settlement_service.on_payment_confirmed(order.id)
    settlement_service.on_order_delivered(order.id)
    return seller


class TestWalletRoutes:
    def test_wallet_requires_token(self, client):
        res = client.get("/api/v1/wallet")
        assert res.status_code == 401
        assert res.get_json()["error"]["code"] == "UNAUTHORIZED"

    def test_wallet_requires_seller(self, client, buyer_headers):
        assert client.get("/api/v1/wallet", headers=buyer_headers).status_code == 403

    def test_wallet_view(self, client, funded, seller_headers):
        res = client.get("/api/v1/wallet", headers=seller_headers)

        assert res.status_code == 200
        wallet = res.get_json()["wallet"]
        assert wallet["available_balance"] == "950.00"
        assert wallet["pending_balance"] == "0.00"
        assert wallet["currency"] == "INR"

    def test_transactions_paginated_and_filtered(self, client, funded, seller_headers):
        res = client.get("/api/v1/wallet/transactions?type=release_to_available&limit=1", headers=seller_headers)

        body = res.get_json()
        assert res.status_code == 200
        assert body["pagination"]["total"] == 2
        assert body["pagination"]["total_pages"] == 2
        assert len(body["transactions"]) == 1
        assert body["transactions"][0]["type"] == "release_to_available"

    def test_unknown_transaction_type(self, client, seller, seller_headers):
        assert client.get("/api/v1/wallet/transactions?type=bonus", headers=seller_headers).status_code == 400

    def test_internal_credit_and_release(self, client, order, internal_headers):
        credit = client.post("/api/v1/wallet/credit", json={"order_id": order.id}, headers=internal_headers)
        again = client.post("/api/v1/wallet/credit", json={"order_id": order.id}, headers=internal_headers)
        release = client.post("/api/v1/wallet/release", json={"order_id": order.id}, headers=internal_headers)

        assert credit.get_json()["result"]["outcome"] == "applied"
        assert again.get_json()["result"]["outcome"] == "noop"
        assert release.get_json()["result"]["settlement_state"] == "released"

    def test_internal_accepts_admin_token(self, client, order, admin_headers):
        res = client.post("/api/v1/wallet/credit", json={"order_id": order.id}, headers=admin_headers)
        assert res.status_code == 200

    def test_internal_rejects_wrong_key(self, client, order):
        res = client.post("/api/v1/wallet/credit", json={"order_id": order.id}, headers={"X-Internal-Key": "nope"})
        assert res.status_code == 401

    def test_internal_rejects_seller_token(self, client, order, seller_headers):
        res = client.post("/api/v1/wallet/credit", json={"order_id": order.id}, headers=seller_headers)
        assert res.status_code == 403

    def test_internal_unknown_order(self, client, internal_headers):
        res = client.post("/api/v1/wallet/release", json={"order_id": "ORD-ghost"}, headers=internal_headers)
        assert res.status_code == 404

    def test_internal_missing_order_id(self, client, internal_headers):
        assert client.post("/api/v1/wallet/credit", json={}, headers=internal_headers).status_code == 400


class TestWithdrawalRoutes:
    def test_request_and_list(self, client, funded, seller_headers):
        res = client.post("/api/v1/withdrawals", json={"amount": 500, **BANK}, headers=seller_headers)

        assert res.status_code == 201
        withdrawal = res.get_json()["withdrawal"]
        assert withdrawal["status"] == "pending"
        assert withdrawal["amount"] == "500.00"
        assert withdrawal["bank_account"] == "****9012"
        assert "bank_account_number" not in withdrawal

        listing = client.get("/api/v1/withdrawals", headers=seller_headers).get_json()
        assert [w["id"] for w in listing["withdrawals"]] == [withdrawal["id"]]

    def test_reason_codes(self, client, funded, seller_headers):
        res = client.post("/api/v1/withdrawals", json={"amount": 100, **BANK}, headers=seller_headers)
        assert res.status_code == 400
        assert res.get_json()["error"]["code"] == "below_minimum"

        res = client.post("/api/v1/withdrawals", json={"amount": 5000, **BANK}, headers=seller_headers)
        assert res.get_json()["error"]["code"] == "insufficient_balance"

    def test_approve_success(self, client, funded, seller_headers, admin_headers):
        wid = client.post("/api/v1/withdrawals", json={"amount": 500, **BANK}, headers=seller_headers).get_json()["withdrawal"]["id"]

        res = client.post(f"/api/v1/withdrawals/{wid}/approve", json={"action": "approve"}, headers=admin_headers)

        assert res.status_code == 200
        assert res.get_json()["withdrawal"]["status"] == "completed"
        wallet = client.get("/api/v1/wallet", headers=seller_headers).get_json()["wallet"]
        assert wallet["available_balance"] == "450.00"

    def test_approve_declined_is_502(self, client, funded, seller_headers, admin_headers, payout_gateway):
        payout_gateway.behaviour = "declined"
        wid = client.post("/api/v1/withdrawals", json={"amount": 500, **BANK}, headers=seller_headers).get_json()["withdrawal"]["id"]

        res = client.post(f"/api/v1/withdrawals/{wid}/approve", json={}, headers=admin_headers)

        assert res.status_code == 502
        error = res.get_json()["error"]
        assert error["code"] == "PAYOUT_FAILED"
        assert error["details"]["withdrawal"]["status"] == "failed"

    def test_approve_timeout_is_202_then_resolve(self, client, funded, seller_headers, admin_headers, payout_gateway):
        payout_gateway.behaviour = "timeout"
        wid = client.post("/api/v1/withdrawals", json={"amount": 500, **BANK}, headers=seller_headers).get_json()["withdrawal"]["id"]

        res = client.post(f"/api/v1/withdrawals/{wid}/approve", json={"action": "approve"}, headers=admin_headers)
        assert res.status_code == 202
        assert res.get_json()["withdrawal"]["status"] == "processing"

        res = client.post(
            f"/api/v1/withdrawals/{wid}/resolve",
            json={"outcome": "completed", "payout_id": "pout_dash_1"},
            headers=admin_headers,
        )
        assert res.status_code == 200
        assert res.get_json()["withdrawal"]["status"] == "completed"

    def test_reject(self, client, funded, seller_headers, admin_headers):
        wid = client.post("/api/v1/withdrawals", json={"amount": 500, **BANK}, headers=seller_headers).get_json()["withdrawal"]["id"]

        res = client.post(f"/api/v1/withdrawals/{wid}/approve", json={"action": "reject", "reason": "Docs"}, headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["withdrawal"]["status"] == "rejected"

        again = client.post(f"/api/v1/withdrawals/{wid}/approve", json={"action": "approve"}, headers=admin_headers)
        assert again.status_code == 409
        assert again.get_json()["error"]["code"] == "invalid_state"

    def test_approve_requires_admin(self, client, funded, seller_headers):
        res = client.post("/api/v1/withdrawals/wd_x/approve", json={}, headers=seller_headers)
        assert res.status_code == 403

    def test_approve_unknown(self, client, admin_headers):
        assert client.post("/api/v1/withdrawals/wd_x/approve", json={}, headers=admin_headers).status_code == 404


class TestAdminRoutes:
    def test_withdrawal_listing_search(self, client, funded, seller_headers, admin_headers):
        client.post("/api/v1/withdrawals", json={"amount": 500, **BANK}, headers=seller_headers)

        res = client.get("/api/v1/admin/withdrawals?search=seller@", headers=admin_headers)
        body = res.get_json()
        assert body["pagination"]["total"] == 1
        assert body["withdrawals"][0]["seller"]["email"] == "seller@example.com"

        none = client.get("/api/v1/admin/withdrawals?status=completed", headers=admin_headers).get_json()
        assert none["withdrawals"] == []

    def test_earnings_summary(self, client, funded, admin_headers):
        res = client.get("/api/v1/admin/earnings?period=month", headers=admin_headers)

        body = res.get_json()
        assert res.status_code == 200
        assert body["summary"]["commission_earned"] == "50.00"
        assert body["summary"]["gross_order_value"] == "1000.00"
        assert body["earnings"][0]["status"] == "earned"

    def test_earnings_bad_period(self, client, admin_headers):
        assert client.get("/api/v1/admin/earnings?period=decade", headers=admin_headers).status_code == 400

    def test_reconciliation_queue(self, client, seller, order, admin_headers):
        settlement_service.on_payment_confirmed(order.id)
        settlement_service.on_order_delivered(order.id)

        res = client.post(f"/api/v1/admin/orders/{order.id}/status", json={"status": "returned"}, headers=admin_headers)
        assert res.status_code == 409
        assert res.get_json()["error"]["code"] == "REVERSAL_AFTER_RELEASE"

        items = client.get("/api/v1/admin/reconciliation", headers=admin_headers).get_json()["items"]
        assert [i["kind"] for i in items] == ["reversal_after_release"]

        res = client.post(
            f"/api/v1/admin/reconciliation/{items[0]['id']}/resolve",
            json={"resolution": "Seller refunded buyer directly"},
            headers=admin_headers,
        )
        assert res.status_code == 200
        assert res.get_json()["item"]["status"] == "resolved"
        assert client.get("/api/v1/admin/reconciliation", headers=admin_headers).get_json()["items"] == []

    def test_resolve_requires_resolution(self, client, admin_headers):
        res = client.post("/api/v1/admin/reconciliation/rec_x/resolve", json={}, headers=admin_headers)
        assert res.status_code == 400

    def test_wallet_audit(self, client, funded, admin_headers):
        res = client.get(f"/api/v1/admin/wallets/{funded.id}/audit", headers=admin_headers)

        audit = res.get_json()["audit"]
        assert audit["balanced"] is True
        assert audit["available_balance"] == "950.00"

    def test_order_override(self, client, order, admin_headers):
        res = client.post(f"/api/v1/admin/orders/{order.id}/status", json={"payment_status": "paid"}, headers=admin_headers)

        body = res.get_json()
        assert res.status_code == 200
        assert body["result"]["outcome"] == "applied"
        assert body["order"]["settlement_state"] == "pending_credited"

    def test_order_override_paid_and_delivered(self, client, seller, order, admin_headers):
        res = client.post(
            f"/api/v1/admin/orders/{order.id}/status",
            json={"payment_status": "paid", "status": "delivered"},
            headers=admin_headers,
        )

        body = res.get_json()
        assert res.status_code == 200
        assert [r["reason"] for r in body["results"]] == ["credited_pending", "released"]
        assert body["order"]["status"] == "delivered"
        assert body["order"]["settlement_state"] == "released"
        assert get_wallet(seller.id).available_balance == Decimal("950.00")


class TestPaymentRoutes:
    def test_verify(self, client, seller, order, buyer_headers):
        body = {
            "order_id": order.id,
            "gateway_order_id": order.gateway_order_id,
            "gateway_payment_id": "pay_9",
            "signature": payment_signature("payment-test-secret", order.gateway_order_id, "pay_9"),
        }
        res = client.post("/api/v1/payments/verify", json=body, headers=buyer_headers)

        assert res.status_code == 200
        assert res.get_json()["result"]["reason"] == "credited_pending"
        assert db.session.get(Order, order.id).payment_status == "paid"

    def test_verify_bad_signature(self, client, order, buyer_headers):
        body = {
            "order_id": order.id,
            "gateway_order_id": order.gateway_order_id,
            "gateway_payment_id": "pay_9",
            "signature": "0" * 64,
        }
        res = client.post("/api/v1/payments/verify", json=body, headers=buyer_headers)
        assert res.status_code == 400
        assert db.session.get(Order, order.id).payment_status == "pending"

    def test_verify_non_string_signature(self, client, order, buyer_headers):
        body = {
            "order_id": order.id,
            "gateway_order_id": order.gateway_order_id,
            "gateway_payment_id": "pay_9",
            "signature": 12345,
        }
        res = client.post("/api/v1/payments/verify", json=body, headers=buyer_headers)
        assert res.status_code == 400
        assert res.get_json()["error"]["code"] == "VALIDATION_ERROR"


class TestWebhookRoutes:
    def post(self, client, payload, secret="courier-test-secret"):
        raw = json.dumps(payload).encode()
        return client.post(
            "/api/v1/webhooks/delivery-updates",
            data=raw,
            content_type="application/json",
            headers={"X-Courier-Signature": hmac_sha256_hex(secret, raw)},
        )

    def test_ping(self, client):
        assert client.get("/api/v1/webhooks/delivery-updates").status_code == 200
        assert client.post("/api/v1/webhooks/delivery-updates", data=b"{}").status_code == 200

    def test_unsigned_update_rejected(self, client, order):
        res = client.post(
            "/api/v1/webhooks/delivery-updates",
            data=json.dumps({"order_id": order.id, "current_status": "Delivered"}),
            content_type="application/json",
        )
        assert res.status_code == 401

    def test_wrong_secret_rejected(self, client, order):
        assert self.post(client, {"order_id": order.id, "current_status": "Delivered"}, secret="x").status_code == 401

    def test_delivered_releases(self, client, seller, order):
        settlement_service.on_payment_confirmed(order.id)

        res = self.post(client, {"order_id": order.id, "current_status": "Delivered", "awb": "AWB1"})

        assert res.status_code == 200
        assert res.get_json()["result"]["reason"] == "released"
        order = db.session.get(Order, order.id)
        assert order.wallet_credited is True
        assert order.awb_code == "AWB1"

    def test_return_after_release_is_flagged_with_200(self, client, seller, order):
        settlement_service.on_payment_confirmed(order.id)
        settlement_service.on_order_delivered(order.id)

        res = self.post(client, {"order_id": order.id, "current_status": "RTO"})

        assert res.status_code == 200
        assert res.get_json()["status"] == "flagged"
        assert ReconciliationItem.query.count() == 1


class TestShipmentRoutes:
    def test_create_shipment(self, client, seller, order, seller_headers, courier, buyer):
        settlement_service.on_payment_confirmed(order.id)

        res = client.post(f"/api/v1/orders/{order.id}/shipment", headers=seller_headers)

        assert res.status_code == 201
        body = res.get_json()["order"]
        assert body["shipment_id"] == "SHP-1"
        assert body["awb_code"] == "AWB123456"
        assert body["status"] == "dispatched"

        again = client.post(f"/api/v1/orders/{order.id}/shipment", headers=seller_headers)
        assert again.status_code == 200
        assert courier.shipments == [order.id]

    def test_unpaid_online_order(self, client, order, seller_headers):
        res = client.post(f"/api/v1/orders/{order.id}/shipment", headers=seller_headers)
        assert res.status_code == 409

    def test_cod_order_ships_unpaid(self, client, seller, buyer, seller_headers):
        order = make_order(seller, buyer, payment_method="cod")
        assert client.post(f"/api/v1/orders/{order.id}/shipment", headers=seller_headers).status_code == 201

    def test_other_seller(self, client, order):
        other = make_user("seller", "other@example.com")
        res = client.post(f"/api/v1/orders/{order.id}/shipment", headers=auth_headers(other))
        assert res.status_code == 403


class TestNotificationRoutes:
    def test_list_and_mark_read(self, client, funded, seller_headers, admin_headers):
        wid = client.post("/api/v1/withdrawals", json={"amount": 500, **BANK}, headers=seller_headers).get_json()["withdrawal"]["id"]
        client.post(f"/api/v1/withdrawals/{wid}/approve", json={"action": "approve"}, headers=admin_headers)

        body = client.get("/api/v1/notifications?is_read=false", headers=seller_headers).get_json()
        assert [n["title"] for n in body["notifications"]] == ["Withdrawal Paid"]

        nid = body["notifications"][0]["id"]
        res = client.patch(f"/api/v1/notifications/{nid}/read", headers=seller_headers)
        assert res.get_json()["notification"]["is_read"] is True

        assert client.get("/api/v1/notifications?is_read=false", headers=seller_headers).get_json()["notifications"] == []

    def test_cannot_read_others(self, client, funded, seller_headers, admin_headers, buyer_headers):
        wid = client.post("/api/v1/withdrawals", json={"amount": 500, **BANK}, headers=seller_headers).get_json()["withdrawal"]["id"]
        client.post(f"/api/v1/withdrawals/{wid}/approve", json={"action": "reject"}, headers=admin_headers)
        nid = client.get("/api/v1/notifications", headers=seller_headers).get_json()["notifications"][0]["id"]

        assert client.patch(f"/api/v1/notifications/{nid}/read", headers=buyer_headers).status_code == 404
