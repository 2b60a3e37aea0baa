"""Payout gateway collaborator: sends money from the platform account to a seller bank account."""
import logging

import requests
from flask import current_app

from marketplace.utils.exceptions import PayoutDeclined, PayoutTimeout
from marketplace.utils.money import mask_account, to_minor_units

logger = logging.getLogger(__name__)

# Statuses the gateway reports for payouts that will never reach the seller
DEAD_PAYOUT_STATUSES = ("rejected", "failed", "reversed", "cancelled")


class PayoutGateway:
    def __init__(self, base_url, key_id, key_secret, account_number,
                 mode="NEFT", currency="INR", timeout=15, session=None):
        self.base_url = base_url.rstrip("/")
        self.auth = (key_id, key_secret)
        self.account_number = account_number
        self.mode = mode
        self.currency = currency
        self.timeout = timeout
        self.session = session or requests.Session()

    def create_payout(self, destination, amount, reference):
        """Returns {"payout_id", "status"}.

        Raises PayoutDeclined when the gateway refused the transfer and
        PayoutTimeout when the outcome is unknown (timeouts, dropped
        connections, 5xx answers).
        """
        payload = {
            "account_number": self.account_number,
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "mode": self.mode,
            "purpose": "payout",
            "fund_account": {
                "account_type": "bank_account",
                "bank_account": {
                    "name": destination["account_holder_name"],
                    "ifsc": destination["routing_code"],
                    "account_number": destination["account_number"],
                },
            },
            "queue_if_low_balance": False,
            "reference_id": reference,
            "narration": "Seller payout",
        }

        try:
            res = self.session.post(
                f"{self.base_url}/payouts",
                json=payload,
                auth=self.auth,
                headers={"X-Payout-Idempotency": reference},
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectTimeout:
            # Never connected, so nothing was sent
            raise PayoutDeclined("Payout gateway unreachable", details={"reference": reference})
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            logger.error("Payout %s outcome unknown: %s", reference, e)
            raise PayoutTimeout(details={"reference": reference})
        except requests.exceptions.RequestException as e:
            # Bad URL, redirect loop and the like: the transfer was never accepted
            logger.error("Payout %s request failed: %s", reference, e)
            raise PayoutDeclined(f"Payout request failed: {e}", details={"reference": reference})

        try:
            body = res.json()
        except ValueError:
            body = {}

        if res.status_code >= 500:
            logger.error("Payout %s got HTTP %s from gateway", reference, res.status_code)
            raise PayoutTimeout(f"Payout gateway returned HTTP {res.status_code}", details={"reference": reference})

        if res.status_code >= 400:
            error = body.get("error") or {}
            reason = error.get("description") or res.reason or "Payout failed"
            logger.error(
                "Payout %s to %s declined: %s",
                reference, mask_account(destination["account_number"]), reason,
            )
            raise PayoutDeclined(reason, details={"reference": reference, "status_code": res.status_code})

        payout_id = body.get("id")
        if not payout_id:
            raise PayoutTimeout("Payout gateway response had no payout id", details={"reference": reference})

        status = body.get("status")
        if status in DEAD_PAYOUT_STATUSES:
            reason = (body.get("status_details") or {}).get("description") or f"Payout {status}"
            raise PayoutDeclined(reason, details={"reference": reference, "payout_id": payout_id})

        logger.info("Payout %s created for %s (%s)", payout_id, reference, status)
        return {"payout_id": payout_id, "status": status}


class ManualPayoutGateway:
    """Used when automated payouts are off: the transfer is made by hand outside the system."""

    def create_payout(self, destination, amount, reference):
        logger.info("Manual payout recorded for %s (%s)", reference, mask_account(destination["account_number"]))
        return {"payout_id": f"manual_{reference}", "status": "manual"}


def init_payout_gateway(app):
    cfg = app.config
    if cfg.get("PAYOUT_ENABLED"):
        gateway = PayoutGateway(
            base_url=cfg["PAYOUT_API_BASE"],
            key_id=cfg.get("PAYOUT_KEY_ID"),
            key_secret=cfg.get("PAYOUT_KEY_SECRET"),
            account_number=cfg.get("PAYOUT_ACCOUNT_NUMBER"),
            mode=cfg.get("PAYOUT_MODE", "NEFT"),
            currency=cfg.get("CURRENCY", "INR"),
            timeout=cfg.get("PAYOUT_TIMEOUT_SECONDS", 15),
        )
    else:
        gateway = ManualPayoutGateway()
    app.extensions["payout_gateway"] = gateway
    return gateway


def get_payout_gateway():
    return current_app.extensions["payout_gateway"]
