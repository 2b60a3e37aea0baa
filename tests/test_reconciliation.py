from datetime import timedelta

import pytest
from sqlalchemy import text

from conftest import make_order
from marketplace.cli import settlement_cli
from marketplace.extensions import db
from marketplace.models.reconciliation_item import ReconciliationItem
from marketplace.services import reconciliation_service, settlement_service
from marketplace.utils.dates import utcnow
from marketplace.utils.exceptions import InvalidStateTransition, NotFound


def stuck_order(seller, buyer, hours_ago):
    """Paid and delivered, but the release never happened."""
    order = make_order(seller, buyer)
    settlement_service.on_payment_confirmed(order.id)
    order.status = "delivered"
    order.delivered_at = utcnow() - timedelta(hours=hours_ago)
    db.session.commit()
    return order


class TestSweepStuckReleases:
    def test_flags_only_old_unreleased_orders(self, seller, buyer):
        old = stuck_order(seller, buyer, hours_ago=100)
        stuck_order(seller, buyer, hours_ago=2)
        released = make_order(seller, buyer)
        settlement_service.on_payment_confirmed(released.id)
        settlement_service.on_order_delivered(released.id)

        items = reconciliation_service.sweep_stuck_releases(older_than_hours=72)

        assert [i.order_id for i in items] == [old.id]
        assert items[0].kind == "stuck_release"
        assert items[0].details["settlement_state"] == "pending_credited"

    def test_is_idempotent(self, seller, buyer):
        stuck_order(seller, buyer, hours_ago=100)
        reconciliation_service.sweep_stuck_releases(older_than_hours=72)
        reconciliation_service.sweep_stuck_releases(older_than_hours=72)

        assert ReconciliationItem.query.count() == 1

    def test_threshold_from_config(self, app, seller, buyer):
        app.config["STUCK_RELEASE_THRESHOLD_HOURS"] = 1
        stuck_order(seller, buyer, hours_ago=2)

        assert len(reconciliation_service.find_stuck_releases()) == 1


class TestAuditWallets:
    def test_reports_only_mismatches(self, seller, buyer, order):
        settlement_service.on_payment_confirmed(order.id)
        assert reconciliation_service.audit_wallets() == []

        db.session.execute(text("UPDATE wallets SET pending_balance = 1 WHERE seller_id = :s"), {"s": seller.id})
        db.session.commit()

        reports = reconciliation_service.audit_wallets()
        assert [r["seller_id"] for r in reports] == [seller.id]


class TestResolveItem:
    def test_resolve_twice_is_invalid(self, admin, seller, order):
        item = reconciliation_service.open_item("stuck_release", seller_id=seller.id, order_id=order.id)
        db.session.commit()

        reconciliation_service.resolve_item(item.id, admin.id, "released by hand")
        with pytest.raises(InvalidStateTransition):
            reconciliation_service.resolve_item(item.id, admin.id, "again")

    def test_unknown_item(self, admin):
        with pytest.raises(NotFound):
            reconciliation_service.resolve_item("rec_missing", admin.id, "n/a")


class TestCli:
    def test_sweep_command(self, app, seller, buyer):
        order = stuck_order(seller, buyer, hours_ago=100)

        result = app.test_cli_runner().invoke(settlement_cli, ["sweep-stuck", "--older-than-hours", "48"])

        assert result.exit_code == 0
        assert order.id in result.output
        assert "1 order(s) flagged" in result.output

    def test_audit_command_clean(self, app, seller, order):
        settlement_service.on_payment_confirmed(order.id)

        result = app.test_cli_runner().invoke(settlement_cli, ["audit"])

        assert result.exit_code == 0
        assert "All wallets reconcile" in result.output

    def test_audit_command_mismatch(self, app, seller, order):
        settlement_service.on_payment_confirmed(order.id)
        db.session.execute(text("UPDATE wallets SET available_balance = 3 WHERE seller_id = :s"), {"s": seller.id})
        db.session.commit()

        result = app.test_cli_runner().invoke(settlement_cli, ["audit"])

        assert result.exit_code == 1
