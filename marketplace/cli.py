"""Operator commands: ``flask settlement sweep-stuck`` and ``flask settlement audit``."""
import sys

import click
from flask.cli import AppGroup

from marketplace.services.reconciliation_service import audit_wallets, sweep_stuck_releases

settlement_cli = AppGroup("settlement", help="Settlement reconciliation tools.")


@settlement_cli.command("sweep-stuck")
@click.option(
    "--older-than-hours",
    type=int,
    default=None,
    help="Flag delivered orders whose funds are still pending after this many hours.",
)
def sweep_stuck(older_than_hours):
    items = sweep_stuck_releases(older_than_hours)
    for item in items:
        click.echo(f"{item.id}\torder={item.order_id}\tseller={item.seller_id}\tamount={item.amount}")
    click.echo(f"{len(items)} order(s) flagged for manual release")


@settlement_cli.command("audit")
def audit():
    mismatches = audit_wallets()
    if not mismatches:
        click.echo("All wallets reconcile")
        return

    for report in mismatches:
        click.echo(
            f"seller={report['seller_id']} "
            f"pending={report['pending_balance']}/{report['ledger_pending']} "
            f"available={report['available_balance']}/{report['ledger_available']}",
            err=True,
        )
    click.echo(f"{len(mismatches)} wallet(s) out of balance", err=True)
    sys.exit(1)
