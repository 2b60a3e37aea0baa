"""Ledger store: per-seller wallets and the append-only transaction log.

Every balance change goes through ``apply_transaction``, which writes the
immutable ledger rows and adjusts the wallet in the same flush. The wallet
row is version-checked by SQLAlchemy (``version_id_col``) and row-locked
where the backend supports ``SELECT ... FOR UPDATE``, so two writers for the
same seller can never lose an update. Callers wrap their unit of work in
``atomic`` which commits, or rolls back and retries on a version conflict.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from functools import wraps
from typing import Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from marketplace.extensions import db
from marketplace.models.wallet import Wallet
from marketplace.models.wallet_transaction import (
    WalletTransaction,
    CREDIT_PENDING,
    RELEASE_TO_AVAILABLE,
    REVERSAL,
    DEBIT_WITHDRAWAL,
    PENDING,
    AVAILABLE,
)
from marketplace.utils.dates import utcnow
from marketplace.utils.exceptions import ConcurrentModification, InsufficientBalance, ValidationError
from marketplace.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


def gen_tx_id():
    return f"tx_{uuid.uuid4().hex[:12]}"


def gen_wallet_id():
    return f"wal_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class TransactionIntent:
    seller_id: str
    kind: str
    amount: Decimal
    order_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    description: str = ""
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    created_by: Optional[str] = None


def _legs(kind, amount):
    """Map a signed intent amount onto (bucket, signed delta) ledger rows."""
    if kind == CREDIT_PENDING:
        if amount <= 0:
            raise ValidationError(message="credit_pending amount must be positive")
        return [(PENDING, amount)]
    if kind == RELEASE_TO_AVAILABLE:
        if amount <= 0:
            raise ValidationError(message="release amount must be positive")
        return [(PENDING, -amount), (AVAILABLE, amount)]
    if kind == REVERSAL:
        if amount >= 0:
            raise ValidationError(message="reversal amount must be negative")
        return [(PENDING, amount)]
    if kind == DEBIT_WITHDRAWAL:
        if amount >= 0:
            raise ValidationError(message="debit_withdrawal amount must be negative")
        return [(AVAILABLE, amount)]
    raise ValidationError(message=f"Unknown transaction kind: {kind}")


def _leg_key(idempotency_key, bucket, multi_leg):
    if not idempotency_key:
        return None
    return f"{idempotency_key}:{bucket}" if multi_leg else idempotency_key


def atomic(fn):
    """Run fn as one unit of work: commit on success, retry on version conflict."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        retries = max(int(current_app.config.get("LEDGER_MAX_RETRIES", 3)), 1)
        for attempt in range(1, retries + 1):
            try:
                result = fn(*args, **kwargs)
                db.session.commit()
                return result
            except (StaleDataError, IntegrityError) as e:
                db.session.rollback()
                logger.warning(
                    "%s hit a write conflict (attempt %s/%s): %s",
                    fn.__name__, attempt, retries, e.__class__.__name__,
                )
            except Exception:
                db.session.rollback()
                raise
        raise ConcurrentModification(details={"operation": fn.__name__, "attempts": retries})
    return wrapper


def get_wallet(seller_id, lock=False):
    q = Wallet.query.filter_by(seller_id=seller_id)
    if lock:
        q = q.with_for_update().populate_existing()
    wallet = q.first()
    if not wallet:
        wallet = Wallet(
            id=gen_wallet_id(),
            seller_id=seller_id,
            currency=current_app.config.get("CURRENCY", "INR"),
            pending_balance=ZERO,
            available_balance=ZERO,
        )
        db.session.add(wallet)
        db.session.flush()
        logger.info("Created wallet %s for seller %s", wallet.id, seller_id)
    return wallet


def find_applied(idempotency_key):
    if not idempotency_key:
        return []
    keys = [idempotency_key] + [f"{idempotency_key}:{bucket}" for bucket in (PENDING, AVAILABLE)]
    return (
        WalletTransaction.query
        .filter(WalletTransaction.idempotency_key.in_(keys))
        .order_by(WalletTransaction.created_at)
        .all()
    )


def apply_transaction(intent):
    """Append the ledger rows for intent and move the wallet balances with them.

    Returns the list of rows written (two for a release, one otherwise). A
    repeated idempotency key returns the rows already on file and changes
    nothing. Does not commit; run inside ``atomic``.
    """
    amount = to_money(intent.amount)
    legs = _legs(intent.kind, amount)

    existing = find_applied(intent.idempotency_key)
    if existing:
        logger.info("Ledger intent %s already applied, skipping", intent.idempotency_key)
        return existing

    wallet = get_wallet(intent.seller_id, lock=True)

    balances = {
        PENDING: Decimal(wallet.pending_balance or 0),
        AVAILABLE: Decimal(wallet.available_balance or 0),
    }
    for bucket, delta in legs:
        balances[bucket] += delta
        if balances[bucket] < 0:
            raise InsufficientBalance(
                f"Insufficient {bucket} balance",
                details={
                    "bucket": bucket,
                    "balance": str(balances[bucket] - delta),
                    "requested": str(-delta),
                },
            )

    wallet.pending_balance = balances[PENDING]
    wallet.available_balance = balances[AVAILABLE]
    wallet.updated_at = utcnow()

    rows = []
    multi_leg = len(legs) > 1
    for bucket, delta in legs:
        tx = WalletTransaction(
            id=gen_tx_id(),
            wallet_id=wallet.id,
            seller_id=intent.seller_id,
            order_id=intent.order_id,
            amount=delta,
            type=intent.kind,
            balance_type=bucket,
            status="completed",
            idempotency_key=_leg_key(intent.idempotency_key, bucket, multi_leg),
            reference_type=intent.reference_type,
            reference_id=intent.reference_id,
            description=intent.description,
            created_by=intent.created_by,
            created_at=utcnow(),
        )
        db.session.add(tx)
        rows.append(tx)

    db.session.flush()
    logger.info(
        "Applied %s of %s for seller %s (pending=%s available=%s)",
        intent.kind, amount, intent.seller_id, wallet.pending_balance, wallet.available_balance,
    )
    return rows


def reconcile_wallet(seller_id):
    """Compare a wallet's balances with the sum of its completed ledger rows."""
    wallet = Wallet.query.filter_by(seller_id=seller_id).first()
    sums = dict(
        db.session.query(WalletTransaction.balance_type, func.coalesce(func.sum(WalletTransaction.amount), 0))
        .filter(WalletTransaction.seller_id == seller_id, WalletTransaction.status == "completed")
        .group_by(WalletTransaction.balance_type)
        .all()
    )
    ledger_pending = to_money(sums.get(PENDING, 0))
    ledger_available = to_money(sums.get(AVAILABLE, 0))
    pending = to_money(wallet.pending_balance) if wallet else ZERO
    available = to_money(wallet.available_balance) if wallet else ZERO

    return {
        "seller_id": seller_id,
        "pending_balance": pending,
        "available_balance": available,
        "ledger_pending": ledger_pending,
        "ledger_available": ledger_available,
        "ledger_total": ledger_pending + ledger_available,
        "balanced": pending == ledger_pending and available == ledger_available,
    }


def wallet_summary(seller_id):
    wallet = Wallet.query.filter_by(seller_id=seller_id).first()
    if not wallet:
        return {
            "pending_balance": ZERO,
            "available_balance": ZERO,
            "currency": current_app.config.get("CURRENCY", "INR"),
        }
    return {
        "pending_balance": to_money(wallet.pending_balance),
        "available_balance": to_money(wallet.available_balance),
        "currency": wallet.currency,
        "updated_at": wallet.updated_at,
    }


def transactions_query(seller_id, tx_type=None):
    q = WalletTransaction.query.filter_by(seller_id=seller_id)
    if tx_type:
        q = q.filter(WalletTransaction.type == tx_type)
    return q.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id)
