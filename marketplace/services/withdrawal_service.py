"""Seller withdrawals: request, admin approval, payout, ledger debit.

The payout gateway is always called before the ledger is touched, and the
``debit_withdrawal`` row is only written once the gateway confirmed the
transfer. A declined payout leaves the balance alone; an unknown outcome
leaves the request in ``processing`` for an operator.
"""
import logging
import re
import uuid
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from marketplace.extensions import db
from marketplace.models.reconciliation_item import PAYOUT_UNKNOWN, PAYOUT_LEDGER_MISMATCH
from marketplace.models.seller_profile import SellerProfile
from marketplace.models.wallet_transaction import DEBIT_WITHDRAWAL
from marketplace.models.withdrawal_request import (
    WithdrawalRequest,
    OPEN_STATUSES,
    PENDING,
    APPROVED,
    PROCESSING,
    COMPLETED,
    FAILED,
    REJECTED,
)
from marketplace.services.notification_service import send_notification_to_user
from marketplace.services.payout_gateway import get_payout_gateway
from marketplace.services.reconciliation_service import open_item, resolve_open_items
from marketplace.services.wallet_service import TransactionIntent, apply_transaction, atomic, get_wallet
from marketplace.utils.dates import utcnow
from marketplace.utils.exceptions import (
    InsufficientBalance,
    InvalidStateTransition,
    NotFound,
    PayoutDeclined,
    PayoutTimeout,
    ReconciliationRequired,
    ValidationError,
)
from marketplace.utils.money import mask_account, to_money

logger = logging.getLogger(__name__)

ROUTING_CODE_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")
ACCOUNT_NUMBER_RE = re.compile(r"^\d{9,18}$")

INSUFFICIENT_AT_APPROVAL = "Insufficient available balance at approval time"


def gen_withdrawal_id():
    return f"wd_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class BankDetails:
    account_number: str
    routing_code: str
    account_holder_name: str

    def as_destination(self):
        return {
            "account_number": self.account_number,
            "routing_code": self.routing_code,
            "account_holder_name": self.account_holder_name,
        }


def validate_bank_details(data):
    account_number = str(data.get("bank_account_number") or "").replace(" ", "")
    routing_code = str(data.get("routing_code") or "").strip().upper()
    holder = str(data.get("account_holder_name") or "").strip()

    if not account_number or not routing_code or not holder:
        raise ValidationError("invalid_bank_details", "Bank details are required")
    if not ACCOUNT_NUMBER_RE.match(account_number):
        raise ValidationError("invalid_bank_details", "Bank account number must be 9-18 digits")
    if not ROUTING_CODE_RE.match(routing_code):
        raise ValidationError("invalid_bank_details", "Invalid routing code format")

    return BankDetails(account_number, routing_code, holder)


def _open_request_for(seller_id):
    return (
        WithdrawalRequest.query
        .filter(WithdrawalRequest.seller_id == seller_id, WithdrawalRequest.status.in_(OPEN_STATUSES))
        .first()
    )


@atomic
def request_withdrawal(seller_id, amount, bank_details, notes=None):
    try:
        amount = to_money(amount)
    except ValueError:
        raise ValidationError("validation_error", "Amount must be a number")

    minimum = Decimal(str(current_app.config.get("MIN_WITHDRAWAL_AMOUNT", 500)))
    if amount < minimum:
        raise ValidationError(
            "below_minimum",
            f"Minimum withdrawal amount is {minimum}",
            details={"minimum": str(minimum), "requested": str(amount)},
        )

    bank = validate_bank_details(bank_details)

    profile = db.session.get(SellerProfile, seller_id)
    if not profile or not profile.kyc_complete:
        raise ValidationError(
            "kyc_incomplete",
            "Please complete KYC and add bank details before withdrawal",
            details={"action": "complete_kyc"},
        )

    wallet = get_wallet(seller_id, lock=True)
    if wallet.available_balance < amount:
        raise InsufficientBalance(
            "Insufficient available balance",
            details={"available": str(to_money(wallet.available_balance)), "requested": str(amount)},
        )

    if _open_request_for(seller_id):
        raise ValidationError(
            "pending_request_exists",
            "You already have a pending withdrawal request",
            details={"action": "wait_for_processing"},
        )

    wr = WithdrawalRequest(
        id=gen_withdrawal_id(),
        seller_id=seller_id,
        amount=amount,
        status=PENDING,
        bank_account_number=bank.account_number,
        routing_code=bank.routing_code,
        account_holder_name=bank.account_holder_name,
        notes=notes,
        requested_at=utcnow(),
    )
    db.session.add(wr)

    # Bump the wallet version so two racing requests for one seller conflict
    wallet.updated_at = utcnow()
    db.session.flush()

    logger.info(
        "Withdrawal %s of %s requested by seller %s to %s",
        wr.id, amount, seller_id, mask_account(bank.account_number),
    )
    return wr


def _load_request(request_id):
    wr = (
        WithdrawalRequest.query
        .filter_by(id=request_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not wr:
        raise NotFound("Withdrawal request not found")
    return wr


@atomic
def _claim_for_approval(request_id, admin_id):
    wr = _load_request(request_id)
    if wr.status != PENDING:
        raise InvalidStateTransition(f"Cannot process withdrawal in {wr.status} status")

    wallet = get_wallet(wr.seller_id, lock=True)
    if wallet.available_balance < wr.amount:
        wr.status = FAILED
        wr.failure_reason = INSUFFICIENT_AT_APPROVAL
        wr.processed_at = utcnow()
        wr.processed_by = admin_id
        return wr

    wr.status = APPROVED
    wr.processed_by = admin_id
    return wr


@atomic
def _mark_processing(request_id):
    wr = _load_request(request_id)
    if wr.status != APPROVED:
        raise InvalidStateTransition(f"Cannot start payout for withdrawal in {wr.status} status")
    wr.status = PROCESSING
    return wr


@atomic
def _complete(request_id, admin_id, payout_id):
    wr = _load_request(request_id)
    if wr.status == COMPLETED:
        return wr
    if wr.status not in (APPROVED, PROCESSING):
        raise InvalidStateTransition(f"Cannot complete withdrawal in {wr.status} status")

    rows = apply_transaction(TransactionIntent(
        seller_id=wr.seller_id,
        kind=DEBIT_WITHDRAWAL,
        amount=-to_money(wr.amount),
        idempotency_key=f"{DEBIT_WITHDRAWAL}:{wr.id}",
        description=f"Withdrawal to bank account ending in {wr.bank_account_number[-4:]}",
        reference_type="withdrawal",
        reference_id=wr.id,
        created_by=admin_id,
    ))

    wr.status = COMPLETED
    wr.payout_id = payout_id
    wr.transaction_id = rows[0].id
    wr.processed_at = utcnow()
    wr.processed_by = admin_id
    wr.failure_reason = None
    return wr


@atomic
def _fail(request_id, admin_id, reason):
    wr = _load_request(request_id)
    if wr.status not in (APPROVED, PROCESSING):
        raise InvalidStateTransition(f"Cannot fail withdrawal in {wr.status} status")
    wr.status = FAILED
    wr.failure_reason = reason
    wr.processed_at = utcnow()
    wr.processed_by = admin_id
    return wr


@atomic
def _flag(kind, request_id, details):
    wr = _load_request(request_id)
    open_item(kind, seller_id=wr.seller_id, withdrawal_id=wr.id, amount=wr.amount, details=details)
    return wr


def _notify(wr):
    if wr.status == COMPLETED:
        send_notification_to_user(
            wr.seller_id,
            "Withdrawal Paid",
            f"Your withdrawal of {wr.amount:.2f} has been sent to your bank account.",
            notif_type="success",
            details={"withdrawal_id": wr.id, "payout_id": wr.payout_id},
        )
    elif wr.status == FAILED:
        send_notification_to_user(
            wr.seller_id,
            "Withdrawal Failed",
            f"Your withdrawal of {wr.amount:.2f} could not be processed. The funds remain in your wallet.",
            notif_type="error",
            details={"withdrawal_id": wr.id, "reason": wr.failure_reason},
        )
    elif wr.status == REJECTED:
        send_notification_to_user(
            wr.seller_id,
            "Withdrawal Rejected",
            f"Your withdrawal of {wr.amount:.2f} was rejected: {wr.failure_reason}",
            notif_type="error",
            details={"withdrawal_id": wr.id},
        )


def _settle_payout(wr_id, admin_id, payout_id):
    try:
        return _complete(wr_id, admin_id, payout_id)
    except InsufficientBalance as e:
        # Money left the platform but the ledger can't follow
        _flag(PAYOUT_LEDGER_MISMATCH, wr_id, {"payout_id": payout_id, "error": e.message})
        logger.error("Payout %s for withdrawal %s sent but ledger debit failed", payout_id, wr_id)
        raise ReconciliationRequired(
            "Payout was sent but the wallet could not be debited; flagged for manual review",
            details={"withdrawal_id": wr_id, "payout_id": payout_id},
        )


def approve_withdrawal(request_id, admin_id, gateway=None):
    """Approve a pending request and execute the payout.

    Returns the request in its resulting status: ``completed``, ``failed``
    or ``processing`` (outcome unknown, queued for reconciliation).
    """
    wr = _claim_for_approval(request_id, admin_id)
    if wr.status == FAILED:
        logger.warning("Withdrawal %s failed at approval: %s", wr.id, wr.failure_reason)
        _notify(wr)
        return wr

    wr = _mark_processing(request_id)
    gateway = gateway or get_payout_gateway()
    bank = BankDetails(wr.bank_account_number, wr.routing_code, wr.account_holder_name)

    try:
        payout = gateway.create_payout(bank.as_destination(), wr.amount, f"withdrawal_{wr.id}")
    except PayoutDeclined as e:
        wr = _fail(request_id, admin_id, e.reason)
        logger.error("Withdrawal %s payout declined: %s", wr.id, e.reason)
        _notify(wr)
        return wr
    except PayoutTimeout as e:
        wr = _flag(PAYOUT_UNKNOWN, request_id, {"error": e.message, **e.details})
        logger.error("Withdrawal %s left processing, payout outcome unknown", wr.id)
        return wr
    except Exception as e:
        wr = _fail(request_id, admin_id, str(e) or "Payout failed")
        logger.exception("Withdrawal %s payout raised an unexpected error", wr.id)
        _notify(wr)
        return wr

    wr = _settle_payout(request_id, admin_id, payout["payout_id"])
    _notify(wr)
    return wr


@atomic
def _reject(request_id, admin_id, reason):
    wr = _load_request(request_id)
    if wr.status != PENDING:
        raise InvalidStateTransition(f"Cannot reject withdrawal in {wr.status} status")
    wr.status = REJECTED
    wr.failure_reason = reason or "Rejected by admin"
    wr.processed_at = utcnow()
    wr.processed_by = admin_id
    return wr


def reject_withdrawal(request_id, admin_id, reason=None):
    wr = _reject(request_id, admin_id, reason)
    logger.info("Withdrawal %s rejected by %s", wr.id, admin_id)
    _notify(wr)
    return wr


def resolve_processing_withdrawal(request_id, admin_id, outcome, payout_id=None, reason=None):
    """Close a request whose payout outcome was unknown, after checking the gateway by hand."""
    if outcome not in (COMPLETED, FAILED):
        raise ValidationError(message="outcome must be 'completed' or 'failed'")

    wr = db.session.get(WithdrawalRequest, request_id)
    if not wr:
        raise NotFound("Withdrawal request not found")
    if wr.status not in (APPROVED, PROCESSING):
        raise InvalidStateTransition(f"Cannot resolve withdrawal in {wr.status} status")

    if outcome == COMPLETED:
        if not payout_id:
            raise ValidationError(message="payout_id is required to mark a withdrawal completed")
        wr = _settle_payout(request_id, admin_id, payout_id)
    else:
        wr = _fail(request_id, admin_id, reason or "Payout not found at gateway")

    resolve_open_items(admin_id, f"withdrawal {outcome}", withdrawal_id=wr.id, kind=PAYOUT_UNKNOWN)
    db.session.commit()
    _notify(wr)
    return wr


def withdrawals_query(seller_id=None, status=None):
    q = WithdrawalRequest.query
    if seller_id:
        q = q.filter_by(seller_id=seller_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(WithdrawalRequest.requested_at.desc())
