from marshmallow import fields

from marketplace.extensions import ma
from marketplace.utils.money import mask_account


class WithdrawalSchema(ma.Schema):
    id = fields.String()
    seller_id = fields.String()
    amount = fields.Decimal(as_string=True)
    status = fields.String()
    # Only the last four digits ever leave the service
    bank_account = fields.Function(lambda w: mask_account(w.bank_account_number))
    routing_code = fields.String()
    account_holder_name = fields.String()
    notes = fields.String(allow_none=True)
    payout_id = fields.String(allow_none=True)
    transaction_id = fields.String(allow_none=True)
    failure_reason = fields.String(allow_none=True)
    requested_at = fields.DateTime()
    processed_at = fields.DateTime(allow_none=True)
    processed_by = fields.String(allow_none=True)


class AdminWithdrawalSchema(WithdrawalSchema):
    seller = fields.Function(lambda w: {
        "id": w.seller.id,
        "name": w.seller.full_name,
        "email": w.seller.email,
    } if w.seller else None)
