from marshmallow import fields

from marketplace.extensions import ma


class WalletSchema(ma.Schema):
    pending_balance = fields.Decimal(as_string=True)
    available_balance = fields.Decimal(as_string=True)
    currency = fields.String()
    updated_at = fields.DateTime()


class WalletTransactionSchema(ma.Schema):
    id = fields.String()
    order_id = fields.String(allow_none=True)
    type = fields.String()
    balance_type = fields.String()
    amount = fields.Decimal(as_string=True)
    status = fields.String()
    reference_type = fields.String(allow_none=True)
    reference_id = fields.String(allow_none=True)
    description = fields.String(allow_none=True)
    created_at = fields.DateTime()
