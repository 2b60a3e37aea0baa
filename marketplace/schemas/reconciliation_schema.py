from marshmallow import fields

from marketplace.extensions import ma


class ReconciliationItemSchema(ma.Schema):
    id = fields.String()
    kind = fields.String()
    status = fields.String()
    seller_id = fields.String(allow_none=True)
    order_id = fields.String(allow_none=True)
    withdrawal_id = fields.String(allow_none=True)
    amount = fields.Decimal(as_string=True, allow_none=True)
    details = fields.Dict()
    created_at = fields.DateTime()
    resolved_at = fields.DateTime(allow_none=True)
    resolved_by = fields.String(allow_none=True)
    resolution = fields.String(allow_none=True)
