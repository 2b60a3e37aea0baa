from marshmallow import fields

from marketplace.extensions import ma


class AdminEarningSchema(ma.Schema):
    id = fields.String()
    order_id = fields.String()
    seller_id = fields.String()
    order_amount = fields.Decimal(as_string=True)
    commission_rate = fields.Decimal(as_string=True)
    commission_amount = fields.Decimal(as_string=True)
    seller_amount = fields.Decimal(as_string=True)
    status = fields.String()
    earned_at = fields.DateTime()
    reversed_at = fields.DateTime(allow_none=True)
