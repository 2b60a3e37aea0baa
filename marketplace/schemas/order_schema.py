from marshmallow import fields

from marketplace.extensions import ma


class OrderSettlementSchema(ma.Schema):
    id = fields.String()
    seller_id = fields.String()
    buyer_id = fields.String(allow_none=True)
    status = fields.String()
    payment_method = fields.String()
    payment_status = fields.String()
    settlement_state = fields.String()
    wallet_credited = fields.Boolean()
    total_amount = fields.Decimal(as_string=True)
    commission_amount = fields.Decimal(as_string=True, allow_none=True)
    seller_amount = fields.Decimal(as_string=True, allow_none=True)
    shipment_id = fields.String(allow_none=True)
    awb_code = fields.String(allow_none=True)
    courier_name = fields.String(allow_none=True)
    tracking_url = fields.String(allow_none=True)
    shipment_status = fields.String(allow_none=True)
    updated_at = fields.DateTime(allow_none=True)
