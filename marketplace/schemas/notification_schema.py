from marshmallow import fields

from marketplace.extensions import ma


class NotificationSchema(ma.Schema):
    id = fields.String()
    type = fields.String()
    title = fields.String()
    message = fields.String()
    is_read = fields.Boolean()
    created_at = fields.DateTime()
    details = fields.Dict(allow_none=True)
