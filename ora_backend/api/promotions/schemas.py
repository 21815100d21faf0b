# ora_backend/api/promotions/schemas.py
from marshmallow import Schema, fields, validate

from ora_backend.models.notification import PROMOTIONAL_TYPES
from ora_backend.models.promotion import AudienceType

class AudienceFiltersSchema(Schema):
    role = fields.Str(validate=validate.OneOf(['admin', 'user']))
    days = fields.Int(validate=validate.Range(min=1, max=365))
    user_ids = fields.List(fields.Str())

class TargetAudienceSchema(Schema):
    type = fields.Str(required=True, validate=validate.OneOf([a.value for a in AudienceType]))
    filters = fields.Nested(AudienceFiltersSchema, load_default=dict)

class PromotionCreateSchema(Schema):
    """
    POST /api/promotions
    scheduled_for 가 있으면 예약만 하고, 없으면 즉시 발송합니다.
    """
    title = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    body = fields.Str(required=True, validate=validate.Length(min=1, max=500))
    type = fields.Str(required=True, validate=validate.OneOf([t.value for t in PROMOTIONAL_TYPES]))
    target_audience = fields.Nested(TargetAudienceSchema, required=True)
    image_url = fields.Str(load_default=None)
    deep_link = fields.Str(load_default=None)
    scheduled_for = fields.DateTime(load_default=None)

class PromotionStatsSchema(Schema):
    total_recipients = fields.Int()
    delivered = fields.Int()
    opened = fields.Int()
    clicked = fields.Int()

class PromotionResultSchema(Schema):
    promotion_id = fields.Str(required=True)
    stats = fields.Nested(PromotionStatsSchema, required=True)
