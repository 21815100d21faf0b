# ora_backend/api/notifications/schemas.py
from marshmallow import Schema, fields, validate

from ora_backend.models.notification import ENGAGEMENT_TYPES

# --- 재사용을 위한 중첩 스키마 ---
class ActorSchema(Schema):
    """알림 응답에 포함될 행위자 정보 스키마."""
    id = fields.Str(required=True)
    username = fields.Str(required=True)
    profile_photo_url = fields.Str(allow_none=True)

class EngagementPreferencesSchema(Schema):
    likes = fields.Bool()
    comments = fields.Bool()
    follows = fields.Bool()
    mentions = fields.Bool()

class SystemPreferencesSchema(Schema):
    post_moderation = fields.Bool()
    account_actions = fields.Bool()

class PromotionalPreferencesSchema(Schema):
    enabled = fields.Bool()
    announcements = fields.Bool()
    promos = fields.Bool()
    feature_updates = fields.Bool()
    events = fields.Bool()

# --- API 요청/응답 스키마 ---

class NotificationEventSchema(Schema):
    """
    POST /api/notifications/events
    좋아요/댓글/팔로우/멘션 이벤트를 기록할 때의 요청 본문입니다. 행위자는 JWT 사용자입니다.
    """
    type = fields.Str(required=True, validate=validate.OneOf([t.value for t in ENGAGEMENT_TYPES]))
    recipient_user_id = fields.Str(required=True, validate=validate.Length(min=1))
    target_id = fields.Str(required=True, validate=validate.Length(min=1))
    activity_id = fields.Str(load_default=None)
    post_image_url = fields.Str(load_default=None)
    post_thumbnail_url = fields.Str(load_default=None)
    post_caption = fields.Str(load_default=None, validate=validate.Length(max=2000))
    metadata = fields.Dict(keys=fields.Str(), load_default=None)

class NotificationResponseSchema(Schema):
    """알림 정보 응답을 위한 최종 JSON 형식을 정의합니다."""
    notification_id = fields.Str(required=True)
    type = fields.Str(required=True)
    category = fields.Str()
    message = fields.Str(required=True)
    actors = fields.List(fields.Nested(ActorSchema), required=True)
    actor_count = fields.Int(required=True)
    target_id = fields.Str(required=True)
    activity_id = fields.Str(allow_none=True)
    is_read = fields.Bool(required=True)
    post_image_url = fields.Str(allow_none=True)
    post_thumbnail_url = fields.Str(allow_none=True)
    post_caption = fields.Str(allow_none=True)
    promo_title = fields.Str(allow_none=True)
    promo_image_url = fields.Str(allow_none=True)
    deep_link = fields.Str(allow_none=True)
    created_at = fields.DateTime(required=True)
    updated_at = fields.DateTime(required=True)
    last_activity_at = fields.DateTime(required=True)

class NotificationPreferencesSchema(Schema):
    """GET/PUT /api/notifications/preferences 의 요청/응답 형식입니다. 모든 필드는 선택입니다."""
    push_enabled = fields.Bool()
    email_enabled = fields.Bool()
    engagement = fields.Nested(EngagementPreferencesSchema)
    system = fields.Nested(SystemPreferencesSchema)
    promotional = fields.Nested(PromotionalPreferencesSchema)

class TokenRegisterSchema(Schema):
    """PUT /api/notifications/tokens 요청 본문의 유효성을 검사합니다."""
    token = fields.Str(required=True, validate=validate.Length(min=1, max=4096))
    platform = fields.Str(load_default='ios', validate=validate.OneOf(['ios', 'android', 'web']))

class TokenDeleteSchema(Schema):
    """DELETE /api/notifications/tokens 요청 본문의 유효성을 검사합니다."""
    token = fields.Str(required=True, validate=validate.Length(min=1, max=4096))
