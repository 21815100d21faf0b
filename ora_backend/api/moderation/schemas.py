# ora_backend/api/moderation/schemas.py
from marshmallow import Schema, fields, validate

# --- API 요청 스키마 ---

class ModerationDecisionSchema(Schema):
    """
    POST /api/moderation/posts/<post_id>/{approve|reject|flag}
    reject/flag 에서 reason 이 필요한지는 서비스 계층에서 확인합니다.
    """
    reason = fields.Str(load_default=None, validate=validate.Length(max=500))
    notes = fields.Str(load_default=None, validate=validate.Length(max=2000))

class ContentEvaluateSchema(Schema):
    """POST /api/moderation/content/evaluate 요청 본문 (저장 전 미리 평가)"""
    image_url = fields.Str(load_default=None)
    caption = fields.Str(load_default=None, validate=validate.Length(max=2000))
    interest_ids = fields.List(fields.Str(), load_default=list)

# --- API 응답 스키마 ---

class ModerationVerdictSchema(Schema):
    """규칙 엔진 판정 응답"""
    status = fields.Str(required=True)
    reason = fields.Str(allow_none=True)
    metadata = fields.Dict(keys=fields.Str(), values=fields.Str())
    rule_name = fields.Str(allow_none=True)

class ModerationActionSchema(Schema):
    """감사 기록(moderation_actions) 응답"""
    action_id = fields.Str(required=True)
    post_id = fields.Str(required=True)
    moderator_user_id = fields.Str(required=True)
    action = fields.Str(required=True)
    reason = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)
    rule_name = fields.Str(allow_none=True)
    metadata = fields.Dict(keys=fields.Str(), allow_none=True)
    timestamp = fields.DateTime(required=True)

class ModerationQueuePostSchema(Schema):
    """검토 대기/신고 목록의 게시물 항목"""
    post_id = fields.Str(required=True)
    user_id = fields.Str(required=True)
    image_url = fields.Str(allow_none=True)
    caption = fields.Str(allow_none=True)
    moderation_status = fields.Str(required=True)
    moderation_reason = fields.Str(allow_none=True)
    created_at = fields.DateTime(allow_none=True)
