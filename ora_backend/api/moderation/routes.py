# ora_backend/api/moderation/routes.py
from functools import wraps

from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from marshmallow import ValidationError

from ora_backend.api.moderation.schemas import (
    ModerationDecisionSchema, ContentEvaluateSchema, ModerationVerdictSchema,
    ModerationActionSchema, ModerationQueuePostSchema,
)


moderation_bp = Blueprint('moderation_bp', __name__)

def admin_required(fn):
    """users/{uid}.is_admin 이 True 인 사용자만 통과시킵니다. jwt_required 뒤에 적용해야 하며, 거부 시 전역 핸들러가 403 으로 응답합니다."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        moderation_service = current_app.services['moderation']
        if not moderation_service.is_admin(get_jwt_identity()):
            raise PermissionError("관리자만 접근할 수 있습니다.")
        return fn(*args, **kwargs)
    return wrapper

@moderation_bp.route('/posts/<string:post_id>/evaluate', methods=['POST'])
@jwt_required()
@admin_required
def evaluate_post(post_id: str):
    """
    저장된 게시물을 규칙 엔진으로 다시 평가하고 결과를 게시물에 반영합니다.
    """
    moderation_service = current_app.services['moderation']
    try:
        verdict = moderation_service.moderate_post(post_id)
        return jsonify(ModerationVerdictSchema().dump(verdict.to_dict())), 200
    except LookupError as e:
        return jsonify({"error_code": "POST_NOT_FOUND", "message": str(e)}), 404

def _decide(post_id: str, action: str):
    moderation_service = current_app.services['moderation']
    moderator_id = get_jwt_identity()
    try:
        data = ModerationDecisionSchema().load(request.get_json(silent=True) or {})
        if action == 'approve':
            result = moderation_service.approve_post(post_id, moderator_id, notes=data['notes'])
        elif action == 'reject':
            result = moderation_service.reject_post(post_id, moderator_id, data['reason'], notes=data['notes'])
        else:
            result = moderation_service.flag_post(post_id, moderator_id, data['reason'], notes=data['notes'])
        return jsonify(ModerationActionSchema().dump(result.to_dict())), 200
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValueError as e:
        return jsonify({"error_code": "REASON_REQUIRED", "message": str(e)}), 400
    except LookupError as e:
        return jsonify({"error_code": "POST_NOT_FOUND", "message": str(e)}), 404

@moderation_bp.route('/posts/<string:post_id>/approve', methods=['POST'])
@jwt_required()
@admin_required
def approve_post(post_id: str):
    return _decide(post_id, 'approve')

@moderation_bp.route('/posts/<string:post_id>/reject', methods=['POST'])
@jwt_required()
@admin_required
def reject_post(post_id: str):
    return _decide(post_id, 'reject')

@moderation_bp.route('/posts/<string:post_id>/flag', methods=['POST'])
@jwt_required()
@admin_required
def flag_post(post_id: str):
    return _decide(post_id, 'flag')

@moderation_bp.route('/posts/<string:post_id>/history', methods=['GET'])
@jwt_required()
@admin_required
def get_history(post_id: str):
    """게시물의 검토 감사 기록을 시간순으로 반환합니다."""
    moderation_service = current_app.services['moderation']
    actions = moderation_service.get_moderation_history(post_id)
    return jsonify(ModerationActionSchema(many=True).dump([a.to_dict() for a in actions])), 200

@moderation_bp.route('/queue/pending', methods=['GET'])
@jwt_required()
@admin_required
def get_pending_queue():
    moderation_service = current_app.services['moderation']
    limit = request.args.get('limit', 50, type=int)
    posts = moderation_service.get_pending_posts(limit)
    return jsonify(ModerationQueuePostSchema(many=True).dump(posts)), 200

@moderation_bp.route('/queue/flagged', methods=['GET'])
@jwt_required()
@admin_required
def get_flagged_queue():
    moderation_service = current_app.services['moderation']
    limit = request.args.get('limit', 50, type=int)
    posts = moderation_service.get_flagged_posts(limit)
    return jsonify(ModerationQueuePostSchema(many=True).dump(posts)), 200

@moderation_bp.route('/content/evaluate', methods=['POST'])
@jwt_required()
@admin_required
def evaluate_content():
    """
    게시물 생성 전에 이미지/캡션만으로 검토 결과를 미리 확인합니다. 아무것도 저장하지 않습니다.
    """
    moderation_service = current_app.services['moderation']
    try:
        data = ContentEvaluateSchema().load(request.get_json() or {})
        verdict = moderation_service.evaluate_content(data['image_url'], data['caption'], data['interest_ids'])
        return jsonify(ModerationVerdictSchema().dump(verdict.to_dict())), 200
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
