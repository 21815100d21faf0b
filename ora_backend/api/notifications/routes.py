# ora_backend/api/notifications/routes.py
from flask import Blueprint, request, jsonify, Response, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from marshmallow import ValidationError

from ora_backend.api.notifications.schemas import (
    NotificationEventSchema, NotificationResponseSchema, NotificationPreferencesSchema,
    TokenRegisterSchema, TokenDeleteSchema,
)
from ora_backend.services.notification_service import ENRICHMENT_FIELDS


notifications_bp = Blueprint('notifications_bp', __name__)

@notifications_bp.route('', methods=['GET'])
@jwt_required()
def get_notifications():
    """
    로그인한 사용자의 알림 목록을 최근 활동순으로 페이지네이션 조회합니다.
    """
    notification_service = current_app.services['notifications']
    user_id = get_jwt_identity()
    limit = request.args.get('limit', 20, type=int)
    cursor = request.args.get('cursor', None, type=str)

    notifications, next_cursor = notification_service.list_notifications(user_id, limit, cursor)
    return jsonify({
        "notifications": NotificationResponseSchema(many=True).dump(notifications),
        "next_cursor": next_cursor
    }), 200

@notifications_bp.route('/events', methods=['POST'])
@jwt_required()
def record_event():
    """
    좋아요/댓글/팔로우/멘션 이벤트를 기록합니다. 행위자는 현재 로그인한 사용자입니다.
    - 새 알림이 생성되면 201 과 알림 ID를 반환하고 수신자에게 푸시를 보냅니다.
    - 기존 알림에 집계되었거나 건너뛴 경우 200 과 null 을 반환합니다.
    """
    notification_service = current_app.services['notifications']
    actor_id = get_jwt_identity()
    try:
        data = NotificationEventSchema().load(request.get_json() or {})
        enrichment = {k: data.get(k) for k in ENRICHMENT_FIELDS}
        notification_id = notification_service.notify(
            data['type'], data['recipient_user_id'], actor_id, data['target_id'],
            activity_id=data.get('activity_id'), enrichment=enrichment
        )
        return jsonify({"notification_id": notification_id}), 201 if notification_id else 200
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValueError as e:
        return jsonify({"error_code": "INVALID_EVENT", "message": str(e)}), 400

@notifications_bp.route('/<string:notification_id>/read', methods=['POST'])
@jwt_required()
def mark_as_read(notification_id: str):
    """알림 하나를 읽음 처리합니다."""
    notification_service = current_app.services['notifications']
    user_id = get_jwt_identity()
    try:
        notification_service.mark_as_read(user_id, notification_id)
        return Response(status=204)
    except LookupError as e:
        return jsonify({"error_code": "NOTIFICATION_NOT_FOUND", "message": str(e)}), 404

@notifications_bp.route('/read-all', methods=['POST'])
@jwt_required()
def mark_all_as_read():
    """읽지 않은 알림을 모두 읽음 처리하고 처리 건수를 반환합니다."""
    notification_service = current_app.services['notifications']
    user_id = get_jwt_identity()
    updated = notification_service.mark_all_as_read(user_id, batch_size=current_app.config['IN_APP_BATCH_SIZE'])
    return jsonify({"updated": updated}), 200

@notifications_bp.route('/preferences', methods=['GET'])
@jwt_required()
def get_preferences():
    preference_service = current_app.services['preferences']
    preferences = preference_service.get_preferences(get_jwt_identity())
    return jsonify(NotificationPreferencesSchema().dump(preferences.to_dict())), 200

@notifications_bp.route('/preferences', methods=['PUT'])
@jwt_required()
def update_preferences():
    """
    알림 수신 설정을 부분 갱신합니다. 전달된 필드만 바뀝니다.
    """
    preference_service = current_app.services['preferences']
    user_id = get_jwt_identity()
    try:
        changes = NotificationPreferencesSchema().load(request.get_json() or {})
        preferences = preference_service.update_preferences(user_id, changes)
        return jsonify(NotificationPreferencesSchema().dump(preferences.to_dict())), 200
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

@notifications_bp.route('/tokens', methods=['PUT'])
@jwt_required()
def register_token():
    """푸시 수신용 기기 토큰을 등록합니다."""
    push_service = current_app.services['push']
    user_id = get_jwt_identity()
    try:
        data = TokenRegisterSchema().load(request.get_json() or {})
        push_service.register_token(user_id, data['token'], data['platform'])
        return Response(status=204)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

@notifications_bp.route('/tokens', methods=['DELETE'])
@jwt_required()
def delete_token():
    """로그아웃 등으로 더 이상 쓰지 않는 기기 토큰을 삭제합니다."""
    push_service = current_app.services['push']
    user_id = get_jwt_identity()
    try:
        data = TokenDeleteSchema().load(request.get_json() or {})
        push_service.remove_token(user_id, data['token'])
        return Response(status=204)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
