# ora_backend/api/promotions/routes.py
import logging
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from marshmallow import ValidationError

from ora_backend.api.moderation.routes import admin_required
from ora_backend.api.promotions.schemas import PromotionCreateSchema, PromotionResultSchema
from ora_backend.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

promotions_bp = Blueprint('promotions_bp', __name__)

@promotions_bp.route('', methods=['POST'])
@jwt_required()
@admin_required
def create_promotion():
    """
    프로모션 알림을 생성합니다.
    - 즉시 발송: 201 과 발송 통계를 반환합니다.
    - 예약 발송: 202 와 빈 통계를 반환하며, 실제 발송은 /process-scheduled 에서 이뤄집니다.
    """
    promotion_service = current_app.services['promotions']
    try:
        data = PromotionCreateSchema().load(request.get_json() or {})
        result = promotion_service.create_and_send(
            title=data['title'],
            body=data['body'],
            promo_type=data['type'],
            target_audience=data['target_audience'],
            sent_by=get_jwt_identity(),
            image_url=data['image_url'],
            deep_link=data['deep_link'],
            scheduled_for=data['scheduled_for'],
        )
        status_code = 202 if data['scheduled_for'] else 201
        return jsonify(PromotionResultSchema().dump(result)), status_code
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValueError as e:
        return jsonify({"error_code": "INVALID_PROMOTION", "message": str(e)}), 400

@promotions_bp.route('/process-scheduled', methods=['POST'])
@jwt_required()
@admin_required
def process_scheduled():
    """
    발송 시각이 지난 예약 프로모션을 발송합니다. 스케줄러(cron)에서 주기적으로 호출합니다.
    ?as_of=ISO8601 을 주면 그 시각을 기준으로 처리합니다 (밀린 예약 재처리용).
    """
    promotion_service = current_app.services['promotions']
    as_of = request.args.get('as_of')
    try:
        now = DateTimeUtils.parse_iso_datetime(as_of) if as_of else None
    except ValueError as e:
        return jsonify({"error_code": "INVALID_DATETIME", "message": str(e)}), 400
    processed = promotion_service.process_scheduled(now=now)
    logger.info(f"예약 프로모션 처리 요청 완료: {processed}건")
    return jsonify({"processed": processed}), 200
