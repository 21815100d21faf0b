# ora_backend/__init__.py

# =====================================================================================
# 1. 환경 변수 로드 (가장 먼저 실행)
# =====================================================================================
from dotenv import load_dotenv
load_dotenv()

# =====================================================================================
# 2. 모듈 임포트 (Module Imports)
# =====================================================================================
import os
import logging
from datetime import timedelta
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from marshmallow import ValidationError
from flask_jwt_extended import JWTManager
import firebase_admin
from firebase_admin import credentials, firestore

# - 설정
from ora_backend.core.config import config_by_name

# - API 블루프린트
from ora_backend.api.notifications.routes import notifications_bp
from ora_backend.api.moderation.routes import moderation_bp
from ora_backend.api.promotions.routes import promotions_bp

# - 서비스 모듈
from ora_backend.services.messaging_gateway import MessagingGateway
from ora_backend.services.preference_service import PreferenceService
from ora_backend.services.push_service import PushService
from ora_backend.services.notification_service import NotificationService
from ora_backend.api.moderation.rules import KeywordFilterRule, ManualModerationRule
from ora_backend.api.moderation.services import ModerationEngine, ModerationService
from ora_backend.api.promotions.services import PromotionService
from ora_backend.models.moderation import ModerationStatus


def build_moderation_engine(config) -> ModerationEngine:
    """설정값으로 규칙 체인을 구성합니다. 금칙어/주의 단어가 없으면 키워드 규칙은 등록하지 않습니다."""
    engine = ModerationEngine()
    if config['MODERATION_BLOCKED_TERMS'] or config['MODERATION_FLAGGED_TERMS']:
        engine.register_rule(KeywordFilterRule(config['MODERATION_BLOCKED_TERMS'], config['MODERATION_FLAGGED_TERMS']))
    engine.register_rule(ManualModerationRule(
        default_status=ModerationStatus(config['MODERATION_DEFAULT_STATUS']),
        is_final_decision=config['MODERATION_FINAL_DECISION'],
    ))
    return engine


def create_app(config_name=None, db=None, gateway=None):
    """
    Flask 애플리케이션 팩토리 함수.

    :param config_name: 'development' | 'testing' | 'production'. 없으면 FLASK_ENV 를 따릅니다.
    :param db: Firestore 클라이언트. 없으면 firebase_admin 을 초기화하고 기본 클라이언트를 사용합니다.
    :param gateway: FCM 발송 게이트웨이. 없으면 firebase_admin.messaging 을 사용합니다.
    """
    # =====================================================================================
    # 3. Flask 앱 생성 및 기본 설정
    # =====================================================================================
    config_name = config_name or os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    app.json.ensure_ascii = False

    # =====================================================================================
    # 4. 확장 기능 및 외부 서비스 초기화
    # =====================================================================================
    JWTManager(app)

    if db is None:
        if not firebase_admin._apps:
            cred_path = app.config.get('FIREBASE_CREDENTIALS_PATH')
            if not cred_path or not os.path.exists(cred_path):
                raise FileNotFoundError(f"Firebase 인증 파일을 찾을 수 없습니다: {cred_path}")
            cred = credentials.Certificate(cred_path)
            firebase_admin.initialize_app(cred)
        db = firestore.client()

    # =====================================================================================
    # 5. 서비스 인스턴스 생성 및 'app.services'에 저장 (의존성 주입)
    # =====================================================================================
    app.services = {}

    # 5-1. 다른 서비스의 기반이 되는 공용 서비스 먼저 생성
    app.services['preferences'] = PreferenceService(db=db)
    app.services['push'] = PushService(
        preference_service=app.services['preferences'],
        gateway=gateway or MessagingGateway(),
        db=db,
        deep_link_scheme=app.config['DEEP_LINK_SCHEME'],
        batch_size=app.config['PUSH_BATCH_SIZE'],
        batch_delay_seconds=app.config['PUSH_BATCH_DELAY_SECONDS'],
        max_workers=app.config['PUSH_MAX_WORKERS'],
    )
    logging.info("Push service initialized successfully")

    # 5-2. 다른 서비스를 주입받아야 하는 도메인 서비스 생성
    app.services['notifications'] = NotificationService(
        db=db,
        push_service=app.services['push'],
        preference_service=app.services['preferences'],
        aggregation_window=timedelta(minutes=app.config['NOTIFICATION_AGGREGATION_WINDOW_MINUTES']),
        max_actors=app.config['NOTIFICATION_MAX_ACTORS'],
    )
    app.services['moderation'] = ModerationService(
        engine=build_moderation_engine(app.config),
        db=db,
        push_service=app.services['push'],
        preference_service=app.services['preferences'],
    )
    app.services['promotions'] = PromotionService(
        push_service=app.services['push'],
        preference_service=app.services['preferences'],
        db=db,
        in_app_batch_size=app.config['IN_APP_BATCH_SIZE'],
    )

    # =====================================================================================
    # 6. 블루프린트 등록
    # =====================================================================================
    app.register_blueprint(notifications_bp, url_prefix='/api/notifications')
    app.register_blueprint(moderation_bp, url_prefix='/api/moderation')
    app.register_blueprint(promotions_bp, url_prefix='/api/promotions')

    # =====================================================================================
    # 7. 전역 에러 핸들러 설정
    # =====================================================================================
    @app.errorhandler(ValidationError)
    def handle_marshmallow_validation(err):
        response = {"error_code": "VALIDATION_ERROR", "details": err.messages}
        return jsonify(response), 400

    @app.errorhandler(ValueError)
    def handle_value_error(err):
        return jsonify({"error_code": "BAD_REQUEST", "message": str(err)}), 400

    @app.errorhandler(LookupError)
    def handle_lookup_error(err):
        return jsonify({"error_code": "NOT_FOUND", "message": str(err)}), 404

    @app.errorhandler(PermissionError)
    def handle_permission_error(err):
        return jsonify({"error_code": "FORBIDDEN", "message": str(err)}), 403

    @app.errorhandler(Exception)
    def handle_generic_exception(err):
        # 다른 핸들러에서 처리되지 않은 모든 예외를 여기서 처리
        if isinstance(err, HTTPException):
            # 404 라우트 없음, 405 등은 그대로 돌려줌
            return err
        logging.error(f"An unhandled exception occurred: {err}", exc_info=True)
        response = {"error_code": "INTERNAL_SERVER_ERROR", "message": "서버 내부에서 예상치 못한 오류가 발생했습니다."}
        return jsonify(response), 500

    # =====================================================================================
    # 8. 로깅 및 앱 반환
    # =====================================================================================
    if not app.debug:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]')

    logging.info(f"Flask app created for '{config_name}' environment.")

    return app
