# ora_backend/core/config.py

import os # 'os' 모듈: 환경 변수를 읽기 위해 사용합니다.


def _env_bool(key: str, default: bool) -> bool:
    """'true'/'1'/'yes' 형식의 환경 변수를 bool로 읽습니다."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')

def _env_list(key: str) -> list:
    """쉼표로 구분된 환경 변수를 리스트로 읽습니다. 비어 있으면 빈 리스트."""
    value = os.getenv(key, '')
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """모든 환경 설정의 기반이 되는 공통 설정 클래스입니다."""
    # 이 키는 JWT 토큰을 서명하는 데 사용되어 토큰의 위변조를 방지합니다.
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY')

    # --- 알림 집계 ---
    # 같은 (수신자, 유형, 대상) 이벤트를 하나의 알림으로 묶는 시간 윈도우 (분)
    NOTIFICATION_AGGREGATION_WINDOW_MINUTES = int(os.getenv('NOTIFICATION_AGGREGATION_WINDOW_MINUTES', 60))
    # 알림 문서에 저장할 최대 행위자(actor) 프로필 수
    NOTIFICATION_MAX_ACTORS = int(os.getenv('NOTIFICATION_MAX_ACTORS', 3))

    # --- 푸시 발송 ---
    PUSH_BATCH_SIZE = int(os.getenv('PUSH_BATCH_SIZE', 100))
    PUSH_BATCH_DELAY_SECONDS = float(os.getenv('PUSH_BATCH_DELAY_SECONDS', 0.1))
    PUSH_MAX_WORKERS = int(os.getenv('PUSH_MAX_WORKERS', 10))
    DEEP_LINK_SCHEME = os.getenv('DEEP_LINK_SCHEME', 'ora')
    # Firestore batch 1회당 최대 작업 수
    IN_APP_BATCH_SIZE = int(os.getenv('IN_APP_BATCH_SIZE', 500))

    # --- 게시물 검토(moderation) ---
    # 'approved' 또는 'pending' (수동 검토 필요)
    MODERATION_DEFAULT_STATUS = os.getenv('MODERATION_DEFAULT_STATUS', 'approved')
    MODERATION_FINAL_DECISION = _env_bool('MODERATION_FINAL_DECISION', True)
    MODERATION_BLOCKED_TERMS = _env_list('MODERATION_BLOCKED_TERMS')
    MODERATION_FLAGGED_TERMS = _env_list('MODERATION_FLAGGED_TERMS')

class DevelopmentConfig(Config):
    """개발 환경을 위한 설정 클래스입니다."""
    DEBUG = True
    # 개발용 Firebase 프로젝트에 연결하기 위한 서비스 계정 키 파일 경로
    FIREBASE_CREDENTIALS_PATH = os.getenv('DEV_FIREBASE_CREDENTIALS_PATH')

class TestingConfig(Config):
    """테스트 환경을 위한 설정 클래스입니다."""
    TESTING = True
    DEBUG = False
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'testing-secret-key-with-enough-length')
    FIREBASE_CREDENTIALS_PATH = os.getenv('TEST_FIREBASE_CREDENTIALS_PATH')
    # 테스트에서는 배치 사이 대기 시간을 두지 않습니다.
    PUSH_BATCH_DELAY_SECONDS = 0.0

class ProductionConfig(Config):
    """운영 환경을 위한 설정 클래스입니다."""
    DEBUG = False
    FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH')

# FLASK_ENV 값에 따라 create_app 에서 적절한 설정을 선택하는 데 사용됩니다.
config_by_name = dict(
    development=DevelopmentConfig,
    testing=TestingConfig,
    production=ProductionConfig
)
