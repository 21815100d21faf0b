# ora_backend/services/preference_service.py
import logging
from typing import Optional, Dict, Any

from firebase_admin import firestore

from ora_backend.models.notification import NotificationType
from ora_backend.models.preferences import NotificationPreferences
from ora_backend.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

# 엔게이지먼트 알림 유형 -> 사용자 설정 키
_ENGAGEMENT_PREFERENCE_KEYS = {
    NotificationType.LIKE: 'likes',
    NotificationType.COMMENT: 'comments',
    NotificationType.FOLLOW: 'follows',
    NotificationType.MENTION: 'mentions',
}

# 프로모션 세부 유형 -> 사용자 설정 키
_PROMOTIONAL_PREFERENCE_KEYS = {
    NotificationType.ANNOUNCEMENT.value: 'announcements',
    NotificationType.PROMO.value: 'promos',
    NotificationType.FEATURE_UPDATE.value: 'feature_updates',
    NotificationType.EVENT.value: 'events',
}


class PreferenceService:
    """
    사용자별 알림 수신 설정을 조회/저장하는 서비스 클래스.
    설정 문서가 없을 때의 기본값 정책이 설정 종류마다 다르다는 점에 주의합니다.
    - 푸시/엔게이지먼트/시스템 알림: 기본 수신 (opt-out 방식)
    - 프로모션 알림: 기본 거부 (opt-in 방식)
    """
    def __init__(self, db=None):
        self.db = db or firestore.client()
        self.users_ref = self.db.collection('users')

    def _settings_ref(self, user_id: str):
        return self.users_ref.document(user_id).collection('notification_preferences').document('settings')

    def _get_raw(self, user_id: str) -> Optional[Dict[str, Any]]:
        """저장된 설정 문서를 그대로 반환합니다. 문서가 없으면 None."""
        doc = self._settings_ref(user_id).get()
        if not doc.exists:
            return None
        return doc.to_dict() or {}

    def get_preferences(self, user_id: str) -> NotificationPreferences:
        """저장된 설정에 기본값을 채워 반환합니다."""
        return NotificationPreferences.from_dict(self._get_raw(user_id) or {})

    def update_preferences(self, user_id: str, changes: Dict[str, Any]) -> NotificationPreferences:
        """
        설정을 부분 갱신(merge)합니다.
        중첩된 섹션(engagement, system, promotional)은 전달된 키만 덮어씁니다.
        """
        payload = dict(changes)
        payload['updated_at'] = DateTimeUtils.now()
        self._settings_ref(user_id).set(payload, merge=True)
        logger.info(f"알림 설정 갱신 완료 (user_id: {user_id}, keys: {sorted(changes.keys())})")
        return self.get_preferences(user_id)

    def is_push_enabled(self, user_id: str) -> bool:
        """푸시 수신 여부. 설정이 없으면 수신(True)으로 간주합니다."""
        raw = self._get_raw(user_id)
        if raw is None:
            return True
        return raw.get('push_enabled') is not False

    def allows_engagement(self, user_id: str, n_type: NotificationType) -> bool:
        """좋아요/댓글/팔로우/멘션 알림 푸시 수신 여부. 기본값은 수신."""
        key = _ENGAGEMENT_PREFERENCE_KEYS.get(n_type)
        raw = self._get_raw(user_id)
        if raw is None or key is None:
            return True
        return (raw.get('engagement') or {}).get(key) is not False

    def allows_system(self, user_id: str) -> bool:
        """게시물 검토 결과 알림 수신 여부. 기본값은 수신."""
        raw = self._get_raw(user_id)
        if raw is None:
            return True
        return (raw.get('system') or {}).get('post_moderation') is not False

    def should_receive_promo(self, user_id: str, promo_type: str) -> bool:
        """
        프로모션 알림 수신 여부를 판단합니다.
        - 설정 문서가 없으면 거부 (opt-in 이 필요)
        - promotional.enabled 가 True 여야 함
        - 세부 유형 플래그는 명시적으로 False 인 경우에만 거부
        - 알 수 없는 세부 유형은 수신으로 간주
        """
        raw = self._get_raw(user_id)
        if raw is None:
            return False

        promo_prefs = raw.get('promotional') or {}
        if not promo_prefs.get('enabled'):
            return False

        key = _PROMOTIONAL_PREFERENCE_KEYS.get(promo_type)
        if key is None:
            return True
        return promo_prefs.get(key) is not False
