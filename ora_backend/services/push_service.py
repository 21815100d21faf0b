# ora_backend/services/push_service.py
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, List

from firebase_admin import exceptions, firestore

from ora_backend.models.notification import NotificationType, NotificationCategory, SYSTEM_TYPES
from ora_backend.models.promotion import DeliveryStatus, NotificationDelivery
from ora_backend.services.messaging_gateway import MessagingGateway, is_invalid_token_error
from ora_backend.services.preference_service import PreferenceService
from ora_backend.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)


@dataclass
class PushResult:
    """단일 사용자 푸시 발송 결과"""
    success: bool
    sent: int = 0
    failed: int = 0

@dataclass
class BatchPushResult:
    """다수 사용자 대상 일괄 발송 결과"""
    total: int = 0
    sent: int = 0
    failed: int = 0


class PushService:
    """
    FCM 푸시 발송을 담당하는 공용 서비스 클래스.
    - 사용자별 푸시 수신 설정 확인
    - 'users/{user_id}/fcm_tokens' 토큰 관리 및 무효 토큰 자동 정리
    - 딥링크 생성, 발송 감사 기록(notification_deliveries) 저장
    """
    def __init__(self, preference_service: PreferenceService, gateway: Optional[MessagingGateway] = None,
                 db=None, deep_link_scheme: str = 'ora', batch_size: int = 100,
                 batch_delay_seconds: float = 0.1, max_workers: int = 10):
        self.db = db or firestore.client()
        self.users_ref = self.db.collection('users')
        self.deliveries_ref = self.db.collection('notification_deliveries')
        self.preference_service = preference_service
        self.gateway = gateway or MessagingGateway()
        self.deep_link_scheme = deep_link_scheme
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.max_workers = max_workers

    def _tokens_ref(self, user_id: str):
        return self.users_ref.document(user_id).collection('fcm_tokens')

    # ------------------------------------------------------------------
    # 토큰 관리
    # ------------------------------------------------------------------
    def register_token(self, user_id: str, token: str, platform: str = 'ios') -> None:
        """기기 토큰을 등록합니다. 토큰 문자열을 문서 ID로 사용하므로 재등록은 덮어쓰기입니다."""
        if not token:
            raise ValueError("등록할 토큰이 비어 있습니다.")
        now = DateTimeUtils.now()
        self._tokens_ref(user_id).document(token).set({
            'token': token,
            'platform': platform,
            'enabled': True,
            'created_at': now,
            'updated_at': now,
        })
        logger.info(f"FCM 토큰 등록 완료 (user_id: {user_id}, platform: {platform})")

    def set_token_enabled(self, user_id: str, token: str, enabled: bool) -> None:
        token_ref = self._tokens_ref(user_id).document(token)
        if not token_ref.get().exists:
            raise LookupError("등록되지 않은 토큰입니다.")
        token_ref.update({'enabled': enabled, 'updated_at': DateTimeUtils.now()})

    def remove_token(self, user_id: str, token: str) -> int:
        """token 필드가 일치하는 모든 토큰 문서를 한 번의 batch로 삭제하고 삭제 건수를 반환합니다."""
        docs = list(self._tokens_ref(user_id).where('token', '==', token).stream())
        if not docs:
            return 0
        batch = self.db.batch()
        for doc in docs:
            batch.delete(doc.reference)
        batch.commit()
        logger.info(f"FCM 토큰 삭제 완료 (user_id: {user_id}, count: {len(docs)})")
        return len(docs)

    def get_user_tokens(self, user_id: str) -> List[str]:
        """명시적으로 비활성화(enabled=False)되지 않은 토큰 목록을 반환합니다."""
        tokens = []
        for doc in self._tokens_ref(user_id).stream():
            data = doc.to_dict() or {}
            if data.get('token') and data.get('enabled') is not False:
                tokens.append(data['token'])
        return tokens

    # ------------------------------------------------------------------
    # 딥링크
    # ------------------------------------------------------------------
    def build_deep_link(self, n_type: NotificationType, category: NotificationCategory, target_id: str,
                        activity_id: Optional[str] = None, deep_link: Optional[str] = None) -> str:
        """
        알림을 눌렀을 때 이동할 앱 내부 경로를 결정합니다.
        명시적으로 전달된 deep_link 가 항상 우선합니다.
        """
        if deep_link:
            return deep_link

        scheme = self.deep_link_scheme
        if category is NotificationCategory.ENGAGEMENT:
            post_id = activity_id or target_id
            if post_id:
                return f"{scheme}://post/{post_id}"
        elif category is NotificationCategory.SYSTEM:
            if n_type in SYSTEM_TYPES:
                return f"{scheme}://post/{target_id}"
            return f"{scheme}://profile"
        elif category is NotificationCategory.PROMOTIONAL:
            return f"{scheme}://notification/{target_id}"

        return f"{scheme}://home"

    # ------------------------------------------------------------------
    # 발송
    # ------------------------------------------------------------------
    def send_push_notification(self, user_id: str, notification_id: str, n_type: NotificationType,
                               category: NotificationCategory, title: str, body: str, target_id: str,
                               activity_id: Optional[str] = None, image_url: Optional[str] = None,
                               deep_link: Optional[str] = None) -> PushResult:
        """
        한 사용자의 모든 활성 토큰에 푸시를 발송합니다.

        :return: PushResult(success, sent, failed)
            - 푸시 비활성/토큰 없음은 오류가 아니며 success=True, sent=0 으로 반환합니다.
        """
        if not self.preference_service.is_push_enabled(user_id):
            logger.info(f"푸시 수신이 꺼져 있어 발송하지 않음 (user_id: {user_id})")
            return PushResult(success=True)

        tokens = self.get_user_tokens(user_id)
        if not tokens:
            logger.info(f"등록된 FCM 토큰이 없어 발송하지 않음 (user_id: {user_id})")
            return PushResult(success=True)

        link = self.build_deep_link(n_type, category, target_id, activity_id, deep_link)
        data = {
            'type': n_type.value,
            'category': category.value,
            'target_id': target_id,
            'notification_id': notification_id,
            'deep_link': link,
        }
        if activity_id:
            data['activity_id'] = activity_id
        if image_url:
            data['image_url'] = image_url

        try:
            response = self.gateway.send_multicast(tokens, title, body, data, image_url)
        except exceptions.FirebaseError as e:
            logger.error(f"푸시 발송 실패 (user_id: {user_id}): {e}", exc_info=True)
            self._track_delivery(notification_id, user_id, category, DeliveryStatus.FAILED, len(tokens), str(e))
            return PushResult(success=False, sent=0, failed=len(tokens))

        sent = response.success_count
        failed = response.failure_count

        if failed > 0:
            for token, resp in zip(tokens, response.responses):
                if resp.success:
                    continue
                logger.warning(f"토큰 발송 실패 (user_id: {user_id}): {resp.exception}")
                if is_invalid_token_error(resp.exception):
                    self._prune_token(user_id, token)

        # 일부 토큰만 성공하면 SENT, 전부 성공하면 DELIVERED
        if sent == 0:
            status = DeliveryStatus.FAILED
        elif failed > 0:
            status = DeliveryStatus.SENT
        else:
            status = DeliveryStatus.DELIVERED
        self._track_delivery(notification_id, user_id, category, status, len(tokens))
        logger.info(f"푸시 발송 완료 (user_id: {user_id}): 성공 {sent}, 실패 {failed}")

        return PushResult(success=sent > 0, sent=sent, failed=failed)

    def send_batch_push_notifications(self, user_ids: List[str], title: str, body: str,
                                      n_type: NotificationType, category: NotificationCategory,
                                      target_id: str, image_url: Optional[str] = None,
                                      deep_link: Optional[str] = None) -> BatchPushResult:
        """
        여러 사용자에게 푸시를 일괄 발송합니다.
        batch_size 단위로 나누어 묶음 안에서는 동시에 발송하고, 묶음 사이에는 잠시 대기합니다.
        """
        result = BatchPushResult()

        def _send_one(user_id: str) -> PushResult:
            # 사용자별 발송 추적용 임시 알림 ID
            temp_notification_id = f"{category.value}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
            return self.send_push_notification(
                user_id, temp_notification_id, n_type, category, title, body, target_id,
                image_url=image_url, deep_link=deep_link
            )

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for start in range(0, len(user_ids), self.batch_size):
                chunk = user_ids[start:start + self.batch_size]
                for push_result in executor.map(_send_one, chunk):
                    result.total += 1
                    if push_result.success:
                        result.sent += push_result.sent
                        result.failed += push_result.failed
                    else:
                        result.failed += 1

                if start + self.batch_size < len(user_ids) and self.batch_delay_seconds > 0:
                    time.sleep(self.batch_delay_seconds)

        logger.info(f"일괄 푸시 발송 완료: 대상 {result.total}, 성공 {result.sent}, 실패 {result.failed}")
        return result

    # ------------------------------------------------------------------
    # 내부 헬퍼
    # ------------------------------------------------------------------
    def _prune_token(self, user_id: str, token: str) -> None:
        """무효 토큰 삭제. 실패해도 발송 결과에는 영향을 주지 않습니다."""
        try:
            self.remove_token(user_id, token)
        except Exception as e:
            logger.error(f"무효 토큰 삭제 실패 (user_id: {user_id}): {e}", exc_info=True)

    def _track_delivery(self, notification_id: str, user_id: str, category: NotificationCategory,
                        status: DeliveryStatus, token_count: int, error: Optional[str] = None) -> None:
        """발송 감사 기록을 남깁니다. 기록 실패는 로그만 남깁니다."""
        try:
            delivery = NotificationDelivery(
                notification_id=notification_id,
                user_id=user_id,
                category=category.value,
                status=status,
                token_count=token_count,
                error=error,
            )
            self.deliveries_ref.document().set(delivery.to_dict())
        except Exception as e:
            logger.error(f"발송 기록 저장 실패 (notification_id: {notification_id}): {e}", exc_info=True)
