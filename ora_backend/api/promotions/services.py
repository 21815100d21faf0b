# ora_backend/api/promotions/services.py
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

from firebase_admin import firestore

from ora_backend.models.notification import NotificationCategory, NotificationType, PROMOTIONAL_TYPES
from ora_backend.models.promotion import AudienceType, PromotionalNotification, PromotionStatus
from ora_backend.services.preference_service import PreferenceService
from ora_backend.services.push_service import PushService
from ora_backend.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)


class PromotionService:
    """
    관리자가 보내는 프로모션 알림(공지, 이벤트 등)의 생성과 발송을 담당하는 서비스 클래스.
    수신 동의(opt-in)한 사용자에게만 푸시와 앱 내 알림을 보냅니다.
    """
    def __init__(self, push_service: PushService, preference_service: PreferenceService, db=None,
                 in_app_batch_size: int = 500):
        self.db = db or firestore.client()
        self.promotions_ref = self.db.collection('promotional_notifications')
        self.users_ref = self.db.collection('users')
        self.posts_ref = self.db.collection('posts')
        self.push_service = push_service
        self.preference_service = preference_service
        self.in_app_batch_size = in_app_batch_size

    def get_target_user_ids(self, audience: Optional[Dict[str, Any]]) -> List[str]:
        """수신 대상 설정에 맞는 사용자 ID 목록을 반환합니다."""
        audience = audience or {}
        filters = audience.get('filters') or {}
        try:
            audience_type = AudienceType(audience.get('type'))
        except ValueError:
            logger.warning(f"알 수 없는 수신 대상 유형: {audience.get('type')}")
            return []

        if audience_type is AudienceType.ALL:
            return [doc.id for doc in self.users_ref.stream()]

        if audience_type is AudienceType.ROLE:
            is_admin = filters.get('role', 'user') == 'admin'
            return [doc.id for doc in self.users_ref.where('is_admin', '==', is_admin).stream()]

        if audience_type is AudienceType.ACTIVITY:
            # 최근 N일 안에 게시물을 작성한 사용자
            cutoff = DateTimeUtils.now() - timedelta(days=int(filters.get('days', 30)))
            user_ids = []
            for doc in self.posts_ref.where('created_at', '>=', cutoff).stream():
                user_id = (doc.to_dict() or {}).get('user_id')
                if user_id and user_id not in user_ids:
                    user_ids.append(user_id)
            return user_ids

        return list(filters.get('user_ids') or [])

    def create_and_send(self, title: str, body: str, promo_type: str, target_audience: Dict[str, Any],
                        sent_by: str, image_url: Optional[str] = None, deep_link: Optional[str] = None,
                        scheduled_for: Optional[datetime] = None) -> Dict[str, Any]:
        """
        프로모션 알림 문서를 만들고, 예약이 아니면 즉시 발송합니다.

        :return: {'promotion_id': ..., 'stats': {...}}
        """
        if NotificationType(promo_type) not in PROMOTIONAL_TYPES:
            raise ValueError(f"프로모션 유형이 아닙니다: {promo_type}")

        promotion_ref = self.promotions_ref.document()
        promotion = PromotionalNotification(
            promotion_id=promotion_ref.id,
            title=title,
            body=body,
            type=promo_type,
            target_audience=target_audience,
            sent_by=sent_by,
            status=PromotionStatus.SCHEDULED if scheduled_for else PromotionStatus.SENDING,
            image_url=image_url,
            deep_link=deep_link,
            scheduled_for=scheduled_for,
        )
        promotion_ref.set(DateTimeUtils.for_firestore(promotion.to_dict()))
        logger.info(f"프로모션 알림 생성 ({promotion.promotion_id}, status: {promotion.status.value})")

        if scheduled_for:
            return {'promotion_id': promotion.promotion_id, 'stats': promotion.to_dict()['stats']}

        stats = self._dispatch(promotion_ref, promotion.to_dict())
        return {'promotion_id': promotion.promotion_id, 'stats': stats}

    def _dispatch(self, promotion_ref, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        대상 선정 -> 수신 설정 필터링 -> 푸시 일괄 발송 -> 앱 내 알림 문서 생성 순으로 처리합니다.
        """
        promotion_id = promotion_ref.id
        promo_type = data['type']
        title, body = data['title'], data['body']
        image_url, deep_link = data.get('image_url'), data.get('deep_link')

        candidate_ids = self.get_target_user_ids(data.get('target_audience'))
        logger.info(f"프로모션 후보 수신자 {len(candidate_ids)}명 ({promotion_id})")

        eligible_ids = [uid for uid in candidate_ids if self.preference_service.should_receive_promo(uid, promo_type)]
        logger.info(f"{promo_type} 알림 수신 동의 사용자 {len(eligible_ids)}명 ({promotion_id})")

        promotion_ref.update({'stats.total_recipients': len(eligible_ids)})

        push_result = self.push_service.send_batch_push_notifications(
            eligible_ids, title, body, NotificationType(promo_type), NotificationCategory.PROMOTIONAL,
            promotion_id, image_url=image_url, deep_link=deep_link,
        )

        promotion_ref.update({
            'stats.delivered': push_result.sent,
            'status': PromotionStatus.SENT.value,
            'sent_at': DateTimeUtils.now(),
        })

        self._create_in_app_notifications(eligible_ids, promotion_id, promo_type, title, body, image_url, deep_link)

        return {
            'total_recipients': len(eligible_ids),
            'delivered': push_result.sent,
            'opened': 0,
            'clicked': 0,
        }

    def _create_in_app_notifications(self, user_ids: List[str], promotion_id: str, promo_type: str, title: str,
                                     body: str, image_url: Optional[str], deep_link: Optional[str]) -> None:
        """사용자별 앱 내 알림 문서를 batch 하나당 최대 in_app_batch_size 건씩 씁니다."""
        now = DateTimeUtils.now()
        for start in range(0, len(user_ids), self.in_app_batch_size):
            batch = self.db.batch()
            for user_id in user_ids[start:start + self.in_app_batch_size]:
                notification_ref = self.users_ref.document(user_id).collection('notifications').document()
                notification_data = {
                    'notification_id': notification_ref.id,
                    'recipient_user_id': user_id,
                    'type': promo_type,
                    'category': NotificationCategory.PROMOTIONAL.value,
                    'message': body,
                    'promo_title': title,
                    'promo_body': body,
                    'target_id': promotion_id,
                    'actors': [],
                    'actor_count': 0,
                    'is_read': False,
                    'created_at': now,
                    'updated_at': now,
                    'last_activity_at': now,
                }
                if image_url:
                    notification_data['promo_image_url'] = image_url
                if deep_link:
                    notification_data['deep_link'] = deep_link
                batch.set(notification_ref, notification_data)
            batch.commit()
        logger.info(f"앱 내 프로모션 알림 {len(user_ids)}건 생성 ({promotion_id})")

    def process_scheduled(self, now: Optional[datetime] = None) -> int:
        """
        발송 시각이 지난 예약 프로모션을 같은 문서 그대로 발송합니다.
        하나가 실패해도 나머지는 계속 처리하며, 실패한 문서는 failed 로 표시합니다.

        :return: 처리를 시도한 예약 프로모션 수
        """
        now = now or DateTimeUtils.now()
        due_docs = list(self.promotions_ref
                        .where('status', '==', PromotionStatus.SCHEDULED.value)
                        .where('scheduled_for', '<=', now)
                        .stream())
        logger.info(f"발송할 예약 프로모션 {len(due_docs)}건")

        for doc in due_docs:
            doc.reference.update({'status': PromotionStatus.SENDING.value})
            try:
                self._dispatch(doc.reference, doc.to_dict())
            except Exception as e:
                logger.error(f"예약 프로모션 발송 실패 ({doc.id}): {e}", exc_info=True)
                doc.reference.update({'status': PromotionStatus.FAILED.value})

        return len(due_docs)
