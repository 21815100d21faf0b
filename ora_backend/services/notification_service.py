# ora_backend/services/notification_service.py
import logging
from dataclasses import asdict
from datetime import timedelta
from typing import Optional, Dict, Any, List, Tuple, Union

from firebase_admin import firestore

from ora_backend.models.notification import (
    ActorInfo, Notification, NotificationCategory, NotificationType, ENGAGEMENT_TYPES,
)
from ora_backend.services.preference_service import PreferenceService
from ora_backend.services.push_service import PushService
from ora_backend.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

# 알림 문구에 사용되는 유형별 동사구
_VERB_PHRASES = {
    NotificationType.LIKE: "liked your post",
    NotificationType.COMMENT: "commented on your post",
    NotificationType.FOLLOW: "started following you",
    NotificationType.MENTION: "mentioned you",
}
_FALLBACK_PHRASE = "interacted with your post"

# 새 알림 생성 시 푸시 제목
_PUSH_TITLES = {
    NotificationType.LIKE: "New like",
    NotificationType.COMMENT: "New comment",
    NotificationType.FOLLOW: "New follower",
    NotificationType.MENTION: "New mention",
}

# 새 알림 문서에만 붙는 게시물 표시 정보
ENRICHMENT_FIELDS = ('post_image_url', 'post_thumbnail_url', 'post_caption', 'metadata')


def _others(count: int) -> str:
    return f"{count} {'other' if count == 1 else 'others'}"


def format_notification_message(n_type: NotificationType, actors: List[ActorInfo], actor_count: int) -> str:
    """
    행위자 목록과 누적 행위자 수로 알림 문구를 만듭니다. 같은 입력에는 항상 같은 문구를 반환합니다.

    - 0명: "Someone interacted with your post"
    - 1명: "Ann liked your post"
    - 2명: "Ann and Bob liked your post"
    - 3명 이상: "Ann, Bob, and 1 other liked your post"
    - 표시할 행위자가 부족한 경우: "Ann and 2 others interacted with your post"
    """
    if actor_count == 0:
        return "Someone interacted with your post"

    phrase = _VERB_PHRASES.get(n_type, _FALLBACK_PHRASE)

    if actor_count == 1 and actors:
        return f"{actors[0].username} {phrase}"

    if actor_count == 2 and len(actors) >= 2:
        return f"{actors[0].username} and {actors[1].username} {phrase}"

    if actor_count >= 3 and len(actors) >= 2:
        first, second = actors[0], actors[1]
        return f"{first.username}, {second.username}, and {_others(actor_count - 2)} {phrase}"

    if actors:
        return f"{actors[0].username} and {_others(actor_count - 1)} {_FALLBACK_PHRASE}"

    return f"{actor_count} people {_FALLBACK_PHRASE}"


class NotificationService:
    """
    알림 관련 비즈니스 로직을 담당하는 공용 서비스 클래스.
    - 같은 (수신자, 유형, 대상)에 대한 짧은 시간 안의 반복 이벤트를 하나의 알림 문서로 집계합니다.
    - 새 알림 문서가 만들어진 경우에만 푸시를 발송합니다.
    """
    def __init__(self, db=None, push_service: Optional[PushService] = None,
                 preference_service: Optional[PreferenceService] = None,
                 aggregation_window: timedelta = timedelta(hours=1), max_actors: int = 3):
        self.db = db or firestore.client()
        self.users_ref = self.db.collection('users')
        self.push_service = push_service
        self.preference_service = preference_service
        self.aggregation_window = aggregation_window
        self.max_actors = max_actors

    def _notifications_ref(self, user_id: str):
        return self.users_ref.document(user_id).collection('notifications')

    # ------------------------------------------------------------------
    # 집계
    # ------------------------------------------------------------------
    def _get_actor_profile(self, actor_id: str) -> Optional[ActorInfo]:
        """행위자 프로필 조회. 찾을 수 없거나 조회에 실패하면 None."""
        try:
            actor_doc = self.users_ref.document(actor_id).get()
            if not actor_doc.exists:
                logger.warning(f"행위자 프로필을 찾을 수 없음 (actor_id: {actor_id})")
                return None
            actor_data = actor_doc.to_dict() or {}
            return ActorInfo(
                id=actor_id,
                username=actor_data.get('username') or "Unknown User",
                profile_photo_url=actor_data.get('profile_photo_url'),
            )
        except Exception as e:
            logger.error(f"행위자 프로필 조회 중 오류 발생 (actor_id: {actor_id}): {e}", exc_info=True)
            return None

    @staticmethod
    def _find_open_notification(query, transaction=None):
        """
        읽지 않은 후보 알림 중 last_activity_at 이 가장 최근인 문서를 찾습니다.
        필터와 정렬을 함께 쓰려면 복합 색인이 필요하므로 메모리에서 최댓값을 찾습니다.
        동률이면 먼저 조회된 문서가 유지되고, 시각이 없는 문서는 시각이 있는 문서에 밀립니다.
        """
        most_recent = None
        most_recent_at = None
        for doc in query.stream(transaction=transaction):
            last_activity_at = (doc.to_dict() or {}).get('last_activity_at')
            if last_activity_at is not None:
                last_activity_at = DateTimeUtils.from_firestore(last_activity_at)
            if most_recent is None:
                most_recent, most_recent_at = doc, last_activity_at
            elif last_activity_at is not None and (most_recent_at is None or last_activity_at > most_recent_at):
                most_recent, most_recent_at = doc, last_activity_at
        return most_recent

    def _should_aggregate(self, existing: Dict[str, Any], n_type: NotificationType, target_id: str,
                          actor_id: str, now) -> bool:
        """기존 알림에 새 행위자를 합칠 수 있는지 판단합니다."""
        if existing.get('type') != n_type.value or existing.get('target_id') != target_id:
            return False

        elapsed = DateTimeUtils.elapsed_since(existing.get('last_activity_at'), now)
        if elapsed is None or elapsed > self.aggregation_window:
            return False

        # 같은 행위자의 반복 행동은 다시 집계하지 않음
        return not any(actor.get('id') == actor_id for actor in existing.get('actors', []))

    def record_event(self, n_type: Union[NotificationType, str], recipient_user_id: str, actor_id: str,
                     target_id: str, activity_id: Optional[str] = None,
                     enrichment: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        소셜 이벤트(좋아요/댓글/팔로우/멘션)를 알림으로 기록합니다.

        :param n_type: 알림 유형 (엔게이지먼트 유형만 허용)
        :param recipient_user_id: 알림을 받을 사용자 ID
        :param actor_id: 이벤트를 일으킨 사용자 ID
        :param target_id: 대상 객체 ID (post_id 등)
        :param activity_id: 피드 활동 ID (선택)
        :param enrichment: 새 알림 문서에만 붙는 게시물 이미지/썸네일/캡션/metadata
        :return: 새 알림 문서가 만들어졌으면 그 ID, 기존 알림에 집계되었거나 건너뛰었으면 None
        :raises ValueError: 유형이 잘못되었거나 필수 ID가 비어 있는 경우
        """
        n_type = NotificationType(n_type)
        if n_type not in ENGAGEMENT_TYPES:
            raise ValueError(f"집계할 수 없는 알림 유형입니다: {n_type.value}")
        if not recipient_user_id or not actor_id or not target_id:
            raise ValueError("recipient_user_id, actor_id, target_id 는 필수입니다.")

        if recipient_user_id == actor_id:
            logger.info(f"자기 자신의 행동이므로 알림을 생성하지 않음 (user_id: {actor_id})")
            return None

        actor = self._get_actor_profile(actor_id)
        if actor is None:
            logger.warning(f"행위자 정보가 없어 알림을 건너뜀 (actor_id: {actor_id})")
            return None

        notifications_ref = self._notifications_ref(recipient_user_id)
        open_query = (notifications_ref
                      .where('type', '==', n_type.value)
                      .where('target_id', '==', target_id)
                      .where('is_read', '==', False))
        enrichment = {k: v for k, v in (enrichment or {}).items() if k in ENRICHMENT_FIELDS and v}

        transaction = self.db.transaction()

        @firestore.transactional
        def _record_in_transaction(transaction) -> Tuple[str, bool, int]:
            now = DateTimeUtils.now()
            existing_doc = self._find_open_notification(open_query, transaction)

            if existing_doc is not None:
                existing = existing_doc.to_dict() or {}
                if self._should_aggregate(existing, n_type, target_id, actor.id, now):
                    actors = [ActorInfo.from_dict(a) for a in existing.get('actors', [])]
                    # 최대 개수를 넘으면 가장 오래된 행위자를 밀어냄
                    actors = (actors + [actor])[-self.max_actors:]
                    actor_count = existing.get('actor_count', 1) + 1
                    transaction.update(existing_doc.reference, {
                        'actors': [asdict(a) for a in actors],
                        'actor_count': actor_count,
                        'message': format_notification_message(n_type, actors, actor_count),
                        'last_activity_at': now,
                        'updated_at': now,
                    })
                    return existing_doc.id, False, actor_count

            new_ref = notifications_ref.document()
            notification = Notification(
                notification_id=new_ref.id,
                recipient_user_id=recipient_user_id,
                type=n_type,
                target_id=target_id,
                message=format_notification_message(n_type, [actor], 1),
                actors=[actor],
                actor_count=1,
                activity_id=activity_id,
                created_at=now,
                updated_at=now,
                last_activity_at=now,
                **enrichment,
            )
            transaction.set(new_ref, notification.to_dict())
            return new_ref.id, True, 1

        notification_id, is_new, actor_count = _record_in_transaction(transaction)

        if is_new:
            logger.info(f"새 알림 생성 ({notification_id}): {n_type.value} on {target_id} -> {recipient_user_id}")
            return notification_id

        logger.info(f"알림 집계 ({notification_id}): 행위자 {actor_count}명 ({n_type.value} on {target_id})")
        return None

    def notify(self, n_type: Union[NotificationType, str], recipient_user_id: str, actor_id: str,
               target_id: str, activity_id: Optional[str] = None,
               enrichment: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        이벤트를 기록하고, 새 알림이 생성된 경우에만 수신자에게 푸시를 보냅니다.
        이미 있는 알림에 집계된 경우에는 푸시를 다시 보내지 않습니다.
        """
        notification_id = self.record_event(n_type, recipient_user_id, actor_id, target_id,
                                            activity_id=activity_id, enrichment=enrichment)
        if not notification_id or self.push_service is None:
            return notification_id

        n_type = NotificationType(n_type)
        if self.preference_service and not self.preference_service.allows_engagement(recipient_user_id, n_type):
            logger.info(f"{n_type.value} 알림 푸시 수신이 꺼져 있음 (user_id: {recipient_user_id})")
            return notification_id

        notification = self.get_notification(recipient_user_id, notification_id)
        self.push_service.send_push_notification(
            recipient_user_id,
            notification_id,
            n_type,
            NotificationCategory.ENGAGEMENT,
            _PUSH_TITLES[n_type],
            notification.message,
            target_id,
            activity_id=activity_id,
            image_url=notification.post_thumbnail_url or notification.post_image_url,
        )
        return notification_id

    # ------------------------------------------------------------------
    # 조회 / 읽음 처리
    # ------------------------------------------------------------------
    def get_notification(self, user_id: str, notification_id: str) -> Optional[Notification]:
        doc = self._notifications_ref(user_id).document(notification_id).get()
        if not doc.exists:
            return None
        return Notification.from_dict(DateTimeUtils.from_firestore(doc.to_dict()), doc.id)

    def list_notifications(self, user_id: str, limit: int, cursor: Optional[str]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """사용자의 알림 목록을 최근 활동순으로 페이지네이션 조회합니다."""
        notifications_ref = self._notifications_ref(user_id)
        query = notifications_ref.order_by('last_activity_at', direction=firestore.Query.DESCENDING)
        if cursor:
            cursor_doc = notifications_ref.document(cursor).get()
            if cursor_doc.exists:
                query = query.start_after(cursor_doc)

        notifications = []
        last_doc_id = None
        for doc in query.limit(limit).stream():
            data = DateTimeUtils.from_firestore(doc.to_dict())
            data['notification_id'] = doc.id
            notifications.append(data)
            last_doc_id = doc.id
        return notifications, last_doc_id

    def mark_as_read(self, user_id: str, notification_id: str) -> None:
        """알림을 읽음 처리합니다. 읽은 알림은 더 이상 집계 대상이 아닙니다."""
        notification_ref = self._notifications_ref(user_id).document(notification_id)
        if not notification_ref.get().exists:
            raise LookupError("알림을 찾을 수 없습니다.")
        notification_ref.update({'is_read': True, 'updated_at': DateTimeUtils.now()})

    def mark_all_as_read(self, user_id: str, batch_size: int = 500) -> int:
        """읽지 않은 알림을 모두 읽음 처리합니다. batch 하나당 최대 batch_size 건씩 커밋합니다."""
        unread_docs = list(self._notifications_ref(user_id).where('is_read', '==', False).stream())
        now = DateTimeUtils.now()
        for start in range(0, len(unread_docs), batch_size):
            batch = self.db.batch()
            for doc in unread_docs[start:start + batch_size]:
                batch.update(doc.reference, {'is_read': True, 'updated_at': now})
            batch.commit()
        logger.info(f"알림 {len(unread_docs)}건 읽음 처리 (user_id: {user_id})")
        return len(unread_docs)
