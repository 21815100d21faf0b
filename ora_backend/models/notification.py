# ora_backend/models/notification.py
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional

class NotificationType(Enum):
    """알림 유형을 정의하는 Enum 클래스"""
    # 참여(engagement) 알림 - 집계 대상
    LIKE = "like"
    COMMENT = "comment"
    FOLLOW = "follow"
    MENTION = "mention"
    # 시스템 알림 - 게시물 검토 결과
    POST_APPROVED = "post_approved"
    POST_REJECTED = "post_rejected"
    POST_FLAGGED = "post_flagged"
    # 프로모션 알림
    ANNOUNCEMENT = "announcement"
    PROMO = "promo"
    FEATURE_UPDATE = "feature_update"
    EVENT = "event"

class NotificationCategory(Enum):
    """알림 분류. 딥링크 결정과 사용자 설정 필터링에 사용됩니다."""
    ENGAGEMENT = "engagement"
    SYSTEM = "system"
    PROMOTIONAL = "promotional"

# 행위자 집계(aggregation)가 적용되는 알림 유형
ENGAGEMENT_TYPES = (
    NotificationType.LIKE,
    NotificationType.COMMENT,
    NotificationType.FOLLOW,
    NotificationType.MENTION,
)

SYSTEM_TYPES = (
    NotificationType.POST_APPROVED,
    NotificationType.POST_REJECTED,
    NotificationType.POST_FLAGGED,
)

PROMOTIONAL_TYPES = (
    NotificationType.ANNOUNCEMENT,
    NotificationType.PROMO,
    NotificationType.FEATURE_UPDATE,
    NotificationType.EVENT,
)

@dataclass
class ActorInfo:
    """알림 문서 내부에 저장될 행위자(알림을 유발한 사용자) 정보."""
    id: str
    username: str
    profile_photo_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActorInfo':
        return cls(
            id=data.get('id'),
            username=data.get('username'),
            profile_photo_url=data.get('profile_photo_url'),
        )

@dataclass
class Notification:
    """
    Firestore 'users/{user_id}/notifications' 서브컬렉션의 문서 구조를 정의하는 데이터클래스.
    """
    notification_id: str
    recipient_user_id: str     # 알림을 받는 사용자 ID
    type: NotificationType
    target_id: str             # 알림의 대상 객체 ID (post_id, user_id 등)
    message: str
    actors: List[ActorInfo] = field(default_factory=list)  # 최근 행위자 최대 3명
    actor_count: int = 0       # 지금까지 집계된 서로 다른 행위자 수 (len(actors) 보다 클 수 있음)
    category: NotificationCategory = NotificationCategory.ENGAGEMENT
    is_read: bool = False
    activity_id: Optional[str] = None
    post_image_url: Optional[str] = None
    post_thumbnail_url: Optional[str] = None
    post_caption: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Firestore 저장용 딕셔너리. Enum은 문자열 값으로, 비어 있는 선택 필드는 제외합니다."""
        data = asdict(self)
        data['type'] = self.type.value
        data['category'] = self.category.value
        optional_fields = ('activity_id', 'post_image_url', 'post_thumbnail_url', 'post_caption', 'metadata')
        return {k: v for k, v in data.items() if not (k in optional_fields and not v)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], notification_id: Optional[str] = None) -> 'Notification':
        return cls(
            notification_id=notification_id or data.get('notification_id'),
            recipient_user_id=data.get('recipient_user_id'),
            type=NotificationType(data['type']),
            target_id=data.get('target_id'),
            message=data.get('message', ''),
            actors=[ActorInfo.from_dict(a) for a in data.get('actors', [])],
            actor_count=data.get('actor_count', 0),
            category=NotificationCategory(data.get('category', NotificationCategory.ENGAGEMENT.value)),
            is_read=data.get('is_read', False),
            activity_id=data.get('activity_id'),
            post_image_url=data.get('post_image_url'),
            post_thumbnail_url=data.get('post_thumbnail_url'),
            post_caption=data.get('post_caption'),
            metadata=data.get('metadata'),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
            last_activity_at=data.get('last_activity_at'),
        )
