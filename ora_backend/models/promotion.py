# ora_backend/models/promotion.py
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional

class PromotionStatus(Enum):
    """프로모션 알림의 발송 상태"""
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"

class AudienceType(Enum):
    """프로모션 수신 대상 선정 방식"""
    ALL = "all"
    ROLE = "role"           # filters.role: 'admin' | 'user'
    ACTIVITY = "activity"   # filters.days: 최근 N일 내 게시물 작성자
    CUSTOM = "custom"       # filters.user_ids: 명시적 사용자 목록

class DeliveryStatus(Enum):
    """푸시 발송 감사 기록의 상태"""
    SENT = "sent"             # 일부 토큰에만 전달됨
    DELIVERED = "delivered"   # 모든 토큰에 전달됨
    FAILED = "failed"

@dataclass
class PromotionStats:
    total_recipients: int = 0
    delivered: int = 0
    opened: int = 0
    clicked: int = 0

@dataclass
class PromotionalNotification:
    """
    Firestore 'promotional_notifications' 컬렉션의 문서 구조를 정의하는 데이터클래스.
    """
    promotion_id: str
    title: str
    body: str
    type: str                          # announcement | promo | feature_update | event
    target_audience: Dict[str, Any]    # {'type': AudienceType 값, 'filters': {...}}
    sent_by: str
    status: PromotionStatus
    stats: PromotionStats = field(default_factory=PromotionStats)
    image_url: Optional[str] = None
    deep_link: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return {k: v for k, v in data.items() if v is not None}

@dataclass
class NotificationDelivery:
    """
    Firestore 'notification_deliveries' 컬렉션의 문서 구조 (푸시 발송 감사 기록).
    """
    notification_id: str
    user_id: str
    category: str
    status: DeliveryStatus
    token_count: int
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        if not self.error:
            data.pop('error')
        return data
