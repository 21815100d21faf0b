# ora_backend/models/moderation.py
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional

class ModerationStatus(Enum):
    """게시물의 검토 상태를 나타내는 Enum"""
    PENDING = "pending"     # 검토 대기
    APPROVED = "approved"   # 승인되어 노출됨
    REJECTED = "rejected"   # 거절되어 숨김
    FLAGGED = "flagged"     # 관리자 확인 필요

    @property
    def is_visible_to_users(self) -> bool:
        """일반 사용자에게 노출되는 상태인지 여부. 승인된 게시물만 노출됩니다."""
        return self is ModerationStatus.APPROVED

@dataclass
class ModerationResult:
    """
    개별 규칙(rule) 평가 결과.
    should_continue가 False이면 규칙 체인 평가를 중단합니다.
    """
    status: ModerationStatus
    reason: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    should_continue: bool = True

@dataclass
class ModerationVerdict:
    """규칙 체인 전체를 평가한 최종 판정."""
    status: ModerationStatus = ModerationStatus.APPROVED
    reason: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    rule_name: Optional[str] = None  # 판정을 확정한 규칙 이름 (규칙이 없으면 None)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data

@dataclass
class ModerationAction:
    """
    Firestore 'moderation_actions' 컬렉션의 문서 구조 (감사 기록).
    한 번 기록된 문서는 수정하지 않습니다.
    """
    action_id: str
    post_id: str
    moderator_user_id: str   # 관리자 ID 또는 자동 검토 시 'system'
    action: ModerationStatus
    reason: Optional[str] = None
    notes: Optional[str] = None
    rule_name: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['action'] = self.action.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], action_id: Optional[str] = None) -> 'ModerationAction':
        return cls(
            action_id=action_id or data.get('action_id'),
            post_id=data.get('post_id'),
            moderator_user_id=data.get('moderator_user_id'),
            action=ModerationStatus(data['action']),
            reason=data.get('reason'),
            notes=data.get('notes'),
            rule_name=data.get('rule_name'),
            metadata=data.get('metadata'),
            timestamp=data.get('timestamp'),
        )
