# ora_backend/models/post.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any

from ora_backend.models.moderation import ModerationStatus

@dataclass
class Post:
    """
    Firestore 'posts' 컬렉션의 문서 구조 중 검토(moderation)에 필요한 부분을 정의하는 데이터클래스.
    """
    post_id: str
    user_id: str
    image_url: Optional[str] = None
    caption: Optional[str] = None
    interest_ids: List[str] = field(default_factory=list)
    moderation_status: Optional[ModerationStatus] = None
    moderation_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], post_id: Optional[str] = None) -> 'Post':
        status = data.get('moderation_status')
        return cls(
            post_id=post_id or data.get('post_id'),
            user_id=data.get('user_id'),
            image_url=data.get('image_url'),
            caption=data.get('caption'),
            interest_ids=list(data.get('interest_ids') or []),
            moderation_status=ModerationStatus(status) if status else None,
            moderation_reason=data.get('moderation_reason'),
            created_at=data.get('created_at'),
        )
